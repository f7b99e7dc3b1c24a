"""Shared load normalization and strength estimation helpers."""

import logging
import math
import unicodedata

logger = logging.getLogger(__name__)

KG_PER_LB = 0.453592
EPLEY_REP_CAP = 30

# Mass units we can convert into the canonical kg. Anything else (km, min,
# seconds...) is a distance/time measurement and carries no external load.
_MASS_UNIT_FACTORS: dict[str, float] = {
    "kg": 1.0,
    "kgs": 1.0,
    "kilo": 1.0,
    "kilos": 1.0,
    "kilogram": 1.0,
    "kilograms": 1.0,
    "lb": KG_PER_LB,
    "lbs": KG_PER_LB,
    "pound": KG_PER_LB,
    "pounds": KG_PER_LB,
}


# ---------------------------------------------------------------------------
# Text normalization
# ---------------------------------------------------------------------------


def normalize_token(value: str | None) -> str | None:
    """Fold a display name into a catalog-style token.

    "Press Banca (Barra)" -> "press_banca_barra", "Pull-Up" -> "pull_up".
    Returns None for empty input.
    """
    if not isinstance(value, str):
        return None
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    chars = [ch if ch.isalnum() else "_" for ch in stripped.lower()]
    token = "_".join(part for part in "".join(chars).split("_") if part)
    return token or None


def normalize_unit(unit: str | None) -> str:
    if not isinstance(unit, str) or not unit.strip():
        return "kg"
    return unit.strip().lower().rstrip(".")


def mass_unit_factor(unit: str | None) -> float | None:
    """Linear factor to kg, or None when ``unit`` is not a mass unit."""
    return _MASS_UNIT_FACTORS.get(normalize_unit(unit))


# ---------------------------------------------------------------------------
# Load normalization
# ---------------------------------------------------------------------------


def normalize_weight_kg(weight: float | None, unit: str | None, unilateral: bool) -> float:
    """External load in kg. Unilateral sets count both limbs."""
    if not weight or weight <= 0:
        return 0.0
    factor = mass_unit_factor(unit)
    if factor is None:
        logger.debug("Ignoring weight %.2f logged in non-mass unit %r", weight, unit)
        return 0.0
    weight_kg = weight * factor
    return weight_kg * 2 if unilateral else weight_kg


def total_moved_weight(
    weight: float | None,
    unit: str | None,
    *,
    unilateral: bool,
    is_bodyweight: bool,
    bodyweight_kg: float,
) -> float:
    """Normalized external load, plus the athlete's bodyweight for calisthenics."""
    external = normalize_weight_kg(weight, unit, unilateral)
    return external + bodyweight_kg if is_bodyweight else external


def set_volume(total_weight_kg: float, reps: int) -> float:
    """Work done by one set. Zero-rep sets are inert."""
    if reps <= 0:
        return 0.0
    return total_weight_kg * reps


# ---------------------------------------------------------------------------
# Strength estimation
# ---------------------------------------------------------------------------


def _round_half_up(value: float) -> float:
    return float(math.floor(value + 0.5))


def epley_1rm(weight_kg: float, reps: int) -> float:
    """Estimate 1RM from a set. Returns 0 for invalid inputs.

    Reps are capped at 30 so the denominator stays positive.
    """
    if reps <= 0 or weight_kg <= 0:
        return 0.0
    if reps == 1:
        return weight_kg
    capped = min(reps, EPLEY_REP_CAP)
    return _round_half_up(weight_kg / (1.0278 - 0.0278 * capped))
