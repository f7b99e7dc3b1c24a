from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

# Handler signature: async def handler(engine: RecordsEngine, payload: dict) -> OperationReport
HandlerFn = Callable[[Any, dict[str, Any]], Awaitable[Any]]

# One handler per event_type
_registry: dict[str, HandlerFn] = {}


def register(event_type: str) -> Callable[[HandlerFn], HandlerFn]:
    """Register a handler for an application event (e.g. 'workout.logged')."""

    def decorator(fn: HandlerFn) -> HandlerFn:
        if event_type in _registry:
            raise ValueError(f"Duplicate handler for event_type={event_type!r}")
        _registry[event_type] = fn
        logger.debug("Registered handler %s for event_type=%s", fn.__name__, event_type)
        return fn

    return decorator


def get_handler(event_type: str) -> HandlerFn | None:
    return _registry.get(event_type)


def registered_event_types() -> list[str]:
    return list(_registry.keys())
