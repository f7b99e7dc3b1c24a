import pytest

from liftlog_records.metrics import reset_metrics


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield
    reset_metrics()
