from __future__ import annotations

import io
import sys
from datetime import datetime
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest

from riskwatch.budget import BudgetLedger, PricingCatalog
from riskwatch.logging import RiskWatchLogger
from riskwatch.models import News


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


class FrozenClock:
    """Settable wall clock for ledger tests."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 3, 15, 12, 0, 0))


@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> RiskWatchLogger:
    return RiskWatchLogger("test-run", level="debug", stream=log_stream)


@pytest.fixture
def ledger_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "monthly-cost.json"


@pytest.fixture
def make_ledger(ledger_path: Path, clock: FrozenClock):
    def _make(**kwargs) -> BudgetLedger:
        kwargs.setdefault("monthly_limit", 15)
        kwargs.setdefault("emergency_limit", 18)
        kwargs.setdefault("clock", clock)
        catalog = kwargs.pop("catalog", None) or PricingCatalog()
        return BudgetLedger(ledger_path, catalog, **kwargs)

    return _make


@pytest.fixture
def sample_news() -> list[News]:
    return [
        News(
            title="Acme Corp files for bankruptcy protection",
            body="Acme Corp said on Monday it filed for bankruptcy after missing a debt payment.",
            source="Reuters",
            url="https://example.com/acme-bankruptcy",
        ),
        News(
            title="Acme suppliers warn of delayed payments",
            body="Several suppliers issued a warning about unpaid invoices.",
            source="Bloomberg",
            url="https://example.com/acme-suppliers",
        ),
    ]
