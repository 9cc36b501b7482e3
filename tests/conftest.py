import sys
from pathlib import Path

import pytest

# Ensure the `lead_finder` package is importable when running pytest from the repo root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lead_finder.core.config import Settings  # noqa: E402
from lead_finder.core.ledger import InMemoryCreditLedger  # noqa: E402


@pytest.fixture
def settings():
    return Settings(
        free_grant=2,
        free_per_run=20,
        paid_per_run=40,
        page_delay_seconds=0,
        enrich_deadline_seconds=5,
    )


@pytest.fixture
def ledger(settings):
    return InMemoryCreditLedger.from_settings(settings)
