import sys
from pathlib import Path

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from retail_core.data import dataset_from_records, prepare_context  # noqa: E402
from retail_core.filters import normalize_filters  # noqa: E402

NOW = pd.Timestamp("2024-03-15 12:00:00")


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_ctx():
    """Build (filters, ctx) from plain record dicts, anchored at NOW."""

    def _make(products=(), sales=(), returns=(), customers=(), date_range="30d", settings=None, now=NOW, **raw):
        data = dataset_from_records(
            products=list(products),
            sales=list(sales),
            returns=list(returns),
            customers=list(customers),
            settings=settings,
        )
        filters = normalize_filters({"date_range": date_range, **raw})
        return filters, prepare_context(filters, data, now=now)

    return _make
