from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

import pandas as pd

RangeKey = Literal["7d", "30d", "90d", "month", "year"]

DEFAULT_RANGE: RangeKey = "30d"
MAX_TOP_N = 10

RANGE_LABELS: Dict[str, str] = {
    "7d": "Last 7 days",
    "30d": "Last 30 days",
    "90d": "Last 90 days",
    "month": "This month",
    "year": "Last year",
}

_OFFSET_DAYS: Dict[str, int] = {"7d": 7, "30d": 30, "90d": 90, "year": 365}


@dataclass(frozen=True)
class GoalTargets:
    customer_acquisition: float = 50.0
    profit_margin: float = 30.0
    inventory_turnover: float = 4.0


@dataclass(frozen=True)
class DashboardFilters:
    date_range: RangeKey = DEFAULT_RANGE
    top_n: int = MAX_TOP_N
    goals: GoalTargets = field(default_factory=GoalTargets)


@dataclass(frozen=True)
class DateWindow:
    key: str
    start: pd.Timestamp
    end: pd.Timestamp
    now: pd.Timestamp

    @property
    def days(self) -> float:
        """Fractional length of the window in days."""
        return (self.end - self.start) / pd.Timedelta(days=1)

    def previous(self) -> "DateWindow":
        span = self.end - self.start
        return DateWindow(key=self.key, start=self.start - span, end=self.start, now=self.now)

    def calendar_days(self) -> pd.DatetimeIndex:
        return pd.date_range(self.start.normalize(), self.end.normalize(), freq="D")

    def contains(self, stamps: pd.Series) -> pd.Series:
        return (stamps >= self.start) & (stamps <= self.end)

    def as_dict(self) -> Dict[str, str]:
        return {
            "key": self.key,
            "label": RANGE_LABELS.get(self.key, RANGE_LABELS[DEFAULT_RANGE]),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }


def utc_now() -> pd.Timestamp:
    """Current instant as a naive UTC timestamp."""
    return pd.Timestamp.now(tz="UTC").tz_localize(None)


def as_naive_utc(value: object) -> pd.Timestamp:
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_convert("UTC").tz_localize(None)
    return ts


def resolve_date_range(key: Optional[str], *, now: Optional[object] = None) -> DateWindow:
    anchor = as_naive_utc(now) if now is not None else utc_now()
    if key == "month":
        start = anchor.normalize().replace(day=1)
        end = start + pd.offsets.MonthBegin(1) - pd.Timedelta(milliseconds=1)
        return DateWindow(key="month", start=start, end=end, now=anchor)
    if key not in _OFFSET_DAYS:
        key = DEFAULT_RANGE
    start = anchor - pd.Timedelta(days=_OFFSET_DAYS[key])
    return DateWindow(key=key, start=start, end=anchor, now=anchor)


def available_ranges() -> List[Dict[str, str]]:
    return [{"key": k, "label": v} for k, v in RANGE_LABELS.items()]


def normalize_filters(raw: dict) -> DashboardFilters:
    date_range = str(raw.get("date_range") or DEFAULT_RANGE)
    if date_range not in RANGE_LABELS:
        date_range = DEFAULT_RANGE

    top_n = raw.get("top_n", MAX_TOP_N)
    try:
        top_n = int(top_n)
    except Exception:
        top_n = MAX_TOP_N
    top_n = max(1, min(MAX_TOP_N, top_n))

    g = raw.get("goals") or {}
    goals = GoalTargets(
        customer_acquisition=float(g.get("customer_acquisition", 50.0)),
        profit_margin=float(g.get("profit_margin", 30.0)),
        inventory_turnover=float(g.get("inventory_turnover", 4.0)),
    )
    return DashboardFilters(date_range=date_range, top_n=top_n, goals=goals)  # type: ignore[arg-type]
