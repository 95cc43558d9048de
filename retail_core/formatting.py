from __future__ import annotations

import math
from typing import Iterable, Optional

import pandas as pd

from retail_core.models import Settings


def convert_currency(amount: float, settings: Settings) -> float:
    if settings.currency == "IQD":
        return amount * settings.usd_to_iqd_rate
    return amount


def format_currency(amount: object, settings: Optional[Settings] = None) -> str:
    settings = settings or Settings()
    if amount is None or pd.isna(amount):
        return "N/A"
    converted = convert_currency(float(amount), settings)
    if settings.currency == "USD":
        return f"${converted:.2f}"
    return f"IQD {converted:,.0f}"


def format_percent(value: object, decimals: int = 1) -> str:
    if value is None or pd.isna(value):
        return ""
    return f"{float(value):.{decimals}f}%"


def format_currency_columns(df: pd.DataFrame, cols: Iterable[str], settings: Settings) -> pd.DataFrame:
    formatted = df.copy()
    for c in cols:
        if c in formatted.columns:
            formatted[c] = formatted[c].apply(lambda v: format_currency(v, settings) if pd.notna(v) else "")
    return formatted


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity."""
    return int(math.floor(value + 0.5))


def safe_ratio(numerator: float, denominator: float, *, scale: float = 1.0) -> float:
    """numerator / denominator * scale, or 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return float(numerator) / float(denominator) * scale
