from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, is_dataclass
from functools import lru_cache
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from retail_core.filters import DashboardFilters, DateWindow, normalize_filters, resolve_date_range
from retail_core.models import SALE_KINDS, Settings

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("RETAIL_DASHBOARD_DATA_DIR", Path(__file__).resolve().parents[1] / "data"))

PRODUCTS_FILE = "products.csv"
SALES_FILE = "sales.csv"
RETURNS_FILE = "returns.csv"
CUSTOMERS_FILE = "customers.csv"
SETTINGS_FILE = "settings.json"

LEGACY_RETURN_PREFIX = "return-"

PRODUCT_COLUMNS = ["id", "name", "category", "price", "stock"]
SALE_COLUMNS = ["id", "product_id", "customer_id", "date", "quantity", "total", "profit", "kind"]
RETURN_COLUMNS = ["id", "product_id", "date", "refund_amount"]
CUSTOMER_COLUMNS = ["id", "name", "email", "last_purchase"]

# camelCase exports from the storefront -> internal column names
SOURCE_COLUMNS = {
    "productId": "product_id",
    "customerId": "customer_id",
    "refundAmount": "refund_amount",
    "lastPurchase": "last_purchase",
}


def source_files(data_dir: Optional[Path] = None) -> List[Path]:
    base = Path(data_dir or DATA_DIR)
    names = [PRODUCTS_FILE, SALES_FILE, RETURNS_FILE, CUSTOMERS_FILE, SETTINGS_FILE]
    return [base / name for name in names if (base / name).exists()]


def file_signature(files: List[Path]) -> Tuple[Tuple[str, float], ...]:
    return tuple((str(f), f.stat().st_mtime) for f in files)


# ---------------- Normalization ----------------
def to_timestamps(series: pd.Series) -> pd.Series:
    """Parse to naive UTC timestamps; unparseable values become NaT."""
    return pd.to_datetime(series, errors="coerce", utc=True, format="mixed").dt.tz_localize(None)


def numericize(df: pd.DataFrame, cols: Iterable[str], *, fill: float = 0.0) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce").fillna(fill)
    return df


def coerce_id_columns(df: pd.DataFrame, cols: Iterable[str]) -> pd.DataFrame:
    for col in cols:
        if col in df.columns:
            series = df[col].astype("string").str.strip()
            df[col] = series.replace({"": pd.NA, "nan": pd.NA, "None": pd.NA})
    return df


def migrate_sale_kind(df: pd.DataFrame) -> pd.DataFrame:
    """Fill the ``kind`` discriminator for rows that do not carry one.

    Older exports flagged return adjustments only through an id prefix; that
    convention is resolved here, once, so nothing downstream looks at ids.
    """
    legacy = df["id"].astype("string").str.startswith(LEGACY_RETURN_PREFIX).fillna(False).astype(bool)
    inferred = legacy.map({True: "return_adjustment", False: "sale"})
    kind = df["kind"].astype("string").str.strip().str.lower() if "kind" in df.columns else pd.Series(pd.NA, index=df.index, dtype="string")
    kind = kind.where(kind.isin(SALE_KINDS), pd.NA)
    df["kind"] = kind.fillna(inferred).astype(str)
    return df


def _frame(records: Optional[Sequence[object]], columns: List[str]) -> pd.DataFrame:
    rows = []
    for r in records or []:
        if is_dataclass(r):
            row = asdict(r)
        elif hasattr(r, "model_dump"):
            row = r.model_dump()
        else:
            row = dict(r)  # type: ignore[call-overload]
        rows.append({SOURCE_COLUMNS.get(k, k): v for k, v in row.items()})
    df = pd.DataFrame(rows)
    for col in columns:
        if col not in df.columns:
            df[col] = pd.NA
    return df[columns].copy()


def products_frame(records: Optional[Sequence[object]] = None, df: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    df = _frame(records, PRODUCT_COLUMNS) if df is None else _frame(df.to_dict(orient="records"), PRODUCT_COLUMNS)
    df = coerce_id_columns(df, ["id"])
    df["name"] = df["name"].astype("string").fillna("Unknown")
    df["category"] = df["category"].astype("string").fillna("Uncategorized")
    df = numericize(df, ["price", "stock"])
    df["stock"] = df["stock"].astype(int)
    return df.dropna(subset=["id"]).reset_index(drop=True)


def sales_frame(records: Optional[Sequence[object]] = None, df: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    df = _frame(records, SALE_COLUMNS) if df is None else _frame(df.to_dict(orient="records"), SALE_COLUMNS)
    df = coerce_id_columns(df, ["id", "product_id", "customer_id"])
    df["date"] = to_timestamps(df["date"])
    df = numericize(df, ["quantity", "total", "profit"])
    df = migrate_sale_kind(df)
    return df.dropna(subset=["date"]).reset_index(drop=True)


def returns_frame(records: Optional[Sequence[object]] = None, df: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    df = _frame(records, RETURN_COLUMNS) if df is None else _frame(df.to_dict(orient="records"), RETURN_COLUMNS)
    df = coerce_id_columns(df, ["id", "product_id"])
    df["date"] = to_timestamps(df["date"])
    df = numericize(df, ["refund_amount"])
    return df.dropna(subset=["date"]).reset_index(drop=True)


def customers_frame(records: Optional[Sequence[object]] = None, df: Optional[pd.DataFrame] = None) -> pd.DataFrame:
    df = _frame(records, CUSTOMER_COLUMNS) if df is None else _frame(df.to_dict(orient="records"), CUSTOMER_COLUMNS)
    df = coerce_id_columns(df, ["id"])
    df["name"] = df["name"].astype("string").fillna("Unknown")
    df["email"] = df["email"].astype("string").fillna("")
    df["last_purchase"] = to_timestamps(df["last_purchase"])
    return df.dropna(subset=["id"]).reset_index(drop=True)


def settings_from(raw: Optional[Mapping[str, object]]) -> Settings:
    raw = dict(raw or {})
    currency = str(raw.get("currency") or "USD").upper()
    if currency not in ("USD", "IQD"):
        currency = "USD"
    rate = raw.get("usd_to_iqd_rate", raw.get("usdToIqdRate", Settings.usd_to_iqd_rate))
    try:
        rate = float(rate)  # type: ignore[arg-type]
    except Exception:
        rate = Settings.usd_to_iqd_rate
    return Settings(currency=currency, usd_to_iqd_rate=rate)  # type: ignore[arg-type]


def dataset_from_records(
    *,
    products: Optional[Sequence[object]] = None,
    sales: Optional[Sequence[object]] = None,
    returns: Optional[Sequence[object]] = None,
    customers: Optional[Sequence[object]] = None,
    settings: Optional[object] = None,
) -> Dict[str, object]:
    if isinstance(settings, Settings):
        settings_obj = settings
    elif hasattr(settings, "model_dump"):
        settings_obj = settings_from(settings.model_dump())  # type: ignore[union-attr]
    else:
        settings_obj = settings_from(settings)  # type: ignore[arg-type]
    return {
        "files": [],
        "products": products_frame(products),
        "sales": sales_frame(sales),
        "returns": returns_frame(returns),
        "customers": customers_frame(customers),
        "settings": settings_obj,
    }


# ---------------- Loaders ----------------
def _read_csv(base: Path, name: str) -> Optional[pd.DataFrame]:
    path = base / name
    if not path.exists():
        return None
    return pd.read_csv(path, dtype=str, keep_default_na=False)


def load_settings(base: Path) -> Settings:
    path = base / SETTINGS_FILE
    if not path.exists():
        return Settings()
    return settings_from(json.loads(path.read_text(encoding="utf-8")))


@lru_cache(maxsize=4)
def _load_dashboard_data_cached(data_dir: str, files_sig: Tuple[Tuple[str, float], ...]) -> Dict[str, object]:
    base = Path(data_dir)
    raw_products = _read_csv(base, PRODUCTS_FILE)
    raw_sales = _read_csv(base, SALES_FILE)
    raw_returns = _read_csv(base, RETURNS_FILE)
    raw_customers = _read_csv(base, CUSTOMERS_FILE)

    products = products_frame(df=raw_products) if raw_products is not None else products_frame()
    sales = sales_frame(df=raw_sales) if raw_sales is not None else sales_frame()
    returns = returns_frame(df=raw_returns) if raw_returns is not None else returns_frame()
    customers = customers_frame(df=raw_customers) if raw_customers is not None else customers_frame()

    logger.info(
        "loaded dataset from %s: %d products, %d sales, %d returns, %d customers",
        base,
        len(products),
        len(sales),
        len(returns),
        len(customers),
    )
    return {
        "files": [Path(name).name for name, _ in files_sig],
        "products": products,
        "sales": sales,
        "returns": returns,
        "customers": customers,
        "settings": load_settings(base),
    }


def load_dashboard_data(data_dir: Optional[Path] = None) -> Dict[str, object]:
    base = Path(data_dir or DATA_DIR)
    files = source_files(base)
    if not files:
        return dataset_from_records()
    return _load_dashboard_data_cached(str(base), file_signature(files))


# ---------------- Range filtering ----------------
def filter_window(df: pd.DataFrame, window: DateWindow, col: str = "date") -> pd.DataFrame:
    if df.empty or col not in df.columns:
        return df
    return df[window.contains(df[col])]


def prepare_context(
    filters: dict | DashboardFilters,
    data_ctx: Dict[str, object],
    *,
    now: Optional[object] = None,
) -> Dict[str, object]:
    filt = filters if isinstance(filters, DashboardFilters) else normalize_filters(filters)
    window = resolve_date_range(filt.date_range, now=now)

    sales: pd.DataFrame = data_ctx.get("sales", sales_frame())  # type: ignore[assignment]
    returns: pd.DataFrame = data_ctx.get("returns", returns_frame())  # type: ignore[assignment]

    filtered_sales = filter_window(sales, window)
    filtered_returns = filter_window(returns, window)
    previous_sales = filter_window(sales, window.previous())

    is_adjustment = filtered_sales["kind"].eq("return_adjustment")
    return {
        "filters": filt,
        "window": window,
        "now": window.now,
        "products": data_ctx.get("products", products_frame()),
        "customers": data_ctx.get("customers", customers_frame()),
        "settings": data_ctx.get("settings", Settings()),
        "sales": sales,
        "returns": returns,
        "filtered_sales": filtered_sales,
        "regular_sales": filtered_sales[~is_adjustment],
        "return_adjustments": filtered_sales[is_adjustment],
        "filtered_returns": filtered_returns,
        "previous_sales": previous_sales,
    }


# ---------------- Shared reductions ----------------
def compute_daily_trend(sales: pd.DataFrame, returns: pd.DataFrame, window: DateWindow) -> pd.DataFrame:
    """One row per calendar day of ``window``; days without activity are zero-filled.

    Records are bucketed by their formatted ``YYYY-MM-DD`` date.
    """
    days = window.calendar_days()
    day_keys = [d.strftime("%Y-%m-%d") for d in days]

    sales_by_day = (
        sales.assign(day=sales["date"].dt.strftime("%Y-%m-%d"))
        .groupby("day")
        .agg(
            revenue=("total", "sum"),
            profit=("profit", "sum"),
            sales=("total", "count"),
            customers=("customer_id", "nunique"),
        )
        .reindex(day_keys, fill_value=0)
    )
    returns_by_day = (
        returns.assign(day=returns["date"].dt.strftime("%Y-%m-%d"))
        .groupby("day")["refund_amount"]
        .sum()
        .reindex(day_keys, fill_value=0)
    )

    trend = pd.DataFrame(
        {
            "day": day_keys,
            "date": days,
            "revenue": sales_by_day["revenue"].astype(float).to_numpy(),
            "profit": sales_by_day["profit"].astype(float).to_numpy(),
            "returns": returns_by_day.astype(float).to_numpy(),
            "sales": sales_by_day["sales"].astype(int).to_numpy(),
            "customers": sales_by_day["customers"].astype(int).to_numpy(),
        }
    )
    return trend


def compute_product_stats(sales: pd.DataFrame, products: pd.DataFrame) -> pd.DataFrame:
    """Per-product revenue, profit, sale count and units, in product-table order.

    Sales for products missing from the product table are not represented.
    """
    per_product = sales.dropna(subset=["product_id"]).groupby("product_id", sort=False).agg(
        revenue=("total", "sum"),
        profit=("profit", "sum"),
        sales=("total", "count"),
        units=("quantity", "sum"),
    )
    stats = per_product.reindex(products["id"].tolist()).fillna(0).reset_index(drop=True)
    stats.insert(0, "product_id", products["id"].astype(str).tolist())
    stats.insert(1, "name", products["name"].astype(str).tolist())
    stats.insert(2, "category", products["category"].astype(str).tolist())
    stats["stock"] = products["stock"].astype(int).tolist()
    stats["sales"] = stats["sales"].astype(int)
    return stats


def product_names(products: pd.DataFrame) -> Dict[str, str]:
    if products.empty:
        return {}
    dedup = products.drop_duplicates(subset=["id"])
    return dict(zip(dedup["id"].astype(str), dedup["name"].astype(str)))
