from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

import pandas as pd

from retail_core.charts import daily_lines, ranked_bars, share_donut
from retail_core.data import compute_daily_trend, compute_product_stats
from retail_core.filters import DashboardFilters, DateWindow
from retail_core.formatting import format_currency, round_half_up, safe_ratio
from retail_core.models import KPI, Forecast, Settings, Trend

NEVER_PURCHASED_DAYS = 999
FORECAST_HORIZON_DAYS = 30
SEGMENTS = ["Champions", "Loyal Customers", "New Customers", "At Risk"]


# ---------------- RFM ----------------
def recency_score(days: int) -> int:
    if days <= 30:
        return 5
    if days <= 60:
        return 4
    if days <= 90:
        return 3
    if days <= 180:
        return 2
    return 1


def frequency_score(count: int) -> int:
    if count >= 10:
        return 5
    if count >= 5:
        return 4
    if count >= 3:
        return 3
    if count >= 2:
        return 2
    return 1


def monetary_score(amount: float) -> int:
    if amount >= 1000:
        return 5
    if amount >= 500:
        return 4
    if amount >= 200:
        return 3
    if amount >= 100:
        return 2
    return 1


def assign_segment(r: int, f: int, m: int) -> str:
    """First matching rule wins."""
    if r >= 4 and f >= 4 and m >= 4:
        return "Champions"
    if r >= 3 and f >= 3 and m >= 3:
        return "Loyal Customers"
    if r >= 4 and f <= 2:
        return "New Customers"
    if r <= 2 and f >= 3:
        return "At Risk"
    return "At Risk"


def days_since(then: object, now: pd.Timestamp) -> int:
    if then is None or pd.isna(then):
        return NEVER_PURCHASED_DAYS
    return int((now - pd.Timestamp(then)) // pd.Timedelta(days=1))


def compute_rfm(customers: pd.DataFrame, sales: pd.DataFrame, now: pd.Timestamp) -> pd.DataFrame:
    """Score every customer against their full sales history, richest first."""
    cols = [
        "id",
        "name",
        "email",
        "last_purchase",
        "recency",
        "frequency",
        "monetary",
        "recency_score",
        "frequency_score",
        "monetary_score",
        "segment",
    ]
    if customers.empty:
        return pd.DataFrame(columns=cols)

    per_customer = sales.dropna(subset=["customer_id"]).groupby("customer_id").agg(
        frequency=("total", "count"),
        monetary=("total", "sum"),
    )
    frequency = {str(k): int(v) for k, v in per_customer["frequency"].items()}
    monetary = {str(k): float(v) for k, v in per_customer["monetary"].items()}

    rfm = customers[["id", "name", "email", "last_purchase"]].copy()
    rfm["id"] = rfm["id"].astype(str)
    rfm["recency"] = [days_since(lp, now) for lp in rfm["last_purchase"]]
    rfm["frequency"] = [frequency.get(cid, 0) for cid in rfm["id"]]
    rfm["monetary"] = [monetary.get(cid, 0.0) for cid in rfm["id"]]
    rfm["recency_score"] = rfm["recency"].apply(recency_score)
    rfm["frequency_score"] = rfm["frequency"].apply(frequency_score)
    rfm["monetary_score"] = rfm["monetary"].apply(monetary_score)
    rfm["segment"] = [
        assign_segment(r, f, m) for r, f, m in zip(rfm["recency_score"], rfm["frequency_score"], rfm["monetary_score"])
    ]
    rfm["last_purchase"] = pd.Series(
        [ts.isoformat() if pd.notna(ts) else None for ts in rfm["last_purchase"]], index=rfm.index, dtype=object
    )
    return rfm.sort_values("monetary", ascending=False, kind="mergesort").reset_index(drop=True)[cols]


def segment_distribution(rfm: pd.DataFrame) -> List[Dict[str, Any]]:
    total = len(rfm)
    counts = rfm["segment"].value_counts() if total else pd.Series(dtype=int)
    return [
        {
            "segment": seg,
            "count": int(counts.get(seg, 0)),
            "percentage": safe_ratio(int(counts.get(seg, 0)), total, scale=100),
        }
        for seg in SEGMENTS
    ]


# ---------------- Forecast ----------------
def forecast_product(product_id: str, name: str, stock: int, units_sold: float, window_days: float) -> Forecast:
    average_daily = units_sold / max(1.0, window_days)
    predicted = round_half_up(average_daily * FORECAST_HORIZON_DAYS)
    return Forecast(
        product_id=product_id,
        product_name=name,
        current_stock=int(stock),
        predicted_demand=predicted,
        recommended_order=max(0, predicted - int(stock)),
        confidence=float(min(95, max(60, units_sold * 10))),
        period=f"{FORECAST_HORIZON_DAYS} days",
    )


def compute_forecasts(sales: pd.DataFrame, products: pd.DataFrame, window: DateWindow) -> List[Forecast]:
    stats = compute_product_stats(sales, products)
    return [
        forecast_product(row.product_id, row.name, row.stock, float(row.units), window.days)
        for row in stats.itertuples(index=False)
    ]


# ---------------- KPIs ----------------
def growth_pct(current: float, previous: float) -> float:
    return safe_ratio(current - previous, previous, scale=100) if previous > 0 else 0.0


def trend_of(growth: float) -> Trend:
    if growth > 0:
        return "up"
    if growth < 0:
        return "down"
    return "stable"


def _average_order_value(sales: pd.DataFrame) -> float:
    return safe_ratio(float(sales["total"].sum()), len(sales))


def compute_kpis(ctx: Dict[str, Any]) -> List[KPI]:
    window: DateWindow = ctx["window"]
    sales: pd.DataFrame = ctx["filtered_sales"]
    previous: pd.DataFrame = ctx["previous_sales"]
    products: pd.DataFrame = ctx["products"]
    customers: pd.DataFrame = ctx["customers"]
    period = window.key

    revenue = float(sales["total"].sum())
    profit = float(sales["profit"].sum())
    aov = _average_order_value(sales)
    revenue_growth = growth_pct(revenue, float(previous["total"].sum()))
    profit_growth = growth_pct(profit, float(previous["profit"].sum()))
    aov_growth = growth_pct(aov, _average_order_value(previous))

    inventory_value = float((products["price"] * products["stock"]).sum()) if not products.empty else 0.0
    turnover = safe_ratio(revenue, inventory_value)
    active = int(window.contains(customers["last_purchase"]).sum()) if not customers.empty else 0

    return [
        KPI("revenue", "Total Revenue", revenue, revenue * 1.2, "$", trend_of(revenue_growth), period, revenue_growth),
        KPI("profit", "Total Profit", profit, profit * 1.15, "$", trend_of(profit_growth), period, profit_growth),
        KPI("aov", "Average Order Value", aov, aov * 1.1, "$", trend_of(aov_growth), period, aov_growth),
        KPI("customers", "Active Customers", float(active), active * 1.25, "", "up", period, 0.0),
        KPI("turnover", "Inventory Turnover", turnover, 4.0, "x", "up" if turnover > 2 else "down", period, 0.0),
    ]


def compute_goals(kpis: List[KPI], filters: DashboardFilters) -> List[Dict[str, Any]]:
    by_id = {k.id: k for k in kpis}
    revenue, profit = by_id["revenue"].value, by_id["profit"].value
    goals = [
        ("Monthly Revenue", revenue, by_id["revenue"].target, "$"),
        ("Customer Acquisition", by_id["customers"].value, filters.goals.customer_acquisition, ""),
        ("Profit Margin", safe_ratio(profit, revenue, scale=100), filters.goals.profit_margin, "%"),
        ("Inventory Turnover", by_id["turnover"].value, filters.goals.inventory_turnover, "x"),
    ]
    out = []
    for name, current, target, unit in goals:
        percentage = min(100.0, safe_ratio(current, target, scale=100))
        out.append(
            {
                "name": name,
                "current": current,
                "target": target,
                "unit": unit,
                "percentage": percentage,
                "status": "On Track" if percentage >= 80 else "Needs Attention",
            }
        )
    return out


def compute_trend(ctx: Dict[str, Any]) -> pd.DataFrame:
    trend = compute_daily_trend(ctx["filtered_sales"], ctx["filtered_returns"], ctx["window"])
    trend = trend.rename(columns={"sales": "orders"})
    trend["name"] = trend["date"].dt.strftime("%b %d")
    prev = trend["revenue"].shift(1)
    trend["revenue_change"] = [
        0.0 if pd.isna(p) else (rev - p) / max(p, 1) * 100 for rev, p in zip(trend["revenue"], prev)
    ]
    return trend


def compute_intelligence(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    window: DateWindow = ctx["window"]
    settings: Settings = ctx.get("settings", Settings())

    kpis = compute_kpis(ctx)
    forecasts = compute_forecasts(ctx["filtered_sales"], ctx["products"], window)
    rfm = compute_rfm(ctx["customers"], ctx["sales"], window.now)
    segments = segment_distribution(rfm)
    trend = compute_trend(ctx)

    kpi_rows = []
    for k in kpis:
        row = asdict(k)
        row["progress"] = k.progress
        row["display_value"] = format_currency(k.value, settings) if k.unit == "$" else f"{k.value:.{1 if k.unit == 'x' else 0}f}{k.unit}"
        kpi_rows.append(row)

    forecast_df = pd.DataFrame([asdict(f) for f in forecasts])
    charts: Dict[str, Any] = {}
    if not trend.empty:
        charts["trend"] = daily_lines(trend[["day", "revenue", "profit"]], x="day", value_vars=["revenue", "profit"])
    if rfm.shape[0]:
        charts["segments"] = share_donut(pd.DataFrame(segments), label="segment", value="count")
    if not forecast_df.empty:
        charts["forecast"] = ranked_bars(
            forecast_df, label="product_name", value="predicted_demand", title="Predicted 30-day demand", value_format=","
        )

    return {
        "filters": asdict(filters),
        "window": window.as_dict(),
        "kpis": kpi_rows,
        "forecasts": [asdict(f) for f in forecasts],
        "customers": rfm.to_dict(orient="records"),
        "segments": segments,
        "trend": trend.drop(columns=["date"]).to_dict(orient="records"),
        "goals": compute_goals(kpis, filters),
        "charts": charts,
    }
