from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

import pandas as pd

from retail_core.charts import daily_lines, ranked_bars
from retail_core.data import compute_daily_trend, compute_product_stats, product_names
from retail_core.filters import DashboardFilters, DateWindow
from retail_core.formatting import format_currency, format_percent, safe_ratio
from retail_core.models import Settings


def rank_products_by_revenue(sales: pd.DataFrame, products: pd.DataFrame, top_n: int = 10) -> pd.DataFrame:
    """Top products by summed sale totals; ties keep first-seen order."""
    cols = ["rank", "product_id", "name", "revenue"]
    base = sales.dropna(subset=["product_id"])
    if base.empty:
        return pd.DataFrame(columns=cols)
    top = base.groupby("product_id", sort=False)["total"].sum().reset_index(name="revenue")
    top["product_id"] = top["product_id"].astype(str)
    top["name"] = top["product_id"].map(product_names(products)).fillna("Unknown")
    top = top.sort_values("revenue", ascending=False, kind="mergesort").head(top_n).reset_index(drop=True)
    top.insert(0, "rank", top.index + 1)
    return top[cols]


def compute_category_performance(stats: pd.DataFrame) -> pd.DataFrame:
    cols = ["category", "revenue", "profit", "sales", "profit_margin"]
    if stats.empty:
        return pd.DataFrame(columns=cols)
    cats = (
        stats.groupby("category", sort=False)
        .agg(revenue=("revenue", "sum"), profit=("profit", "sum"), sales=("sales", "sum"))
        .reset_index()
    )
    cats["profit_margin"] = [safe_ratio(p, r, scale=100) if r > 0 else 0.0 for p, r in zip(cats["profit"], cats["revenue"])]
    return cats[cols]


def compute_profit_margins(stats: pd.DataFrame, top_n: int = 10) -> pd.DataFrame:
    """Products with revenue, ranked by profit / revenue * 100. No upper clamp."""
    cols = ["product_id", "name", "margin", "revenue", "profit"]
    sold = stats[stats["revenue"] > 0].copy() if not stats.empty else stats
    if sold.empty:
        return pd.DataFrame(columns=cols)
    sold["margin"] = sold["profit"] / sold["revenue"] * 100
    return sold.sort_values("margin", ascending=False, kind="mergesort").head(top_n).reset_index(drop=True)[cols]


def compute_sales_vs_returns(sales: pd.DataFrame, returns: pd.DataFrame) -> List[Dict[str, Any]]:
    rows = [
        {"name": "Sales", "value": int(len(sales)), "amount": float(sales["total"].sum())},
        {"name": "Returns", "value": int(len(returns)), "amount": float(returns["refund_amount"].sum())},
    ]
    total = sum(r["value"] for r in rows)
    for r in rows:
        r["percentage"] = safe_ratio(r["value"], total, scale=100)
    return rows


def _trend_label(window: DateWindow) -> str:
    return "%b %d" if window.key == "7d" else "%m/%d"


def compute_analytics(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    window: DateWindow = ctx["window"]
    settings: Settings = ctx.get("settings", Settings())
    products: pd.DataFrame = ctx["products"]
    filtered_sales: pd.DataFrame = ctx["filtered_sales"]
    regular_sales: pd.DataFrame = ctx["regular_sales"]
    adjustments: pd.DataFrame = ctx["return_adjustments"]
    filtered_returns: pd.DataFrame = ctx["filtered_returns"]

    total_revenue = float(filtered_sales["total"].sum())
    total_profit = float(filtered_sales["profit"].sum())
    adjustment_revenue = abs(float(adjustments["total"].sum()))
    adjustment_profit = abs(float(adjustments["profit"].sum()))
    return_rate = safe_ratio(len(filtered_returns), len(filtered_sales), scale=100)

    kpis = {
        "total_revenue": total_revenue,
        "total_profit": total_profit,
        "total_sales": int(len(regular_sales)),
        "return_rate": return_rate,
        "return_adjustments": {
            "count": int(len(adjustments)),
            "revenue": adjustment_revenue,
            "profit": adjustment_profit,
        },
    }
    display = {
        "total_revenue": format_currency(total_revenue, settings),
        "total_profit": format_currency(total_profit, settings),
        "return_rate": format_percent(return_rate),
        "return_adjustment_revenue": format_currency(adjustment_revenue, settings) if len(adjustments) else None,
        "return_adjustment_profit": format_currency(adjustment_profit, settings) if len(adjustments) else None,
    }

    daily = compute_daily_trend(filtered_sales, filtered_returns, window)
    daily["name"] = daily["date"].dt.strftime(_trend_label(window))
    daily["performance"] = [
        safe_ratio(rev - ret, rev, scale=100) if rev > 0 else 0.0 for rev, ret in zip(daily["revenue"], daily["returns"])
    ]

    stats = compute_product_stats(filtered_sales, products)
    top_products = rank_products_by_revenue(filtered_sales, products, filters.top_n)
    categories = compute_category_performance(stats)
    margins = compute_profit_margins(stats, filters.top_n)

    charts: Dict[str, Any] = {}
    if not daily.empty:
        charts["revenue_trend"] = daily_lines(daily[["day", "revenue", "profit", "returns"]], x="day", value_vars=["revenue", "profit", "returns"])
    if not top_products.empty:
        charts["top_products"] = ranked_bars(top_products, label="name", value="revenue", title="Revenue")
    if not categories.empty:
        charts["categories"] = ranked_bars(categories, label="category", value="revenue", title="Revenue", color="category")
    if not margins.empty:
        charts["profit_margins"] = ranked_bars(margins, label="name", value="margin", title="Profit Margin (%)", value_format=".1f")

    return {
        "filters": asdict(filters),
        "window": window.as_dict(),
        "kpis": kpis,
        "display": display,
        "daily": daily.drop(columns=["date"]).to_dict(orient="records"),
        "top_products": top_products.to_dict(orient="records"),
        "categories": categories.to_dict(orient="records"),
        "sales_vs_returns": compute_sales_vs_returns(filtered_sales, filtered_returns),
        "profit_margins": margins.to_dict(orient="records"),
        "charts": charts,
    }
