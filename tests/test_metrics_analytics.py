import json

import pandas as pd
import pytest

from retail_core.metrics_analytics import compute_analytics, rank_products_by_revenue
from retail_core.data import products_frame, sales_frame

PRODUCTS = [
    {"id": "p1", "name": "Mug", "category": "Kitchen", "price": 5, "stock": 10},
    {"id": "p2", "name": "Lamp", "category": "Home", "price": 20, "stock": 3},
    {"id": "p3", "name": "Pan", "category": "Kitchen", "price": 15, "stock": 0},
    {"id": "p4", "name": "Rug", "category": "Decor", "price": 40, "stock": 2},
]


def _sale(sid, pid, total, profit, date="2024-03-14T10:00:00", **extra):
    return {"id": sid, "product_id": pid, "date": date, "quantity": 1, "total": total, "profit": profit, **extra}


def test_kpis_separate_regular_sales_from_adjustments(make_ctx):
    filters, ctx = make_ctx(
        products=PRODUCTS,
        sales=[
            _sale("s1", "p1", 100, 20),
            _sale("s2", "p2", 50, 30),
            _sale("a1", "p1", -40, -8, kind="return_adjustment"),
        ],
        returns=[{"id": "r1", "product_id": "p1", "date": "2024-03-14", "refund_amount": 40}],
    )
    payload = compute_analytics(filters, ctx)
    kpis = payload["kpis"]
    assert kpis["total_revenue"] == 110
    assert kpis["total_profit"] == 42
    assert kpis["total_sales"] == 2
    assert kpis["return_adjustments"] == {"count": 1, "revenue": 40, "profit": 8}
    assert kpis["return_rate"] == pytest.approx(100 / 3)
    assert payload["display"]["total_revenue"] == "$110.00"
    assert payload["display"]["return_adjustment_revenue"] == "$40.00"


def test_no_sales_gives_zero_return_rate_and_no_adjustment_display(make_ctx):
    filters, ctx = make_ctx(products=PRODUCTS, returns=[{"id": "r1", "product_id": "p1", "date": "2024-03-14", "refund_amount": 5}])
    payload = compute_analytics(filters, ctx)
    assert payload["kpis"]["return_rate"] == 0
    assert payload["display"]["return_adjustment_revenue"] is None
    assert payload["top_products"] == []
    assert payload["profit_margins"] == []


def test_daily_rows_cover_window_and_carry_performance(make_ctx):
    filters, ctx = make_ctx(
        products=PRODUCTS,
        sales=[_sale("s1", "p1", 100, 20, date="2024-03-15T09:00:00"), _sale("s2", "p2", 50, 30, date="2024-03-15T10:00:00")],
        returns=[{"id": "r1", "product_id": "p1", "date": "2024-03-15T11:00:00", "refund_amount": 15}],
        date_range="7d",
    )
    daily = compute_analytics(filters, ctx)["daily"]
    assert len(daily) == 8
    last = daily[-1]
    assert last["day"] == "2024-03-15"
    assert last["name"] == "Mar 15"
    assert (last["revenue"], last["profit"], last["returns"], last["sales"]) == (150, 50, 15, 2)
    assert last["performance"] == pytest.approx(90.0)
    assert daily[0]["performance"] == 0


def test_daily_labels_are_numeric_for_longer_windows(make_ctx):
    filters, ctx = make_ctx(products=PRODUCTS, date_range="30d")
    daily = compute_analytics(filters, ctx)["daily"]
    assert daily[-1]["name"] == "03/15"
    assert len(daily) == 31


def test_top_products_sorted_and_truncated():
    products = products_frame([{"id": f"p{i}", "name": f"Item {i}", "category": "C", "price": 1, "stock": 1} for i in range(12)])
    sales = sales_frame([_sale(f"s{i}", f"p{i}", (i * 7) % 12 + 1, 0) for i in range(12)])
    top = rank_products_by_revenue(sales, products, 10)
    assert len(top) == 10
    revenue = top["revenue"].tolist()
    assert revenue == sorted(revenue, reverse=True)
    assert top["rank"].tolist() == list(range(1, 11))


def test_top_products_ties_keep_input_order_and_unknown_names():
    products = products_frame(PRODUCTS)
    sales = sales_frame([_sale("s1", "p3", 50, 0), _sale("s2", "zz", 50, 0), _sale("s3", "p1", 50, 0), _sale("s4", "p2", 80, 0)])
    top = rank_products_by_revenue(sales, products)
    assert top["product_id"].tolist() == ["p2", "p3", "zz", "p1"]
    assert top["name"].tolist() == ["Lamp", "Pan", "Unknown", "Mug"]


def test_category_rollup_includes_unsold_categories(make_ctx):
    filters, ctx = make_ctx(
        products=PRODUCTS,
        sales=[_sale("s1", "p1", 100, 20), _sale("s2", "p3", 50, 5), _sale("s3", "p2", 40, 10)],
    )
    cats = pd.DataFrame(compute_analytics(filters, ctx)["categories"])
    assert cats["category"].tolist() == ["Kitchen", "Home", "Decor"]
    kitchen = cats.iloc[0]
    assert (kitchen["revenue"], kitchen["profit"], kitchen["sales"]) == (150, 25, 2)
    assert kitchen["profit_margin"] == pytest.approx(25 / 150 * 100)
    assert cats.iloc[2]["revenue"] == 0
    assert cats.iloc[2]["profit_margin"] == 0


def test_profit_margin_is_not_clamped(make_ctx):
    filters, ctx = make_ctx(
        products=PRODUCTS,
        sales=[_sale("s1", "p1", 100, 150), _sale("s2", "p2", 100, 10), _sale("s3", "p3", 0, 0)],
    )
    margins = compute_analytics(filters, ctx)["profit_margins"]
    assert [m["product_id"] for m in margins] == ["p1", "p2"]
    assert margins[0]["margin"] == pytest.approx(150.0)
    assert margins[1]["margin"] == pytest.approx(10.0)


def test_sales_vs_returns_shares(make_ctx):
    filters, ctx = make_ctx(
        products=PRODUCTS,
        sales=[_sale("s1", "p1", 100, 20), _sale("s2", "p1", 60, 20), _sale("s3", "p1", 40, 20)],
        returns=[{"id": "r1", "product_id": "p1", "date": "2024-03-14", "refund_amount": 40}],
    )
    rows = compute_analytics(filters, ctx)["sales_vs_returns"]
    assert rows[0] == {"name": "Sales", "value": 3, "amount": 200.0, "percentage": 75.0}
    assert rows[1] == {"name": "Returns", "value": 1, "amount": 40.0, "percentage": 25.0}


def test_iqd_display_and_charts(make_ctx):
    filters, ctx = make_ctx(
        products=PRODUCTS,
        sales=[_sale("s1", "p1", 1000, 200)],
        settings={"currency": "IQD", "usd_to_iqd_rate": 1310},
    )
    payload = compute_analytics(filters, ctx)
    assert payload["display"]["total_revenue"] == "IQD 1,310,000"
    assert payload["kpis"]["total_revenue"] == 1000
    assert {"revenue_trend", "top_products", "categories", "profit_margins"} <= set(payload["charts"])
    assert "bar" in json.dumps(payload["charts"]["top_products"]["mark"])
