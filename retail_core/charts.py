from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def daily_lines(
    df: pd.DataFrame,
    *,
    x: str,
    value_vars: List[str],
    x_title: str = "Date",
    y_format: str = "$~s",
) -> Dict[str, Any]:
    """Multi-series line chart over calendar days, one line per metric column."""
    long_df = df.melt(id_vars=x, value_vars=value_vars, var_name="metric", value_name="value")
    hover = alt.selection_point(fields=["metric"], on="mouseover", empty="all")
    chart = (
        alt.Chart(long_df)
        .mark_line(point={"filled": True, "size": 40})
        .encode(
            x=alt.X(f"{x}:T", title=x_title, axis=alt.Axis(format="%b %d", grid=False)),
            y=alt.Y("value:Q", title=None, axis=alt.Axis(format=y_format, gridDash=[4, 4], domain=False, ticks=False)),
            color=alt.Color("metric:N", title="Metric"),
            opacity=alt.condition(hover, alt.value(1), alt.value(0.2)),
            tooltip=[
                alt.Tooltip(f"{x}:T", title=x_title, format="%Y-%m-%d"),
                alt.Tooltip("metric:N", title="Metric"),
                alt.Tooltip("value:Q", title="Value", format=",.2f"),
            ],
        )
        .add_params(hover)
        .properties(height=260)
    )
    return to_vega_spec(chart)


def ranked_bars(
    df: pd.DataFrame,
    *,
    label: str,
    value: str,
    title: str,
    value_format: str = "$,.2f",
    color: Optional[str] = None,
) -> Dict[str, Any]:
    """Horizontal bars in the row order of ``df`` (already ranked by the caller)."""
    hover = alt.selection_point(fields=[label], on="mouseover", empty="all")
    chart = (
        alt.Chart(df)
        .mark_bar()
        .encode(
            y=alt.Y(f"{label}:N", title=None, sort=None),
            x=alt.X(f"{value}:Q", title=title, axis=alt.Axis(gridDash=[4, 4], domain=False, ticks=False)),
            color=alt.Color(f"{color}:N") if color else alt.value("#2563eb"),
            opacity=alt.condition(hover, alt.value(1), alt.value(0.6)),
            tooltip=[alt.Tooltip(f"{label}:N", title=label.replace("_", " ").title()), alt.Tooltip(f"{value}:Q", format=value_format)],
        )
        .add_params(hover)
    )
    return to_vega_spec(chart)


def share_donut(df: pd.DataFrame, *, label: str, value: str) -> Dict[str, Any]:
    chart = (
        alt.Chart(df)
        .mark_arc(innerRadius=50)
        .encode(
            theta=alt.Theta(f"{value}:Q"),
            color=alt.Color(f"{label}:N", title=None),
            tooltip=[alt.Tooltip(f"{label}:N"), alt.Tooltip(f"{value}:Q", format=",")],
        )
    )
    return to_vega_spec(chart)
