"""Chart builders (Altair) for discovery cycle-time cohorts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

import altair as alt
import pandas as pd
import pytz

from discovery_app.analytics.aggregations.cohorts import cohort_stats_frame, cohorts_to_frame
from discovery_app.core.config import TIMEZONE
from discovery_app.core.models import InactivePeriod, QuarterCohort


def cohort_box_plot(cohorts: dict[str, QuarterCohort], metric_label: str = "Calendar days"):
    """Box per quarter from precomputed stats, with outliers as points.

    Returns None when every cohort is empty.
    """
    stats = cohort_stats_frame(cohorts)
    if stats.empty or int(stats["size"].sum()) == 0:
        return None
    stats = stats[stats["size"] > 0]
    order = list(stats["quarter"])
    x = alt.X("quarter:N", title="Completion quarter", sort=order)

    whiskers = (
        alt.Chart(stats)
        .mark_rule(color="#555555")
        .encode(x=x, y=alt.Y("min:Q", title=metric_label), y2="max:Q")
    )
    boxes = (
        alt.Chart(stats)
        .mark_bar(size=36, color="#9ecae1", stroke="#1f77b4")
        .encode(
            x=x,
            y="q1:Q",
            y2="q3:Q",
            tooltip=[
                alt.Tooltip("quarter:N", title="Quarter"),
                alt.Tooltip("size:Q", title="Projects"),
                alt.Tooltip("min:Q", title="Min", format=".0f"),
                alt.Tooltip("q1:Q", title="Q1", format=".1f"),
                alt.Tooltip("median:Q", title="Median", format=".1f"),
                alt.Tooltip("q3:Q", title="Q3", format=".1f"),
                alt.Tooltip("max:Q", title="Max", format=".0f"),
                alt.Tooltip("mean:Q", title="Mean", format=".1f"),
            ],
        )
    )
    medians = alt.Chart(stats).mark_tick(color="#d62728", thickness=2, size=36).encode(x=x, y="median:Q")
    chart = whiskers + boxes + medians

    points = cohorts_to_frame(cohorts)
    outliers = points[points["is_outlier"].astype(bool)] if not points.empty else points
    if not outliers.empty:
        chart = chart + (
            alt.Chart(outliers)
            .mark_circle(color="#ff7f0e", size=60)
            .encode(
                x=x,
                y="days:Q",
                tooltip=[alt.Tooltip("quarter:N", title="Quarter"), alt.Tooltip("days:Q", title="Days")],
            )
        )
    return chart.properties(height=360)


def median_trend_chart(cohorts: dict[str, QuarterCohort], metric_label: str = "Calendar days"):
    stats = cohort_stats_frame(cohorts)
    if stats.empty:
        return None
    long = stats.melt(id_vars=["quarter", "size"], value_vars=["median", "mean"], var_name="stat", value_name="days")
    order = list(stats["quarter"])
    return (
        alt.Chart(long)
        .mark_line(point=True)
        .encode(
            x=alt.X("quarter:N", title="Completion quarter", sort=order),
            y=alt.Y("days:Q", title=metric_label),
            color=alt.Color("stat:N", title="Statistic"),
            tooltip=[
                alt.Tooltip("quarter:N", title="Quarter"),
                alt.Tooltip("stat:N", title="Statistic"),
                alt.Tooltip("days:Q", title="Days", format=".1f"),
                alt.Tooltip("size:Q", title="Projects"),
            ],
        )
        .properties(height=260)
    )


def inactive_timeline(periods: Sequence[InactivePeriod], start: datetime | None, end: datetime | None):
    """Gantt-style strip: the discovery cycle with its inactive periods on top."""
    if start is None:
        return None
    tz = pytz.timezone(TIMEZONE)
    end = end or datetime.now(tz=tz)
    rows = [{"segment": "Discovery", "start": start, "end": end, "days": (end - start).total_seconds() / 86400.0}]
    rows.extend({"segment": "Inactive", "start": p.start, "end": p.end, "days": p.days} for p in periods)
    df = pd.DataFrame(rows)
    for col in ("start", "end"):
        df[col] = pd.to_datetime(df[col], utc=True, errors="coerce").dt.tz_convert(tz)
    return (
        alt.Chart(df)
        .mark_bar(height=18)
        .encode(
            x=alt.X("start:T", title="Date"),
            x2="end:T",
            y=alt.Y("segment:N", title=None, sort=["Discovery", "Inactive"]),
            color=alt.Color(
                "segment:N",
                scale=alt.Scale(domain=["Discovery", "Inactive"], range=["#1f77b4", "#bbbbbb"]),
                legend=None,
            ),
            tooltip=[
                alt.Tooltip("segment:N", title="Segment"),
                alt.Tooltip("start:T", title="From"),
                alt.Tooltip("end:T", title="To"),
                alt.Tooltip("days:Q", title="Days", format=".1f"),
            ],
        )
        .properties(height=120)
    )
