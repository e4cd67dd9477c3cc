"""Quarter cohort aggregation of completed discovery cycles (box-plot stats)."""

from __future__ import annotations

from collections.abc import Collection, Iterable
from datetime import datetime

import pandas as pd
import pytz

from discovery_app.core.config import CYCLE_METRICS, DEFAULT_COHORT_QUARTERS, IQR_OUTLIER_FACTOR, TIMEZONE
from discovery_app.core.models import BoxPlotStats, CycleTimeRecord, QuarterCohort


def quarter_for_date(value: datetime, tz=None) -> str:
    """Completion quarter label ("Q1_2025") of a date in the dashboard timezone.

    Naive datetimes are taken as already local.
    """
    tz = tz or pytz.timezone(TIMEZONE)
    local = value.astimezone(tz) if value.tzinfo else value
    return f"Q{(local.month - 1) // 3 + 1}_{local.year}"


def quarter_sort_key(label: str) -> tuple[int, int]:
    """Chronological sort key for "Q{n}_{year}" labels; unparseable labels sort last."""
    try:
        q_part, year_part = label.split("_", 1)
        return int(year_part), int(q_part.lstrip("Qq"))
    except (AttributeError, ValueError):
        return 9999, 9


def sort_quarters(labels: Iterable[str]) -> list[str]:
    return sorted(set(labels), key=quarter_sort_key)


def box_plot_stats(values: Iterable[float]) -> BoxPlotStats:
    """Min / quartiles / max / mean with linear interpolation at rank p*(n-1).

    Returns all-zero stats for empty input.
    """
    series = pd.Series(list(values), dtype="float64").dropna()
    if series.empty:
        return BoxPlotStats()
    q1, median, q3 = series.quantile([0.25, 0.5, 0.75], interpolation="linear").tolist()
    return BoxPlotStats(
        min=float(series.min()),
        q1=float(q1),
        median=float(median),
        q3=float(q3),
        max=float(series.max()),
        mean=float(series.mean()),
    )


def split_outliers(values: Iterable[int], stats: BoxPlotStats) -> tuple[list[int], list[int]]:
    """Partition values into (inliers, outliers) with the 1.5 x IQR rule."""
    iqr = stats.q3 - stats.q1
    lower = stats.q1 - IQR_OUTLIER_FACTOR * iqr
    upper = stats.q3 + IQR_OUTLIER_FACTOR * iqr
    inliers: list[int] = []
    outliers: list[int] = []
    for value in values:
        if value < lower or value > upper:
            outliers.append(value)
        else:
            inliers.append(value)
    return inliers, outliers


def build_cohort(quarter: str, values: Iterable[int]) -> QuarterCohort:
    ordered = sorted(values)
    if not ordered:
        return QuarterCohort(quarter=quarter)
    stats = box_plot_stats(ordered)
    data, outliers = split_outliers(ordered, stats)
    return QuarterCohort(quarter=quarter, data=data, outliers=outliers, size=len(ordered), stats=stats)


def metric_value(record: CycleTimeRecord, metric: str) -> int:
    try:
        attr = CYCLE_METRICS[metric]
    except KeyError as exc:
        raise ValueError(f"Unknown cycle metric {metric!r}; expected one of {sorted(CYCLE_METRICS)}") from exc
    return int(getattr(record.info, attr) or 0)


def build_quarter_cohorts(
    records: Iterable[CycleTimeRecord],
    metric: str = "calendar",
    excluded_keys: Collection[str] | None = None,
    quarters: Iterable[str] | None = None,
) -> dict[str, QuarterCohort]:
    """Group completed cycles by completion quarter and compute box-plot stats.

    Parameters
    ----------
    records : Iterable[CycleTimeRecord]
        Cached cycle records; incomplete cycles are ignored.
    metric : str
        "calendar" or "active".
    excluded_keys : Collection[str] | None
        Issue keys left out of every cohort.
    quarters : Iterable[str] | None
        Quarters that must appear even when empty. When no record qualifies
        and no quarters are given, the default quarter range is returned.

    Returns
    -------
    dict[str, QuarterCohort]
        Cohorts in chronological quarter order.
    """
    excluded = set(excluded_keys or ())
    grouped: dict[str, list[int]] = {}
    for record in records:
        if record.issue_key in excluded or not record.info.is_completed:
            continue
        quarter = record.info.completion_quarter
        if quarter is None:
            continue
        grouped.setdefault(quarter, []).append(metric_value(record, metric))

    wanted = set(grouped)
    if quarters is not None:
        wanted.update(quarters)
    elif not wanted:
        wanted.update(DEFAULT_COHORT_QUARTERS)
    return {q: build_cohort(q, grouped.get(q, [])) for q in sort_quarters(wanted)}


def cohorts_to_frame(cohorts: dict[str, QuarterCohort]) -> pd.DataFrame:
    """Long-form frame: one row per value, flagged as inlier/outlier."""
    rows: list[dict[str, object]] = []
    for order, (quarter, cohort) in enumerate(cohorts.items()):
        for value in cohort.data:
            rows.append({"quarter": quarter, "order": order, "days": value, "is_outlier": False})
        for value in cohort.outliers:
            rows.append({"quarter": quarter, "order": order, "days": value, "is_outlier": True})
    if not rows:
        return pd.DataFrame(columns=["quarter", "order", "days", "is_outlier"])
    return pd.DataFrame(rows)


def cohort_stats_frame(cohorts: dict[str, QuarterCohort]) -> pd.DataFrame:
    """One row per quarter with size and box-plot statistics."""
    rows = []
    for order, (quarter, cohort) in enumerate(cohorts.items()):
        rows.append(
            {
                "quarter": quarter,
                "order": order,
                "size": cohort.size,
                "outliers": len(cohort.outliers),
                "min": cohort.stats.min,
                "q1": cohort.stats.q1,
                "median": cohort.stats.median,
                "q3": cohort.stats.q3,
                "max": cohort.stats.max,
                "mean": cohort.stats.mean,
            }
        )
    return pd.DataFrame(rows)


def cycles_to_frame(records: Iterable[CycleTimeRecord]) -> pd.DataFrame:
    rows = []
    for record in records:
        row = {"key": record.issue_key}
        row.update(record.info.as_dict())
        row["calculated_at"] = record.calculated_at
        rows.append(row)
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows)
    for col in ("discovery_start_date", "discovery_end_date", "calculated_at"):
        df[col] = pd.to_datetime(df[col], utc=True, errors="coerce")
    return df.sort_values(by="key", kind="stable").reset_index(drop=True)
