"""Active-time accounting inside a discovery cycle.

Replays status and health transitions between the cycle start and end with a
two-state (active / inactive) machine. Interior gaps are counted in whole days
rounded down so adjacent transitions never count the same boundary day twice;
the cycle total uses the rounded-up calendar day count.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from itertools import groupby

from discovery_app.core.config import MIN_INACTIVE_PERIOD_DAYS
from discovery_app.core.models import HealthTransition, InactivePeriod, StatusTransition
from discovery_app.core.status import is_inactive

from .cycle_boundaries import SECONDS_PER_DAY, calendar_days, whole_days


@dataclass(slots=True)
class ActiveTimeResult:
    calendar_days: int
    inactive_days: int
    active_days: int
    inactive_periods: list[InactivePeriod] = field(default_factory=list)


def _merged_events(
    status: Sequence[StatusTransition],
    health: Sequence[HealthTransition],
) -> list[tuple[datetime, str, str]]:
    events = [(t.timestamp, "status", t.to_status) for t in status]
    events.extend((h.timestamp, "health", h.to_health) for h in health)
    # Status before health on equal timestamps
    events.sort(key=lambda e: (e[0], 0 if e[1] == "status" else 1))
    return events


def _maybe_period(start: datetime | None, end: datetime) -> InactivePeriod | None:
    if start is None:
        return None
    if (end - start).total_seconds() < MIN_INACTIVE_PERIOD_DAYS * SECONDS_PER_DAY:
        return None
    return InactivePeriod(start=start, end=end)


def accumulate_active_time(
    status: Sequence[StatusTransition],
    health: Sequence[HealthTransition],
    start: datetime,
    end: datetime,
    *,
    is_open: bool = False,
    hold_overrides_discovery_status: bool = False,
) -> ActiveTimeResult:
    """Count active and inactive days between ``start`` and ``end``.

    Parameters
    ----------
    status, health : Sequence
        Status and health transitions of the issue (whole history).
    start, end : datetime
        Resolved cycle boundaries. For open cycles ``end`` is "now".
    is_open : bool
        True when the cycle has not ended. A trailing inactive span is then
        left out of the inactive total.
    hold_overrides_discovery_status : bool
        Inactivity rule, see ``discovery_app.core.status.is_inactive``.

    Returns
    -------
    ActiveTimeResult
        Calendar, inactive and active day counts plus the inactive periods.
    """
    total_days = calendar_days(start, end)
    current_status: str | None = None
    current_health: str | None = None
    active = True
    last = start
    inactive_days = 0
    inactive_since: datetime | None = None
    periods: list[InactivePeriod] = []

    for ts, group in groupby(_merged_events(status, health), key=lambda e: e[0]):
        if ts < start:
            # The discovery entry starts the clock; earlier values do not apply.
            continue
        if ts > end:
            break
        for _, kind, value in group:
            if kind == "status":
                current_status = value
            else:
                current_health = value

        now_inactive = is_inactive(
            current_status,
            current_health,
            hold_overrides_discovery_status=hold_overrides_discovery_status,
        )
        gap = whole_days(last, ts)
        if active and now_inactive:
            active = False
            inactive_since = ts
        elif not active and not now_inactive:
            inactive_days += max(0, gap)
            period = _maybe_period(inactive_since, ts)
            if period is not None:
                periods.append(period)
            inactive_since = None
            active = True
        elif not active and now_inactive:
            inactive_days += max(0, gap)
        last = ts

    if not active:
        if not is_open:
            inactive_days += max(0, whole_days(last, end))
        period = _maybe_period(inactive_since, end)
        if period is not None:
            periods.append(period)

    active_days = max(0, total_days - inactive_days)
    return ActiveTimeResult(
        calendar_days=total_days,
        inactive_days=inactive_days,
        active_days=active_days,
        inactive_periods=periods,
    )
