"""Discovery cycle boundary resolution.

Scans status transitions for the first entry into any discovery status and the
first subsequent exit from discovery into Build, Won't Do, the terminal Live
status, or a generic Done/Resolved status. Only one cycle per issue is
modelled: re-entering discovery after an exit does not start a new cycle.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import datetime

from discovery_app.core.models import CycleBoundaries, EndDateLogic, StatusTransition
from discovery_app.core.status import classify_cycle_end, is_build_status, is_discovery_status

SECONDS_PER_DAY = 86400.0


def calendar_days(start: datetime, end: datetime) -> int:
    """Elapsed days between two instants, rounded up."""
    return math.ceil((end - start).total_seconds() / SECONDS_PER_DAY)


def whole_days(start: datetime, end: datetime) -> int:
    """Elapsed days between two instants, rounded down."""
    return math.floor((end - start).total_seconds() / SECONDS_PER_DAY)


def resolve_cycle_boundaries(transitions: Sequence[StatusTransition], now: datetime) -> CycleBoundaries:
    """Resolve discovery start/end from ascending status transitions.

    Parameters
    ----------
    transitions : Sequence[StatusTransition]
        Status transitions sorted ascending by timestamp.
    now : datetime
        Evaluation instant, used as the end of open cycles.

    Returns
    -------
    CycleBoundaries
        ``start``/``end`` plus the end reason. ``is_open`` is True only for
        cycles still in discovery, whose ``end`` is ``now``.
    """
    if not transitions:
        return CycleBoundaries(None, None, EndDateLogic.NO_STATUS_CHANGES)

    start_index = next((i for i, t in enumerate(transitions) if is_discovery_status(t.to_status)), None)

    if start_index is None:
        direct = next((t for t in transitions if is_build_status(t.to_status)), None)
        if direct is not None:
            return CycleBoundaries(None, direct.timestamp, EndDateLogic.DIRECT_TO_BUILD)
        return CycleBoundaries(None, None, EndDateLogic.NO_DISCOVERY)

    start = transitions[start_index].timestamp
    for transition in transitions[start_index + 1 :]:
        if not is_discovery_status(transition.from_status):
            continue
        reason = classify_cycle_end(transition.to_status)
        if reason is not None:
            return CycleBoundaries(start, transition.timestamp, reason)

    return CycleBoundaries(start, now, EndDateLogic.STILL_IN_DISCOVERY, is_open=True)
