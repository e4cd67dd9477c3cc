"""Discovery cycle-time engine: history -> DiscoveryCycleInfo + inactive periods."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from discovery_app.core.config import EngineSettings
from discovery_app.core.mappers import map_changelog
from discovery_app.core.models import ChangeRecord, DiscoveryCycleInfo, InactivePeriod

from .active_time import accumulate_active_time
from .cycle_boundaries import resolve_cycle_boundaries
from .transitions import NormalizedHistory, normalize_history

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DiscoveryCycleResult:
    info: DiscoveryCycleInfo
    inactive_periods: list[InactivePeriod] = field(default_factory=list)
    history: NormalizedHistory = field(default_factory=NormalizedHistory)
    is_open: bool = False


def compute_discovery_cycle(
    records: Iterable[ChangeRecord],
    *,
    now: datetime | None = None,
    settings: EngineSettings | None = None,
    issue_key: str | None = None,
) -> DiscoveryCycleResult:
    """Derive the discovery cycle of one issue from its change history.

    Never raises: an unexpected failure is logged and reported as the Error
    sentinel so batch callers keep going.
    """
    now = now or datetime.now(tz=UTC)
    settings = settings or EngineSettings()
    try:
        history = normalize_history(records)
        bounds = resolve_cycle_boundaries(history.status, now)
        if bounds.start is None or bounds.end is None:
            info = DiscoveryCycleInfo(
                discovery_start_date=bounds.start,
                discovery_end_date=bounds.end,
                end_date_logic=bounds.end_date_logic,
            )
            return DiscoveryCycleResult(info=info, history=history)

        active = accumulate_active_time(
            history.status,
            history.health,
            bounds.start,
            bounds.end,
            is_open=bounds.is_open,
            hold_overrides_discovery_status=settings.hold_overrides_discovery_status,
        )
        if active.inactive_days > active.calendar_days:
            logger.warning(
                "Inactive days (%s) exceed calendar days (%s) for %s; clamping active days to 0",
                active.inactive_days,
                active.calendar_days,
                issue_key or "<unknown issue>",
            )
        info = DiscoveryCycleInfo(
            discovery_start_date=bounds.start,
            discovery_end_date=None if bounds.is_open else bounds.end,
            end_date_logic=bounds.end_date_logic,
            calendar_days_in_discovery=active.calendar_days,
            active_days_in_discovery=active.active_days,
        )
        return DiscoveryCycleResult(
            info=info,
            inactive_periods=active.inactive_periods,
            history=history,
            is_open=bounds.is_open,
        )
    except Exception as exc:  # pragma: no cover - defensive boundary
        logger.warning("Failed to compute discovery cycle for %s: %s", issue_key or "<unknown issue>", exc)
        return DiscoveryCycleResult(info=DiscoveryCycleInfo.error(now))


def compute_from_payload(
    payload: Any,
    *,
    issue_key: str | None = None,
    now: datetime | None = None,
    settings: EngineSettings | None = None,
) -> DiscoveryCycleResult:
    """Convenience wrapper accepting a raw Jira changelog payload."""
    records = map_changelog(payload, issue_key=issue_key)
    return compute_discovery_cycle(records, now=now, settings=settings, issue_key=issue_key)
