"""Status and health normalization and categorization utilities.

Status groups come from config.py (DISCOVERY_STATUSES, BUILD_STATUS,
INACTIVE_STATUSES). Discovery and cycle-ending statuses are matched by
containment so decorated workflow names ("05 Solution Discovery (legacy)")
still classify; inactive statuses are matched exactly.
"""

from __future__ import annotations

from .config import (
    BUILD_STATUS,
    COMPLETED_STATUS_MARKERS,
    DISCOVERY_STATUSES,
    HEALTH_ALIASES,
    INACTIVE_STATUSES,
    ON_HOLD_HEALTH,
    TERMINAL_LIVE_STATUS,
    WONT_DO_STATUS,
)
from .models import EndDateLogic


def clean_status_name(value: str | None) -> str | None:
    """Sanitize a status string, converting null-like values to None.

    Parameters
    ----------
    value : str | None
        Raw status string.

    Returns
    -------
    str | None
        Trimmed status string, or None for empty/null values.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text.lower() in {"nan", "none", "null"}:
        return None
    return text


def normalize_health(value: str | None) -> str | None:
    """Map a raw health value to its canonical name.

    Unknown values are returned trimmed, so new health options still flow
    through; only "On Hold" matters for activity accounting.

    Examples
    --------
    >>> normalize_health("on hold")
    'On Hold'
    >>> normalize_health("  At Risk ")
    'At Risk'
    """
    text = clean_status_name(value)
    if text is None:
        return None
    return HEALTH_ALIASES.get(text.lower(), text)


def is_discovery_status(value: str | None) -> bool:
    if not value:
        return False
    return any(name in value for name in DISCOVERY_STATUSES)


def is_build_status(value: str | None) -> bool:
    """True when the status contains the Build status (the direct-to-build marker)."""
    if not value:
        return False
    return BUILD_STATUS in value


def is_inactive_status(value: str | None) -> bool:
    text = clean_status_name(value)
    return text is not None and text in INACTIVE_STATUSES


def is_on_hold(health: str | None) -> bool:
    return normalize_health(health) == ON_HOLD_HEALTH


def classify_cycle_end(to_status: str | None) -> EndDateLogic | None:
    """Classify a status a discovery cycle can end in.

    Returns None when leaving discovery into ``to_status`` does not end the
    cycle (e.g. moving between discovery statuses or back to the inbox).
    """
    if not to_status:
        return None
    if BUILD_STATUS in to_status:
        return EndDateLogic.BUILD_TRANSITION
    if WONT_DO_STATUS in to_status:
        return EndDateLogic.WONT_DO
    if TERMINAL_LIVE_STATUS in to_status:
        return EndDateLogic.LIVE
    if any(marker in to_status for marker in COMPLETED_STATUS_MARKERS):
        return EndDateLogic.COMPLETED
    return None


def is_inactive(status: str | None, health: str | None, *, hold_overrides_discovery_status: bool = False) -> bool:
    """Decide whether a project is being actively progressed.

    A project is inactive when its status is an inactive status, or when its
    health is "On Hold". With ``hold_overrides_discovery_status`` False, an
    "On Hold" health is ignored while the status is a discovery status.
    """
    if is_inactive_status(status):
        return True
    if not is_on_hold(health):
        return False
    if hold_overrides_discovery_status:
        return True
    return not is_discovery_status(status)
