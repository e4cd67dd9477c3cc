"""Mapping raw Jira changelog / issue JSON into domain models.

Jira returns the same changelog concept under different keys depending on the
endpoint: ``changelog.histories`` when expanded on an issue, ``values`` on the
paginated ``/issue/{key}/changelog`` endpoint. Everything is normalized here so
the engine never branches on payload shape.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

import pandas as pd

from .config import FIELD_IDS
from .models import ChangeRecord, FieldChange, IssueSummary
from .status import normalize_health

logger = logging.getLogger(__name__)


def parse_dt(val: Any) -> datetime | None:
    if not val:
        return None
    if isinstance(val, datetime):
        ts = pd.Timestamp(val)
        if ts.tzinfo is None:
            ts = ts.tz_localize("UTC")
        return ts.tz_convert("UTC").to_pydatetime()
    try:
        ts = pd.to_datetime(val, utc=True, errors="coerce")
    except (TypeError, ValueError):
        return None
    if ts is None or pd.isna(ts):
        return None
    return ts.to_pydatetime()


def _history_entries(payload: Any) -> list[Any]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, Mapping):
        return []
    # Issue payload with an expanded changelog
    if "changelog" in payload and isinstance(payload.get("changelog"), Mapping):
        return _history_entries(payload["changelog"])
    for key in ("values", "histories"):
        entries = payload.get(key)
        if isinstance(entries, list) and entries:
            return entries
    return []


def _map_field_change(item: Any) -> FieldChange | None:
    if not isinstance(item, Mapping):
        return None
    return FieldChange(
        field=item.get("field"),
        field_id=item.get("fieldId"),
        from_value=item.get("fromString"),
        to_value=item.get("toString"),
    )


def map_change_record(entry: Any) -> ChangeRecord | None:
    """Map one changelog history entry; None when its timestamp is unusable."""
    if not isinstance(entry, Mapping):
        return None
    created = parse_dt(entry.get("created"))
    if created is None:
        return None
    changes = tuple(c for c in (_map_field_change(i) for i in entry.get("items") or []) if c is not None)
    author = (entry.get("author") or {}).get("displayName") if isinstance(entry.get("author"), Mapping) else None
    return ChangeRecord(timestamp=created, changes=changes, author=author)


def map_changelog(payload: Any, *, issue_key: str | None = None) -> list[ChangeRecord]:
    """Normalize any changelog payload shape into ascending ChangeRecords.

    Entries with a missing or malformed ``created`` timestamp are skipped and
    reported through the module logger.
    """
    records: list[ChangeRecord] = []
    skipped = 0
    for entry in _history_entries(payload):
        record = map_change_record(entry)
        if record is None:
            skipped += 1
            continue
        records.append(record)
    if skipped:
        logger.warning(
            "Skipped %s changelog entr%s with unusable timestamps for %s",
            skipped,
            "y" if skipped == 1 else "ies",
            issue_key or "<unknown issue>",
        )
    records.sort(key=lambda r: r.timestamp)
    return records


def map_issue_summary(raw: Mapping[str, Any]) -> IssueSummary:
    fields = raw.get("fields") or {}
    health_value = fields.get(FIELD_IDS["health"])
    if isinstance(health_value, Mapping):
        health_value = health_value.get("value") or health_value.get("name")
    return IssueSummary(
        key=raw.get("key"),
        summary=fields.get("summary"),
        assignee=(fields.get("assignee") or {}).get("displayName") if fields.get("assignee") else None,
        status=(fields.get("status") or {}).get("name") if fields.get("status") else None,
        health=normalize_health(health_value) if isinstance(health_value, str) else None,
    )


def map_issue_summaries(raw_issues: Iterable[Mapping[str, Any]]) -> list[IssueSummary]:
    seen: set[str] = set()
    out: list[IssueSummary] = []
    for raw in raw_issues:
        key = raw.get("key")
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(map_issue_summary(raw))
    return out
