"""Status and health transition extraction from normalized change records."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import pandas as pd

from discovery_app.core.config import FIELD_IDS, HEALTH_FIELD_NAME, STATUS_FIELD_NAME
from discovery_app.core.models import ChangeRecord, FieldChange, HealthTransition, StatusTransition
from discovery_app.core.status import clean_status_name, normalize_health


@dataclass(slots=True)
class NormalizedHistory:
    status: list[StatusTransition] = field(default_factory=list)
    health: list[HealthTransition] = field(default_factory=list)


def is_status_change(change: FieldChange) -> bool:
    return str(change.field or "").lower() == STATUS_FIELD_NAME


def is_health_change(change: FieldChange) -> bool:
    return change.field == HEALTH_FIELD_NAME or change.field_id == FIELD_IDS["health"]


def extract_status_transitions(records: Iterable[ChangeRecord]) -> list[StatusTransition]:
    """Return the status transitions of ``records``, ascending by timestamp.

    A record contributes at most one transition (its first status item). Items
    without a target status are ignored.
    """
    out: list[StatusTransition] = []
    for record in records:
        for change in record.changes:
            if not is_status_change(change):
                continue
            to_status = clean_status_name(change.to_value)
            if to_status is None:
                continue
            out.append(
                StatusTransition(
                    timestamp=record.timestamp,
                    from_status=clean_status_name(change.from_value),
                    to_status=to_status,
                )
            )
            break
    out.sort(key=lambda t: t.timestamp)
    return out


def extract_health_transitions(records: Iterable[ChangeRecord]) -> list[HealthTransition]:
    out: list[HealthTransition] = []
    for record in records:
        for change in record.changes:
            if not is_health_change(change):
                continue
            to_health = normalize_health(change.to_value)
            if to_health is None:
                continue
            out.append(
                HealthTransition(
                    timestamp=record.timestamp,
                    from_health=normalize_health(change.from_value),
                    to_health=to_health,
                )
            )
            break
    out.sort(key=lambda t: t.timestamp)
    return out


def normalize_history(records: Iterable[ChangeRecord]) -> NormalizedHistory:
    records = list(records)
    return NormalizedHistory(
        status=extract_status_transitions(records),
        health=extract_health_transitions(records),
    )


def transitions_frame(history: NormalizedHistory) -> pd.DataFrame:
    """Merged, time-ordered view of status and health transitions.

    Returns
    -------
    pd.DataFrame
        Columns: timestamp, kind ("status" / "health"), from_value, to_value.
        Empty DataFrame when the history holds no transitions.
    """
    rows: list[dict[str, object]] = []
    for t in history.status:
        rows.append({"timestamp": t.timestamp, "kind": "status", "from_value": t.from_status, "to_value": t.to_status})
    for h in history.health:
        rows.append({"timestamp": h.timestamp, "kind": "health", "from_value": h.from_health, "to_value": h.to_health})
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    return df.sort_values(by=["timestamp", "kind"], ascending=[True, False], kind="stable").reset_index(drop=True)
