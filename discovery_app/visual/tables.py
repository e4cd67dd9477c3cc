"""Table helpers for cycle-time views."""

from __future__ import annotations

from collections.abc import Collection, Iterable

import pandas as pd
import streamlit as st

from discovery_app.core.column_config import get_columns
from discovery_app.core.models import ProjectDetail


def add_ticket_link(df: pd.DataFrame, server: str, key_col: str = "key", label: str = "Ticket"):
    if df.empty or key_col not in df.columns:
        return df, {}
    out = df.copy()
    base = server.rstrip("/")
    out[label] = out[key_col].astype(str).apply(lambda k: f"{base}/browse/{k}" if k and k != "nan" else "")
    cfg = {
        label: st.column_config.LinkColumn(
            label,
            display_text=r"browse/(.*)$",
            help="Open in Jira",
            width="medium",
        )
    }
    return out, cfg


def project_details_frame(details: Iterable[ProjectDetail], excluded_keys: Collection[str] = ()) -> pd.DataFrame:
    rows = [
        {
            "key": d.issue_key,
            "summary": d.summary,
            "assignee": d.assignee,
            "discovery_start_date": d.discovery_start_date,
            "calendar_days_in_discovery": d.calendar_days_in_discovery,
            "active_days_in_discovery": d.active_days_in_discovery,
            "excluded": d.issue_key in excluded_keys,
        }
        for d in details
    ]
    if not rows:
        return pd.DataFrame()
    df = pd.DataFrame(rows)
    df["discovery_start_date"] = pd.to_datetime(df["discovery_start_date"], utc=True, errors="coerce")
    return df


def prepare_cycle_table(
    df: pd.DataFrame,
    server: str,
    *,
    column_set: str = "cycle_detail",
) -> tuple[pd.DataFrame, list[str], dict[str, object]]:
    """Add the Jira link column and pick display columns from ``column_set``."""
    if df.empty:
        return df, [], {}
    table, cfg = add_ticket_link(df, server)
    display_cols = [c for c in get_columns(column_set) if c in table.columns]
    if "Ticket" in table.columns and "Ticket" not in display_cols:
        display_cols.insert(0, "Ticket")
    if not display_cols:
        display_cols = [c for c in table.columns if c != "key"]
    return table, display_cols, cfg


def to_csv_bytes(df: pd.DataFrame, columns: list[str] | None = None, encoding: str = "utf-8") -> bytes:
    out = df[columns] if columns else df
    return out.to_csv(index=False).encode(encoding)
