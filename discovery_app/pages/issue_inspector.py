"""Issue inspector: compute one issue's discovery cycle and show how it was derived."""

from __future__ import annotations

import asyncio

import pandas as pd
import pytz
import streamlit as st

from discovery_app.analytics.metrics.discovery_cycle import compute_discovery_cycle
from discovery_app.analytics.metrics.transitions import transitions_frame
from discovery_app.app import register_page
from discovery_app.core.column_config import get_columns
from discovery_app.core.config import TIMEZONE
from discovery_app.core.service import CycleTimeService
from discovery_app.visual.charts import inactive_timeline


@register_page("Issue Inspector")
def issue_inspector_page():
    st.title("Issue Inspector")
    st.caption("Recompute one issue from its changelog and inspect transitions and inactive periods.")
    service: CycleTimeService | None = st.session_state.get("cycle_service")
    if service is None:
        st.warning("Initialize connection on Setup page first.")
        return

    issue_key = st.text_input("Issue key").strip().upper()
    force = st.checkbox("Ignore cache", value=False)
    if not (st.button("Inspect", type="primary") and issue_key):
        return

    record = asyncio.run(service.get_cycle_info(issue_key, force=force, include_inactive_periods=True))
    info = record.info
    c1, c2, c3 = st.columns(3)
    c1.metric("End reason", info.end_date_logic.value)
    c2.metric("Calendar days", info.calendar_days_in_discovery if info.calendar_days_in_discovery is not None else "-")
    c3.metric("Active days", info.active_days_in_discovery if info.active_days_in_discovery is not None else "-")
    st.json({k: (str(v) if v is not None else None) for k, v in info.as_dict().items()})

    chart = inactive_timeline(record.inactive_periods or [], info.discovery_start_date, info.discovery_end_date)
    if chart is not None:
        st.altair_chart(chart, use_container_width=True)

    try:
        records = asyncio.run(service.fetch_records(issue_key))
    except Exception as exc:
        st.error(f"Failed to fetch changelog for {issue_key}: {exc}")
        return
    history = compute_discovery_cycle(records, settings=service.settings, issue_key=issue_key).history
    frame = transitions_frame(history)
    if frame.empty:
        st.info("No status or health transitions found.")
        return
    tz = pytz.timezone(TIMEZONE)
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True).dt.tz_convert(tz)
    cols = [c for c in get_columns("transitions") if c in frame.columns] or list(frame.columns)
    st.dataframe(frame[cols], hide_index=True)
