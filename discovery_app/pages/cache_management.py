"""Cache management page: status, full rebuild, per-issue refresh, per-quarter rebuild."""

from __future__ import annotations

import asyncio

import pandas as pd
import streamlit as st

from discovery_app.analytics.aggregations.cohorts import cycles_to_frame, sort_quarters
from discovery_app.app import register_page
from discovery_app.core.config import SETTINGS
from discovery_app.core.service import CycleTimeService, RebuildSummary
from discovery_app.visual.progress import ProgressReporter
from discovery_app.visual.tables import prepare_cycle_table


def _summary_message(summary: RebuildSummary) -> str:
    msg = (
        f"Processed {summary.processed}/{summary.total} issue(s): "
        f"{summary.completed_cycles} completed cycle(s), {summary.errors} error(s)."
    )
    if summary.error_keys:
        msg += f" Failed: {', '.join(summary.error_keys[:20])}"
    return msg


def _render_status(service: CycleTimeService) -> None:
    status = service.cache_status()
    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Cached cycles", status["cycle_rows"])
    c2.metric("Project detail rows", status["project_detail_rows"])
    c3.metric("Excluded projects", status["excluded_issues"])
    last = status["last_calculated_at"]
    c4.metric("Last calculated", last.strftime("%Y-%m-%d %H:%M") if last is not None else "never")
    rule = service.settings.inactivity_rule
    other = sum(n for r, n in status["by_inactivity_rule"].items() if r != rule)
    if other:
        st.warning(f"{other} cached cycle(s) use another inactivity rule and are ignored until rebuilt.")
    if status["by_end_date_logic"]:
        df = pd.DataFrame(
            [{"end_date_logic": k, "issues": v} for k, v in status["by_end_date_logic"].items()]
        )
        st.dataframe(df, hide_index=True)


@register_page("Cache Management")
def cache_management_page():
    st.title("Cache Management")
    service: CycleTimeService | None = st.session_state.get("cycle_service")
    if service is None:
        st.warning("Initialize connection on Setup page first.")
        return

    try:
        _render_status(service)
    except Exception as exc:
        st.error(f"Failed to read cache status: {exc}")

    st.subheader("Full sync")
    st.caption("Clears the cycle-time and project-details caches, then recomputes every project issue.")
    if st.button("Rebuild cache", type="primary"):
        reporter = ProgressReporter(f"Rebuilding cycle cache for {service.settings.project_key}")
        try:
            summary = asyncio.run(service.rebuild_cache(progress=reporter.callback))
            reporter.complete(_summary_message(summary))
        except Exception as exc:  # pragma: no cover
            reporter.error(f"Rebuild failed: {exc}")

    st.subheader("Refresh specific issues")
    raw_keys = st.text_input("Issue keys (comma separated)", placeholder="HT-101, HT-202")
    if st.button("Refresh issues"):
        keys = [k.strip().upper() for k in raw_keys.split(",") if k.strip()]
        if not keys:
            st.error("Enter at least one issue key.")
        else:
            reporter = ProgressReporter(f"Refreshing {len(keys)} issue(s)")
            try:
                summary = asyncio.run(service.refresh_issues(keys, progress=reporter.callback))
                reporter.complete(_summary_message(summary))
            except Exception as exc:  # pragma: no cover
                reporter.error(f"Refresh failed: {exc}")

    records = service.get_all_cycle_infos()
    with st.expander(f"Cached cycles ({len(records)})"):
        server = st.session_state.get("jira_server", "")
        table, display_cols, cfg = prepare_cycle_table(cycles_to_frame(records), server)
        if display_cols:
            rows = table[display_cols].head(SETTINGS.max_table_rows)
            st.dataframe(rows, hide_index=True, column_config=cfg)

    st.subheader("Quarter")
    quarters = sort_quarters(r.info.completion_quarter for r in records if r.info.completion_quarter)
    if not quarters:
        st.info("No completed cycles cached yet.")
        return
    quarter = st.selectbox("Quarter", quarters, index=len(quarters) - 1)
    col_clear, col_rebuild = st.columns(2)
    if col_clear.button("Clear quarter"):
        keys = asyncio.run(service.clear_quarter(quarter))
        st.success(f"Cleared {len(keys)} cached cycle(s) for {quarter}.")
    if col_rebuild.button("Rebuild quarter"):
        reporter = ProgressReporter(f"Rebuilding {quarter}")
        try:
            summary = asyncio.run(service.rebuild_quarter(quarter, progress=reporter.callback))
            reporter.complete(_summary_message(summary))
        except Exception as exc:  # pragma: no cover
            reporter.error(f"Quarter rebuild failed: {exc}")
