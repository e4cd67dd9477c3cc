"""Discovery cycle time page: quarter cohorts, trend and per-quarter project details."""

from __future__ import annotations

import asyncio

import streamlit as st

from discovery_app.analytics.aggregations.cohorts import cohort_stats_frame
from discovery_app.app import register_page
from discovery_app.core.config import CYCLE_METRICS, DEFAULT_CYCLE_METRIC, SETTINGS
from discovery_app.core.service import CycleTimeService
from discovery_app.visual.charts import cohort_box_plot, median_trend_chart
from discovery_app.visual.tables import prepare_cycle_table, project_details_frame, to_csv_bytes

METRIC_LABELS = {"calendar": "Calendar days", "active": "Active days"}


@register_page("Discovery Cycle Time")
def cycle_time_page():
    st.title("Discovery Cycle Time")
    st.caption("Days from first entering discovery to leaving it, grouped by completion quarter.")
    service: CycleTimeService | None = st.session_state.get("cycle_service")
    if service is None:
        st.warning("Initialize connection on Setup page first.")
        return

    metric = st.radio(
        "Metric",
        list(CYCLE_METRICS),
        index=list(CYCLE_METRICS).index(DEFAULT_CYCLE_METRIC),
        format_func=lambda m: METRIC_LABELS.get(m, m),
        horizontal=True,
    )
    label = METRIC_LABELS.get(metric, metric)
    try:
        cohorts = service.get_cohorts(metric)
    except Exception as exc:
        st.error(f"Failed to load cohorts: {exc}")
        return

    chart = cohort_box_plot(cohorts, label)
    if chart is None:
        st.info("No completed discovery cycles cached yet. Rebuild the cache on the Cache Management page.")
    else:
        st.altair_chart(chart, use_container_width=True)
        trend = median_trend_chart(cohorts, label)
        if trend is not None:
            st.altair_chart(trend, use_container_width=True)

    stats = cohort_stats_frame(cohorts)
    if not stats.empty:
        st.dataframe(stats.drop(columns=["order"]).round(1), hide_index=True)

    quarters = [q for q, c in cohorts.items() if c.size > 0]
    if not quarters:
        return
    st.markdown("---")
    quarter = st.selectbox("Quarter details", quarters, index=len(quarters) - 1)
    try:
        details = asyncio.run(service.get_quarter_details(quarter))
    except Exception as exc:
        st.error(f"Failed to load project details for {quarter}: {exc}")
        return
    excluded = service.excluded_issue_keys()
    df = project_details_frame(details, excluded)
    if df.empty:
        st.info(f"No project details for {quarter}.")
        return

    server = st.session_state.get("jira_server", "")
    table, display_cols, cfg = prepare_cycle_table(df, server, column_set="quarter_detail")
    st.dataframe(table[display_cols].head(SETTINGS.max_table_rows), hide_index=True, column_config=cfg)
    st.download_button(
        "Download CSV",
        data=to_csv_bytes(table, [c for c in display_cols if c != "Ticket"] + ["key"], SETTINGS.download_encoding),
        file_name=f"discovery_cycle_{quarter}.csv",
        mime="text/csv",
    )

    with st.expander("Exclude projects from cohorts"):
        key = st.selectbox("Project", list(df["key"]))
        reason = st.text_input("Reason (optional)")
        if st.button("Toggle exclusion"):
            user = st.session_state.get("jira_email") or "dashboard"
            now_excluded = service.toggle_exclusion(key, user, reason or None)
            st.success(f"{key} {'excluded from' if now_excluded else 'included in'} cohorts.")
            st.rerun()
