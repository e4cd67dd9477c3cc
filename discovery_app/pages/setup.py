"""Connection setup page: collect Jira credentials and initialize CycleTimeService."""

from __future__ import annotations

import streamlit as st

from discovery_app.app import register_page
from discovery_app.core.config import CYCLE_CACHE_DB_PATH, DEFAULT_PROJECT_KEY, JIRA_DEFAULT_SERVER, EngineSettings
from discovery_app.core.service import build_cycle_service


def jira_secrets(secrets) -> tuple[str | None, str | None, str | None]:
    """(server, email, token) from a ``[jira]`` secrets section or the top level."""
    section = secrets.get("jira", {})
    server = section.get("JIRA_SERVER") or secrets.get("JIRA_SERVER")
    email = section.get("JIRA_EMAIL") or secrets.get("JIRA_EMAIL")
    token = (
        section.get("JIRA_API_TOKEN")
        or secrets.get("JIRA_API_TOKEN")
        or section.get("JIRA_TOKEN")
        or secrets.get("JIRA_TOKEN")
    )
    return server, email, token


@register_page("Setup / Connection")
def setup_page():
    st.title("Jira Connection Setup")
    st.caption("Enter credentials (use secrets manager in production).")

    secret_server, secret_email, secret_token = jira_secrets(st.secrets)

    server = st.text_input(
        "Jira Server URL",
        value=st.session_state.get("jira_server") or secret_server or JIRA_DEFAULT_SERVER,
    )
    email = st.text_input(
        "Email / Username",
        value=st.session_state.get("jira_email") or secret_email or "",
    )
    token = st.text_input(
        "API Token",
        type="password",
        value=secret_token or "",
    )
    project_key = st.text_input("Project key", value=DEFAULT_PROJECT_KEY)
    hold_overrides = st.checkbox(
        "'On Hold' health pauses discovery statuses too",
        value=False,
        help="When off, 'On Hold' only counts as inactive outside discovery statuses.",
    )
    db_path = st.text_input("Cache database", value=str(CYCLE_CACHE_DB_PATH))
    init_btn = st.button("Initialize Connection", type="primary")

    if init_btn:
        if not (server and email and token):
            st.error("All fields required.")
            return
        try:
            settings = EngineSettings(hold_overrides_discovery_status=hold_overrides, project_key=project_key)
            st.session_state["cycle_service"] = build_cycle_service(
                server, email, token, db_path=db_path, settings=settings
            )
            st.session_state["jira_server"] = server
            st.session_state["jira_email"] = email
            st.success("Connection initialized.")
        except Exception as e:  # pragma: no cover
            st.error(f"Failed to initialize Jira client: {e}")

    if "cycle_service" in st.session_state:
        st.info("CycleTimeService ready.")
