"""Convenience launcher for the Streamlit app.

Usage:
  streamlit run run_dashboard.py

Automatically imports every module in ``discovery_app/pages`` so each page
decorated with ``@register_page`` registers itself without manual edits here.
"""

from importlib import import_module
from pathlib import Path

import streamlit as st

from discovery_app.app import main

st.set_page_config(layout="wide")


def _auto_init_cycle_service():
    """Initialize the cycle-time service from Streamlit secrets if available."""
    if "cycle_service" in st.session_state:
        return

    from discovery_app.pages.setup import jira_secrets

    server, email, token = jira_secrets(st.secrets)
    if server and email and token:
        st.sidebar.info("Secrets found, attempting to connect to Jira...")
        try:
            from discovery_app.core.service import build_cycle_service

            st.session_state["cycle_service"] = build_cycle_service(server, email, token)
            st.session_state["jira_server"] = server
            st.session_state["jira_email"] = email
            st.sidebar.success("Jira connection successful!")
        except Exception as e:
            st.sidebar.error(f"Jira connection failed: {e}")
            # Clear any partial state to ensure user is directed to setup
            st.session_state.pop("cycle_service", None)
    else:
        st.sidebar.warning("Jira secrets not found. Please use the Setup page.")


_auto_init_cycle_service()

PAGES_DIR = Path(__file__).parent / "discovery_app" / "pages"
for py in sorted(PAGES_DIR.glob("[!_]*.py")):
    mod_name = f"discovery_app.pages.{py.stem}"
    try:
        import_module(mod_name)
    except Exception as e:  # pragma: no cover - defensive
        print(f"Failed importing page {mod_name}: {e}")

if __name__ == "__main__":
    main()
