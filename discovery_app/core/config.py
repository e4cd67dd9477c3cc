"""Central configuration, constants, feature flags, and shared column definitions."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

# =============================================================================
# Jira Connection Settings
# =============================================================================
JIRA_DEFAULT_SERVER = "https://hometap.atlassian.net"
TIMEZONE = "America/New_York"
DEFAULT_PROJECT_KEY = "HT"

# =============================================================================
# Workflow Status Configuration
# =============================================================================
# Investigation / definition work before building
DISCOVERY_STATUSES: Sequence[str] = (
    "02 Generative Discovery",
    "04 Problem Discovery",
    "05 Solution Discovery",
)

BUILD_STATUS = "06 Build"

WONT_DO_STATUS = "Won't Do"
TERMINAL_LIVE_STATUS = "09 Live"

# Explicitly not being progressed, whatever the health says
INACTIVE_STATUSES: frozenset[str] = frozenset(
    {
        "01 Inbox",
        "03 Committed",
        TERMINAL_LIVE_STATUS,
        WONT_DO_STATUS,
    }
)

# Generic workflow markers that also close a discovery cycle
COMPLETED_STATUS_MARKERS: Sequence[str] = ("Done", "Resolved")

# =============================================================================
# Health Configuration
# =============================================================================
ON_HOLD_HEALTH = "On Hold"

# Map various health strings to canonical names (lowercase keys)
HEALTH_ALIASES: dict[str, str] = {
    "on track": "On Track",
    "ontrack": "On Track",
    "at risk": "At Risk",
    "atrisk": "At Risk",
    "off track": "Off Track",
    "offtrack": "Off Track",
    "on hold": "On Hold",
    "onhold": "On Hold",
    "mystery": "Mystery",
    "complete": "Complete",
    "completed": "Complete",
    "unknown": "Unknown",
}

# =============================================================================
# Jira Custom Field IDs
# =============================================================================
FIELD_IDS = {
    "health": "customfield_10238",
}

STATUS_FIELD_NAME = "status"
HEALTH_FIELD_NAME = "Health"

# Canonical field list for the cycle analysis issue listing
JIRA_FETCH_BASE_FIELDS = [
    "summary",
    "status",
    "assignee",
    FIELD_IDS["health"],
]

# =============================================================================
# Jira rate limiting / pagination
# =============================================================================
CHANGELOG_PAGE_SIZE = 100
CHANGELOG_MAX_PAGES = 10
RATE_LIMIT_MAX_REQUESTS = 500
RATE_LIMIT_WINDOW_SECONDS = 5 * 60

# =============================================================================
# Cache / recompute tuning
# =============================================================================
DATA_DIR = Path(__file__).resolve().parents[2] / "data"
CYCLE_CACHE_DB_PATH = DATA_DIR / "cycle_time_cache.sqlite3"

# Keep the fan-out small: every issue costs at least one changelog request.
RECOMPUTE_BATCH_SIZE = 5
RECOMPUTE_BATCH_PAUSE_SECONDS = 0.0
CYCLE_INFO_TIMEOUT_SECONDS = 5.0
INACTIVE_PERIODS_TIMEOUT_SECONDS = 2.0

# Inactive periods shorter than this are not reported
MIN_INACTIVE_PERIOD_DAYS = 1

# Stored with every cache row; rows computed under the other rule are stale
INACTIVITY_RULE_STATUS_AWARE = "status_aware"
INACTIVITY_RULE_HOLD_OVERRIDES = "hold_overrides"

# =============================================================================
# Cohort analysis
# =============================================================================
CYCLE_METRICS: dict[str, str] = {
    "calendar": "calendar_days_in_discovery",
    "active": "active_days_in_discovery",
}
DEFAULT_CYCLE_METRIC = "calendar"
IQR_OUTLIER_FACTOR = 1.5

# Quarters shown when the cache is still empty
DEFAULT_COHORT_QUARTERS: Sequence[str] = ("Q3_2024", "Q4_2024", "Q1_2025", "Q2_2025", "Q3_2025")

# =============================================================================
# Table column sets
# =============================================================================
CYCLE_DETAIL_COLUMNS: Sequence[str] = (
    "Ticket",
    "summary",
    "assignee",
    "discovery_start_date",
    "discovery_end_date",
    "end_date_logic",
    "calendar_days_in_discovery",
    "active_days_in_discovery",
    "completion_quarter",
)

QUARTER_DETAIL_COLUMNS: Sequence[str] = (
    "Ticket",
    "summary",
    "assignee",
    "discovery_start_date",
    "calendar_days_in_discovery",
    "active_days_in_discovery",
)

TRANSITION_COLUMNS: Sequence[str] = (
    "timestamp",
    "kind",
    "from_value",
    "to_value",
)


@dataclass(slots=True)
class EngineSettings:
    """Tuning knobs for the cycle-time engine and its orchestrator.

    ``hold_overrides_discovery_status`` selects between the two inactivity
    rules. When False (default) an "On Hold" health only inactivates a project
    whose status is not a discovery status. When True "On Hold" inactivates the
    project whatever its status.
    """

    hold_overrides_discovery_status: bool = False
    batch_size: int = RECOMPUTE_BATCH_SIZE
    batch_pause_seconds: float = RECOMPUTE_BATCH_PAUSE_SECONDS
    cycle_info_timeout: float = CYCLE_INFO_TIMEOUT_SECONDS
    inactive_periods_timeout: float = INACTIVE_PERIODS_TIMEOUT_SECONDS
    project_key: str = DEFAULT_PROJECT_KEY

    @property
    def inactivity_rule(self) -> str:
        if self.hold_overrides_discovery_status:
            return INACTIVITY_RULE_HOLD_OVERRIDES
        return INACTIVITY_RULE_STATUS_AWARE


@dataclass(slots=True)
class AppSettings:
    max_table_rows: int = 1000
    download_encoding: str = "utf-8"


SETTINGS = AppSettings()
