"""Domain data models for change histories, discovery cycles, and cohorts."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class EndDateLogic(str, Enum):
    """Why a discovery cycle ended (or why it could not be measured).

    Values are the labels persisted in the cycle-time cache.
    """

    NO_STATUS_CHANGES = "No status changes found"
    DIRECT_TO_BUILD = "Direct to Build"
    NO_DISCOVERY = "No Discovery"
    BUILD_TRANSITION = "Build Transition"
    WONT_DO = "Won't Do"
    LIVE = "Live"
    COMPLETED = "Completed"
    STILL_IN_DISCOVERY = "Still in Discovery"
    ERROR = "Error"


# Outcomes that carry no completed cycle
INCOMPLETE_END_LOGIC: frozenset[EndDateLogic] = frozenset(
    {
        EndDateLogic.NO_STATUS_CHANGES,
        EndDateLogic.DIRECT_TO_BUILD,
        EndDateLogic.NO_DISCOVERY,
        EndDateLogic.STILL_IN_DISCOVERY,
        EndDateLogic.ERROR,
    }
)


@dataclass(slots=True, frozen=True)
class FieldChange:
    field: str | None
    field_id: str | None
    from_value: str | None
    to_value: str | None


@dataclass(slots=True, frozen=True)
class ChangeRecord:
    timestamp: datetime
    changes: tuple[FieldChange, ...] = ()
    author: str | None = None


@dataclass(slots=True, frozen=True)
class StatusTransition:
    timestamp: datetime
    from_status: str | None
    to_status: str


@dataclass(slots=True, frozen=True)
class HealthTransition:
    timestamp: datetime
    from_health: str | None
    to_health: str


@dataclass(slots=True)
class CycleBoundaries:
    start: datetime | None
    end: datetime | None
    end_date_logic: EndDateLogic
    is_open: bool = False


@dataclass(slots=True, frozen=True)
class InactivePeriod:
    start: datetime
    end: datetime

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400.0

    def to_json(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(slots=True)
class DiscoveryCycleInfo:
    discovery_start_date: datetime | None = None
    discovery_end_date: datetime | None = None
    end_date_logic: EndDateLogic = EndDateLogic.NO_STATUS_CHANGES
    calendar_days_in_discovery: int | None = None
    active_days_in_discovery: int | None = None

    @classmethod
    def error(cls, now: datetime) -> DiscoveryCycleInfo:
        """Degraded result used when an issue could not be evaluated."""
        return cls(
            discovery_start_date=now,
            discovery_end_date=now,
            end_date_logic=EndDateLogic.ERROR,
            calendar_days_in_discovery=0,
            active_days_in_discovery=0,
        )

    @property
    def is_completed(self) -> bool:
        return (
            self.discovery_start_date is not None
            and self.discovery_end_date is not None
            and self.end_date_logic not in INCOMPLETE_END_LOGIC
        )

    @property
    def completion_quarter(self) -> str | None:
        if not self.is_completed:
            return None
        # Local import: cohorts imports this module.
        from discovery_app.analytics.aggregations.cohorts import quarter_for_date

        return quarter_for_date(self.discovery_end_date)

    def as_dict(self) -> dict[str, object]:
        return {
            "discovery_start_date": self.discovery_start_date,
            "discovery_end_date": self.discovery_end_date,
            "end_date_logic": self.end_date_logic.value,
            "calendar_days_in_discovery": self.calendar_days_in_discovery,
            "active_days_in_discovery": self.active_days_in_discovery,
            "completion_quarter": self.completion_quarter,
        }


@dataclass(slots=True)
class CycleTimeRecord:
    """One row of the cycle-time cache."""

    issue_key: str
    info: DiscoveryCycleInfo
    calculated_at: datetime
    inactive_periods: list[InactivePeriod] | None = None
    inactivity_rule: str | None = None


@dataclass(slots=True)
class ProjectDetail:
    quarter: str
    issue_key: str
    summary: str
    assignee: str | None
    discovery_start_date: datetime | None
    calendar_days_in_discovery: int | None
    active_days_in_discovery: int | None
    calculated_at: datetime
    inactivity_rule: str | None = None


@dataclass(slots=True)
class IssueSummary:
    key: str
    summary: str | None = None
    assignee: str | None = None
    status: str | None = None
    health: str | None = None


@dataclass(slots=True)
class BoxPlotStats:
    min: float = 0.0
    q1: float = 0.0
    median: float = 0.0
    q3: float = 0.0
    max: float = 0.0
    mean: float = 0.0


@dataclass(slots=True)
class QuarterCohort:
    quarter: str
    data: list[int] = field(default_factory=list)
    outliers: list[int] = field(default_factory=list)
    size: int = 0
    stats: BoxPlotStats = field(default_factory=BoxPlotStats)
