"""SQLite-backed cycle-time cache, project-details cache and project exclusions."""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .mappers import parse_dt
from .models import CycleTimeRecord, DiscoveryCycleInfo, EndDateLogic, InactivePeriod, ProjectDetail

SCHEMA = """
CREATE TABLE IF NOT EXISTS cycle_time_cache (
    issue_key TEXT PRIMARY KEY,
    discovery_start_date TEXT,
    discovery_end_date TEXT,
    end_date_logic TEXT,
    calendar_days_in_discovery INTEGER,
    active_days_in_discovery INTEGER,
    completion_quarter TEXT,
    inactive_periods TEXT,
    inactivity_rule TEXT,
    calculated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_cycle_time_cache_quarter ON cycle_time_cache(completion_quarter);

CREATE TABLE IF NOT EXISTS project_details_cache (
    quarter TEXT NOT NULL,
    issue_key TEXT NOT NULL,
    summary TEXT NOT NULL,
    assignee TEXT,
    discovery_start_date TEXT,
    calendar_days_in_discovery INTEGER,
    active_days_in_discovery INTEGER,
    inactivity_rule TEXT,
    calculated_at TEXT NOT NULL,
    PRIMARY KEY (quarter, issue_key)
);
CREATE INDEX IF NOT EXISTS idx_project_details_cache_quarter ON project_details_cache(quarter);

CREATE TABLE IF NOT EXISTS project_exclusions (
    issue_key TEXT PRIMARY KEY,
    excluded_by TEXT NOT NULL,
    exclusion_reason TEXT,
    excluded_at TEXT NOT NULL
);
"""

# Columns added after the first release; created on open for older databases
ADDED_COLUMNS = (
    ("cycle_time_cache", "inactivity_rule", "TEXT"),
    ("project_details_cache", "inactivity_rule", "TEXT"),
)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    cur = conn.execute(f"PRAGMA table_info({table})")
    return any(row[1] == column for row in cur.fetchall())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _end_logic(value: str | None) -> EndDateLogic:
    try:
        return EndDateLogic(value)
    except ValueError:
        return EndDateLogic.ERROR


def _load_periods(raw: str | None) -> list[InactivePeriod] | None:
    if raw is None:
        return None
    try:
        items = json.loads(raw)
    except (TypeError, ValueError):
        return None
    periods: list[InactivePeriod] = []
    for item in items or []:
        start = parse_dt(item.get("start")) if isinstance(item, dict) else None
        end = parse_dt(item.get("end")) if isinstance(item, dict) else None
        if start is not None and end is not None:
            periods.append(InactivePeriod(start=start, end=end))
    return periods


def _row_to_record(row: sqlite3.Row) -> CycleTimeRecord:
    info = DiscoveryCycleInfo(
        discovery_start_date=parse_dt(row["discovery_start_date"]),
        discovery_end_date=parse_dt(row["discovery_end_date"]),
        end_date_logic=_end_logic(row["end_date_logic"]),
        calendar_days_in_discovery=row["calendar_days_in_discovery"],
        active_days_in_discovery=row["active_days_in_discovery"],
    )
    return CycleTimeRecord(
        issue_key=row["issue_key"],
        info=info,
        calculated_at=parse_dt(row["calculated_at"]) or datetime.now(tz=UTC),
        inactive_periods=_load_periods(row["inactive_periods"]),
        inactivity_rule=row["inactivity_rule"],
    )


def _row_to_detail(row: sqlite3.Row) -> ProjectDetail:
    return ProjectDetail(
        quarter=row["quarter"],
        issue_key=row["issue_key"],
        summary=row["summary"],
        assignee=row["assignee"],
        discovery_start_date=parse_dt(row["discovery_start_date"]),
        calendar_days_in_discovery=row["calendar_days_in_discovery"],
        active_days_in_discovery=row["active_days_in_discovery"],
        calculated_at=parse_dt(row["calculated_at"]) or datetime.now(tz=UTC),
        inactivity_rule=row["inactivity_rule"],
    )


class CycleTimeCacheStore:
    """Persisted cycle-time rows keyed by issue key.

    Each operation opens its own short-lived connection, so the store can be
    used from worker threads.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SCHEMA)
            for table, column, kind in ADDED_COLUMNS:
                if not _column_exists(conn, table, column):
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {kind}")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA busy_timeout = 30000")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ------------------ Cycle time cache ------------------
    def upsert(self, record: CycleTimeRecord) -> None:
        info = record.info
        periods = None
        if record.inactive_periods is not None:
            periods = json.dumps([p.to_json() for p in record.inactive_periods])
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO cycle_time_cache (
                    issue_key, discovery_start_date, discovery_end_date, end_date_logic,
                    calendar_days_in_discovery, active_days_in_discovery, completion_quarter,
                    inactive_periods, inactivity_rule, calculated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(issue_key) DO UPDATE SET
                    discovery_start_date = excluded.discovery_start_date,
                    discovery_end_date = excluded.discovery_end_date,
                    end_date_logic = excluded.end_date_logic,
                    calendar_days_in_discovery = excluded.calendar_days_in_discovery,
                    active_days_in_discovery = excluded.active_days_in_discovery,
                    completion_quarter = excluded.completion_quarter,
                    inactive_periods = excluded.inactive_periods,
                    inactivity_rule = excluded.inactivity_rule,
                    calculated_at = excluded.calculated_at
                """,
                (
                    record.issue_key,
                    _iso(info.discovery_start_date),
                    _iso(info.discovery_end_date),
                    info.end_date_logic.value,
                    info.calendar_days_in_discovery,
                    info.active_days_in_discovery,
                    info.completion_quarter,
                    periods,
                    record.inactivity_rule,
                    _iso(record.calculated_at),
                ),
            )

    def get(self, issue_key: str) -> CycleTimeRecord | None:
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM cycle_time_cache WHERE issue_key = ?", (issue_key,)).fetchone()
        return _row_to_record(row) if row else None

    def all(self, inactivity_rule: str | None = None) -> list[CycleTimeRecord]:
        """Every cached row, or only those computed under ``inactivity_rule``."""
        with self.connection() as conn:
            if inactivity_rule is None:
                rows = conn.execute("SELECT * FROM cycle_time_cache ORDER BY calculated_at DESC").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM cycle_time_cache WHERE inactivity_rule = ? ORDER BY calculated_at DESC",
                    (inactivity_rule,),
                ).fetchall()
        return [_row_to_record(r) for r in rows]

    def keys_for_quarter(self, quarter: str) -> list[str]:
        with self.connection() as conn:
            rows = conn.execute(
                "SELECT issue_key FROM cycle_time_cache WHERE completion_quarter = ? ORDER BY issue_key",
                (quarter,),
            ).fetchall()
        return [r["issue_key"] for r in rows]

    def clear(self) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM cycle_time_cache")

    def clear_quarter(self, quarter: str) -> int:
        with self.connection() as conn:
            cur = conn.execute("DELETE FROM cycle_time_cache WHERE completion_quarter = ?", (quarter,))
            return cur.rowcount

    def clear_issue_keys(self, issue_keys: Iterable[str]) -> int:
        keys = list(issue_keys)
        if not keys:
            return 0
        with self.connection() as conn:
            cur = conn.executemany("DELETE FROM cycle_time_cache WHERE issue_key = ?", [(k,) for k in keys])
            return cur.rowcount

    def status(self) -> dict[str, Any]:
        """Row counts, last calculation time and counts per end reason."""
        with self.connection() as conn:
            total = conn.execute("SELECT COUNT(*) FROM cycle_time_cache").fetchone()[0]
            last = conn.execute("SELECT MAX(calculated_at) FROM cycle_time_cache").fetchone()[0]
            by_logic = conn.execute(
                "SELECT end_date_logic, COUNT(*) AS n FROM cycle_time_cache GROUP BY end_date_logic ORDER BY n DESC"
            ).fetchall()
            by_rule = conn.execute(
                "SELECT inactivity_rule, COUNT(*) AS n FROM cycle_time_cache GROUP BY inactivity_rule"
            ).fetchall()
            details = conn.execute("SELECT COUNT(*) FROM project_details_cache").fetchone()[0]
            exclusions = conn.execute("SELECT COUNT(*) FROM project_exclusions").fetchone()[0]
        return {
            "cycle_rows": total,
            "last_calculated_at": parse_dt(last),
            "by_end_date_logic": {r["end_date_logic"]: r["n"] for r in by_logic},
            "by_inactivity_rule": {r["inactivity_rule"]: r["n"] for r in by_rule},
            "project_detail_rows": details,
            "excluded_issues": exclusions,
        }

    # ------------------ Project details cache ------------------
    def insert_project_details(self, details: Iterable[ProjectDetail]) -> None:
        rows = [
            (
                d.quarter,
                d.issue_key,
                d.summary,
                d.assignee,
                _iso(d.discovery_start_date),
                d.calendar_days_in_discovery,
                d.active_days_in_discovery,
                d.inactivity_rule,
                _iso(d.calculated_at),
            )
            for d in details
        ]
        if not rows:
            return
        with self.connection() as conn:
            conn.executemany(
                """
                INSERT INTO project_details_cache (
                    quarter, issue_key, summary, assignee, discovery_start_date,
                    calendar_days_in_discovery, active_days_in_discovery, inactivity_rule, calculated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(quarter, issue_key) DO UPDATE SET
                    summary = excluded.summary,
                    assignee = excluded.assignee,
                    discovery_start_date = excluded.discovery_start_date,
                    calendar_days_in_discovery = excluded.calendar_days_in_discovery,
                    active_days_in_discovery = excluded.active_days_in_discovery,
                    inactivity_rule = excluded.inactivity_rule,
                    calculated_at = excluded.calculated_at
                """,
                rows,
            )

    def get_project_details(self, quarter: str, inactivity_rule: str | None = None) -> list[ProjectDetail]:
        query = "SELECT * FROM project_details_cache WHERE quarter = ?"
        params: tuple[str, ...] = (quarter,)
        if inactivity_rule is not None:
            query += " AND inactivity_rule = ?"
            params += (inactivity_rule,)
        with self.connection() as conn:
            rows = conn.execute(
                query + " ORDER BY calendar_days_in_discovery DESC, issue_key ASC",
                params,
            ).fetchall()
        return [_row_to_detail(r) for r in rows]

    def get_project_details_for_keys(self, issue_keys: Iterable[str]) -> list[ProjectDetail]:
        keys = list(issue_keys)
        if not keys:
            return []
        marks = ", ".join("?" for _ in keys)
        with self.connection() as conn:
            rows = conn.execute(
                f"SELECT * FROM project_details_cache WHERE issue_key IN ({marks}) ORDER BY issue_key",
                keys,
            ).fetchall()
        return [_row_to_detail(r) for r in rows]

    def clear_project_details(self, quarter: str | None = None) -> None:
        with self.connection() as conn:
            if quarter is None:
                conn.execute("DELETE FROM project_details_cache")
            else:
                conn.execute("DELETE FROM project_details_cache WHERE quarter = ?", (quarter,))

    def clear_project_details_for_keys(self, issue_keys: Iterable[str]) -> None:
        keys = list(issue_keys)
        if not keys:
            return
        with self.connection() as conn:
            conn.executemany("DELETE FROM project_details_cache WHERE issue_key = ?", [(k,) for k in keys])

    # ------------------ Project exclusions ------------------
    def excluded_issue_keys(self) -> set[str]:
        with self.connection() as conn:
            rows = conn.execute("SELECT issue_key FROM project_exclusions").fetchall()
        return {r["issue_key"] for r in rows}

    def add_exclusion(self, issue_key: str, excluded_by: str, reason: str | None = None) -> None:
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO project_exclusions (issue_key, excluded_by, exclusion_reason, excluded_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(issue_key) DO NOTHING
                """,
                (issue_key, excluded_by, reason, _iso(datetime.now(tz=UTC))),
            )

    def remove_exclusion(self, issue_key: str) -> None:
        with self.connection() as conn:
            conn.execute("DELETE FROM project_exclusions WHERE issue_key = ?", (issue_key,))

    def toggle_exclusion(self, issue_key: str, excluded_by: str, reason: str | None = None) -> bool:
        """Flip the exclusion of ``issue_key``; returns True when now excluded."""
        if issue_key in self.excluded_issue_keys():
            self.remove_exclusion(issue_key)
            return False
        self.add_exclusion(issue_key, excluded_by, reason)
        return True
