"""CycleTimeService: orchestrates changelog fetching, the cycle engine and the cache."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from discovery_app.analytics.aggregations.cohorts import build_quarter_cohorts
from discovery_app.analytics.metrics.discovery_cycle import compute_discovery_cycle

from .cache_store import CycleTimeCacheStore
from .config import CYCLE_CACHE_DB_PATH, DEFAULT_CYCLE_METRIC, EngineSettings
from .jira_client import ChangelogSource, JiraAPI
from .mappers import map_changelog
from .models import (
    ChangeRecord,
    CycleTimeRecord,
    DiscoveryCycleInfo,
    EndDateLogic,
    InactivePeriod,
    IssueSummary,
    ProjectDetail,
    QuarterCohort,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int | None, int | None], None]


class ChangelogMemo:
    """Fetched changelog payloads, scoped to one bulk run.

    Use as a context manager so the memo is emptied when the run ends.
    """

    def __init__(self, payloads: dict[str, Any] | None = None):
        self._payloads: dict[str, Any] = dict(payloads or {})

    def __enter__(self) -> ChangelogMemo:
        return self

    def __exit__(self, *exc_info) -> None:
        self.clear()

    def __contains__(self, issue_key: str) -> bool:
        return issue_key in self._payloads

    def __len__(self) -> int:
        return len(self._payloads)

    def get(self, issue_key: str) -> Any:
        return self._payloads.get(issue_key)

    def put(self, issue_key: str, payload: Any) -> None:
        self._payloads[issue_key] = payload

    def clear(self) -> None:
        self._payloads.clear()


@dataclass(slots=True)
class RebuildSummary:
    total: int = 0
    processed: int = 0
    completed_cycles: int = 0
    errors: int = 0
    error_keys: list[str] = field(default_factory=list)

    def add(self, record: CycleTimeRecord) -> None:
        self.processed += 1
        if record.info.end_date_logic is EndDateLogic.ERROR:
            self.errors += 1
            self.error_keys.append(record.issue_key)
        elif record.info.is_completed:
            self.completed_cycles += 1


class CycleTimeService:
    def __init__(
        self,
        source: ChangelogSource,
        store: CycleTimeCacheStore,
        settings: EngineSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.source = source
        self.store = store
        self.settings = settings or EngineSettings()
        self._clock = clock or (lambda: datetime.now(tz=UTC))

    # ------------------ Engine ------------------
    async def fetch_records(self, issue_key: str, memo: ChangelogMemo | None = None) -> list[ChangeRecord]:
        if memo is not None and issue_key in memo:
            payload = memo.get(issue_key)
        else:
            payload = await asyncio.to_thread(self.source.fetch_changelog, issue_key)
            if memo is not None:
                memo.put(issue_key, payload)
        return map_changelog(payload, issue_key=issue_key)

    async def compute_issue(self, issue_key: str, *, memo: ChangelogMemo | None = None) -> CycleTimeRecord:
        """Fetch the history of ``issue_key`` and run the engine (no caching).

        Upstream fetch errors propagate; callers decide how to degrade.
        """
        records = await self.fetch_records(issue_key, memo)
        now = self._clock()
        result = compute_discovery_cycle(records, now=now, settings=self.settings, issue_key=issue_key)
        return CycleTimeRecord(
            issue_key=issue_key,
            info=result.info,
            calculated_at=now,
            inactive_periods=result.inactive_periods,
            inactivity_rule=self.settings.inactivity_rule,
        )

    def _error_record(self, issue_key: str) -> CycleTimeRecord:
        now = self._clock()
        return CycleTimeRecord(
            issue_key=issue_key,
            info=DiscoveryCycleInfo.error(now),
            calculated_at=now,
            inactive_periods=[],
        )

    async def _persist(self, record: CycleTimeRecord) -> bool:
        try:
            await asyncio.to_thread(self.store.upsert, record)
        except Exception as exc:
            logger.warning("Failed to cache cycle info for %s: %s", record.issue_key, exc)
            return False
        return True

    async def _process_issue(self, issue_key: str, memo: ChangelogMemo | None) -> CycleTimeRecord:
        try:
            record = await self.compute_issue(issue_key, memo=memo)
        except Exception as exc:
            logger.warning("Failed to process %s: %s", issue_key, exc)
            return self._error_record(issue_key)
        await self._persist(record)
        logger.debug("Processed %s: %s", issue_key, record.info.end_date_logic.value)
        return record

    # ------------------ Single issue ------------------
    async def get_cycle_info(
        self,
        issue_key: str,
        *,
        force: bool = False,
        include_inactive_periods: bool = False,
    ) -> CycleTimeRecord:
        """Cached cycle info for ``issue_key``; recomputed on a miss or when forced.

        A fetch that fails or exceeds ``cycle_info_timeout`` yields the Error
        sentinel, which is returned but not cached. A row computed under the
        other inactivity rule counts as a miss. A fresh row also replaces the
        issue's project-details row so both caches stay in step.
        """
        if not force:
            cached = await self._cached(issue_key)
            if cached is not None:
                if include_inactive_periods and cached.inactive_periods is None:
                    cached.inactive_periods = await self.get_inactive_periods(issue_key, cached)
                return cached

        try:
            record = await asyncio.wait_for(self.compute_issue(issue_key), timeout=self.settings.cycle_info_timeout)
        except Exception as exc:
            logger.warning("Timeout or error calculating cycle info for %s: %s", issue_key, exc or type(exc).__name__)
            return self._error_record(issue_key)
        if await self._persist(record):
            await self._sync_project_details(record)
        return record

    async def _cached(self, issue_key: str) -> CycleTimeRecord | None:
        try:
            cached = await asyncio.to_thread(self.store.get, issue_key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", issue_key, exc)
            return None
        if cached is not None and cached.inactivity_rule != self.settings.inactivity_rule:
            logger.debug("Cached row for %s uses rule %s, recomputing", issue_key, cached.inactivity_rule)
            return None
        return cached

    async def _sync_project_details(self, record: CycleTimeRecord) -> None:
        """Replace the project-details row of one recomputed issue.

        The row is only written when its quarter already has cached details;
        otherwise ``get_quarter_details`` derives the whole quarter later.
        """
        key = record.issue_key
        quarter = record.info.completion_quarter if record.info.is_completed else None
        try:
            known = await asyncio.to_thread(self.store.get_project_details_for_keys, [key])
            await asyncio.to_thread(self.store.clear_project_details_for_keys, [key])
            if quarter is None:
                return
            cached = await asyncio.to_thread(self.store.get_project_details, quarter, self.settings.inactivity_rule)
            if not cached:
                return
            if known:
                issues = {key: IssueSummary(key=key, summary=known[0].summary, assignee=known[0].assignee)}
            else:
                issues = {i.key: i for i in await self._summaries_for([key])}
            details = build_project_details([record], issues, calculated_at=record.calculated_at)
            await asyncio.to_thread(self.store.insert_project_details, details)
        except Exception as exc:
            logger.warning("Failed to update project details for %s: %s", key, exc)

    async def get_inactive_periods(
        self,
        issue_key: str,
        record: CycleTimeRecord | None = None,
    ) -> list[InactivePeriod]:
        """Inactive periods of ``issue_key``; ``[]`` when they cannot be obtained in time."""
        if record is None:
            record = await self._cached(issue_key)
        if record is not None and record.inactive_periods is not None:
            return record.inactive_periods
        try:
            fresh = await asyncio.wait_for(
                self.compute_issue(issue_key),
                timeout=self.settings.inactive_periods_timeout,
            )
        except Exception as exc:
            logger.warning("Timeout or error getting inactive periods for %s: %s", issue_key, exc or type(exc).__name__)
            return []
        return fresh.inactive_periods or []

    # ------------------ Bulk recompute ------------------
    async def _list_issues(self) -> list[IssueSummary]:
        return await asyncio.to_thread(self.source.list_cycle_issues, self.settings.project_key)

    async def _summaries_for(self, issue_keys: Sequence[str]) -> list[IssueSummary]:
        try:
            listing = {i.key: i for i in await self._list_issues()}
        except Exception as exc:
            logger.warning("Issue listing unavailable, refreshing without summaries: %s", exc)
            listing = {}
        return [listing.get(k) or IssueSummary(key=k) for k in issue_keys]

    async def _recompute(
        self,
        issues: Sequence[IssueSummary],
        *,
        progress: ProgressCallback | None = None,
        memo: ChangelogMemo | None = None,
    ) -> RebuildSummary:
        summary = RebuildSummary(total=len(issues))
        size = max(1, int(self.settings.batch_size))
        batches = [issues[i : i + size] for i in range(0, len(issues), size)]
        records: list[CycleTimeRecord] = []
        if progress:
            progress("Recomputing discovery cycles", 0, len(issues))
        with memo if memo is not None else ChangelogMemo() as run_memo:
            for number, batch in enumerate(batches, start=1):
                results = await asyncio.gather(*(self._process_issue(issue.key, run_memo) for issue in batch))
                for record in results:
                    summary.add(record)
                records.extend(results)
                logger.info(
                    "Batch %s/%s: processed=%s completed=%s errors=%s",
                    number,
                    len(batches),
                    summary.processed,
                    summary.completed_cycles,
                    summary.errors,
                )
                if progress:
                    progress(f"Processed batch {number}/{len(batches)}", summary.processed, len(issues))
                if self.settings.batch_pause_seconds > 0 and number < len(batches):
                    await asyncio.sleep(self.settings.batch_pause_seconds)

        details = build_project_details(records, {i.key: i for i in issues}, calculated_at=self._clock())
        try:
            await asyncio.to_thread(self.store.insert_project_details, details)
        except Exception as exc:
            logger.warning("Failed to cache project details: %s", exc)
        return summary

    async def rebuild_cache(
        self,
        *,
        progress: ProgressCallback | None = None,
        memo: ChangelogMemo | None = None,
    ) -> RebuildSummary:
        """Full sync: wipe both caches and recompute every listed issue.

        The cycle-time cache and the project-details cache are always cleared
        together. Use ``refresh_issues`` to recompute a subset.
        """
        if progress:
            progress("Listing project issues", None, None)
        try:
            issues = await self._list_issues()
        except Exception as exc:
            logger.error("Issue listing failed, cache left untouched: %s", exc)
            return RebuildSummary(errors=1)

        await asyncio.to_thread(self.store.clear)
        await asyncio.to_thread(self.store.clear_project_details)
        logger.info("Cycle time and project details caches cleared; recomputing %s issues", len(issues))
        return await self._recompute(issues, progress=progress, memo=memo)

    async def refresh_issues(
        self,
        issue_keys: Iterable[str],
        *,
        progress: ProgressCallback | None = None,
    ) -> RebuildSummary:
        """Drop and recompute the cache rows of specific issues only."""
        keys = list(dict.fromkeys(k.strip() for k in issue_keys if k and k.strip()))
        if not keys:
            return RebuildSummary()
        await asyncio.to_thread(self.store.clear_issue_keys, keys)
        await asyncio.to_thread(self.store.clear_project_details_for_keys, keys)
        issues = await self._summaries_for(keys)
        return await self._recompute(issues, progress=progress)

    async def clear_quarter(self, quarter: str) -> list[str]:
        """Remove the rows completing in ``quarter`` from both caches; returns their keys."""
        keys = await asyncio.to_thread(self.store.keys_for_quarter, quarter)
        await asyncio.to_thread(self.store.clear_quarter, quarter)
        await asyncio.to_thread(self.store.clear_project_details, quarter)
        logger.info("Cleared %s cached cycles for %s", len(keys), quarter)
        return keys

    async def rebuild_quarter(self, quarter: str, *, progress: ProgressCallback | None = None) -> RebuildSummary:
        keys = await self.clear_quarter(quarter)
        if not keys:
            return RebuildSummary()
        issues = await self._summaries_for(keys)
        return await self._recompute(issues, progress=progress)

    # ------------------ Query surface ------------------
    def get_all_cycle_infos(self) -> list[CycleTimeRecord]:
        """Cached rows computed under the current inactivity rule."""
        return self.store.all(self.settings.inactivity_rule)

    def get_cohorts(
        self,
        metric: str = DEFAULT_CYCLE_METRIC,
        excluded_keys: Iterable[str] | None = None,
    ) -> dict[str, QuarterCohort]:
        excluded = self.store.excluded_issue_keys() | set(excluded_keys or ())
        return build_quarter_cohorts(self.get_all_cycle_infos(), metric=metric, excluded_keys=excluded)

    async def get_quarter_details(self, quarter: str) -> list[ProjectDetail]:
        """Project details of the cycles completed in ``quarter`` (cached per quarter)."""
        rule = self.settings.inactivity_rule
        cached = await asyncio.to_thread(self.store.get_project_details, quarter, rule)
        if cached:
            return cached
        records = [r for r in await asyncio.to_thread(self.store.all, rule) if r.info.completion_quarter == quarter]
        if not records:
            return []
        issues = await self._summaries_for([r.issue_key for r in records])
        details = build_project_details(records, {i.key: i for i in issues}, calculated_at=self._clock())
        await asyncio.to_thread(self.store.insert_project_details, details)
        return await asyncio.to_thread(self.store.get_project_details, quarter, rule)

    def cache_status(self) -> dict[str, Any]:
        return self.store.status()

    def excluded_issue_keys(self) -> set[str]:
        return self.store.excluded_issue_keys()

    def toggle_exclusion(self, issue_key: str, excluded_by: str, reason: str | None = None) -> bool:
        return self.store.toggle_exclusion(issue_key, excluded_by, reason)


def build_project_details(
    records: Iterable[CycleTimeRecord],
    issues: dict[str, IssueSummary],
    *,
    calculated_at: datetime,
) -> list[ProjectDetail]:
    details: list[ProjectDetail] = []
    for record in records:
        info = record.info
        quarter = info.completion_quarter
        if not info.is_completed or quarter is None:
            continue
        issue = issues.get(record.issue_key) or IssueSummary(key=record.issue_key)
        details.append(
            ProjectDetail(
                quarter=quarter,
                issue_key=record.issue_key,
                summary=issue.summary or f"Project {record.issue_key}",
                assignee=issue.assignee or "Unknown",
                discovery_start_date=info.discovery_start_date,
                calendar_days_in_discovery=info.calendar_days_in_discovery,
                active_days_in_discovery=info.active_days_in_discovery,
                calculated_at=calculated_at,
                inactivity_rule=record.inactivity_rule,
            )
        )
    return details


def build_cycle_service(
    server: str,
    email: str,
    token: str,
    *,
    db_path=None,
    settings: EngineSettings | None = None,
) -> CycleTimeService:
    """Jira-backed service with the SQLite cache at ``db_path`` (default location from config)."""
    api = JiraAPI(server, email, token)
    store = CycleTimeCacheStore(db_path or CYCLE_CACHE_DB_PATH)
    return CycleTimeService(api, store, settings)
