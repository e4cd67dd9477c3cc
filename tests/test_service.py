import asyncio
import time
from datetime import UTC, datetime, timedelta

import pytest

from discovery_app.core.cache_store import CycleTimeCacheStore
from discovery_app.core.config import INACTIVITY_RULE_HOLD_OVERRIDES, INACTIVITY_RULE_STATUS_AWARE, EngineSettings
from discovery_app.core.jira_client import JiraAPI, JiraSourceError
from discovery_app.core.models import (
    CycleTimeRecord,
    DiscoveryCycleInfo,
    EndDateLogic,
    InactivePeriod,
    IssueSummary,
    ProjectDetail,
)
from discovery_app.core.service import ChangelogMemo, CycleTimeService

NOW = datetime(2025, 7, 15, 12, 0, tzinfo=UTC)


def _changelog(*changes):
    values = []
    for when, frm, to in changes:
        values.append(
            {
                "created": when.strftime("%Y-%m-%dT%H:%M:%S.000+0000"),
                "items": [{"field": "status", "fromString": frm, "toString": to}],
            }
        )
    return {"values": values, "isLast": True}


def _cycle(start, days, end_status="06 Build"):
    return _changelog(
        (start, "01 Inbox", "02 Generative Discovery"),
        (start + timedelta(days=days), "02 Generative Discovery", end_status),
    )


def _histories():
    return {
        "HT-1": _cycle(datetime(2025, 1, 6, 15, tzinfo=UTC), 10),
        "HT-2": _cycle(datetime(2025, 4, 7, 15, tzinfo=UTC), 20),
        "HT-3": _cycle(datetime(2025, 5, 1, 15, tzinfo=UTC), 5, "Won't Do"),
        "HT-4": _changelog((datetime(2025, 7, 1, 15, tzinfo=UTC), "01 Inbox", "04 Problem Discovery")),
        "HT-5": {"values": []},
    }


class DummySource(JiraAPI):
    def __init__(self, histories=None, *, failing=(), delay=0.0, listing_fails=False):
        self.server = "https://example.atlassian.net"
        self.histories = _histories() if histories is None else histories
        self.failing = set(failing)
        self.delay = delay
        self.listing_fails = listing_fails
        self.fetches = []

    def fetch_changelog(self, issue_key):
        self.fetches.append(issue_key)
        if self.delay:
            time.sleep(self.delay)
        if issue_key in self.failing:
            raise JiraSourceError(f"Jira request failed 500: {issue_key}")
        return self.histories.get(issue_key, {"values": []})

    def list_cycle_issues(self, project_key):
        if self.listing_fails:
            raise JiraSourceError("Jira request failed 401: unauthorized")
        return [IssueSummary(key=k, summary=f"Summary {k}", assignee="Robin") for k in self.histories]


def _service(tmp_path, source=None, **settings):
    store = CycleTimeCacheStore(tmp_path / "cache.sqlite3")
    return CycleTimeService(source or DummySource(), store, EngineSettings(**settings), clock=lambda: NOW)


def _stale_record(key="OLD-1"):
    end = datetime(2025, 2, 1, 15, tzinfo=UTC)
    info = DiscoveryCycleInfo(
        discovery_start_date=end - timedelta(days=3),
        discovery_end_date=end,
        end_date_logic=EndDateLogic.BUILD_TRANSITION,
        calendar_days_in_discovery=3,
        active_days_in_discovery=3,
    )
    return CycleTimeRecord(issue_key=key, info=info, calculated_at=end, inactivity_rule=INACTIVITY_RULE_STATUS_AWARE)


def test_get_cycle_info_computes_then_hits_cache(tmp_path):
    svc = _service(tmp_path)
    record = asyncio.run(svc.get_cycle_info("HT-1"))
    assert record.info.end_date_logic is EndDateLogic.BUILD_TRANSITION
    assert record.info.calendar_days_in_discovery == 10
    assert record.calculated_at == NOW
    assert svc.store.get("HT-1") is not None

    again = asyncio.run(svc.get_cycle_info("HT-1"))
    assert again.info == record.info
    assert svc.source.fetches == ["HT-1"]

    asyncio.run(svc.get_cycle_info("HT-1", force=True))
    assert svc.source.fetches == ["HT-1", "HT-1"]


def test_cached_row_without_periods_fetches_them_on_request(tmp_path):
    svc = _service(tmp_path)
    svc.store.upsert(_stale_record("HT-1"))
    record = asyncio.run(svc.get_cycle_info("HT-1", include_inactive_periods=True))
    assert record.info.calendar_days_in_discovery == 3  # cached info is kept
    assert record.inactive_periods == []
    assert svc.source.fetches == ["HT-1"]


def test_upstream_failure_returns_error_sentinel_without_caching(tmp_path):
    svc = _service(tmp_path, DummySource(failing={"HT-1"}))
    record = asyncio.run(svc.get_cycle_info("HT-1"))
    assert record.info.end_date_logic is EndDateLogic.ERROR
    assert record.info.calendar_days_in_discovery == 0
    assert record.info.discovery_start_date == NOW
    assert svc.store.get("HT-1") is None


def test_slow_fetch_times_out_to_error_sentinel(tmp_path):
    svc = _service(tmp_path, DummySource(delay=0.3), cycle_info_timeout=0.01)
    record = asyncio.run(svc.get_cycle_info("HT-2"))
    assert record.info.end_date_logic is EndDateLogic.ERROR
    assert svc.store.get("HT-2") is None


def test_get_inactive_periods(tmp_path):
    svc = _service(tmp_path, DummySource(failing={"HT-9"}))
    period = InactivePeriod(start=NOW - timedelta(days=9), end=NOW - timedelta(days=2))
    cached = _stale_record("HT-8")
    cached.inactive_periods = [period]
    svc.store.upsert(cached)
    assert asyncio.run(svc.get_inactive_periods("HT-8")) == [period]
    assert asyncio.run(svc.get_inactive_periods("HT-9")) == []
    assert svc.source.fetches == ["HT-9"]


def test_rebuild_cache_clears_both_caches_and_repopulates(tmp_path):
    svc = _service(tmp_path, batch_size=2)
    svc.store.upsert(_stale_record())
    svc.store.insert_project_details(
        [
            ProjectDetail(
                quarter="Q1_2025",
                issue_key="OLD-1",
                summary="Old",
                assignee=None,
                discovery_start_date=None,
                calendar_days_in_discovery=3,
                active_days_in_discovery=3,
                calculated_at=NOW,
            )
        ]
    )
    events = []
    summary = asyncio.run(svc.rebuild_cache(progress=lambda m, c, t: events.append((m, c, t))))

    assert summary.total == 5
    assert summary.processed == 5
    assert summary.completed_cycles == 3
    assert summary.errors == 0
    assert {r.issue_key for r in svc.get_all_cycle_infos()} == {"HT-1", "HT-2", "HT-3", "HT-4", "HT-5"}
    assert svc.store.get("HT-5").info.end_date_logic is EndDateLogic.NO_STATUS_CHANGES
    assert svc.store.get("HT-4").info.end_date_logic is EndDateLogic.STILL_IN_DISCOVERY

    q1 = svc.store.get_project_details("Q1_2025")
    assert [d.issue_key for d in q1] == ["HT-1"]
    q2 = svc.store.get_project_details("Q2_2025")
    assert [d.issue_key for d in q2] == ["HT-2", "HT-3"]
    assert q2[0].summary == "Summary HT-2"
    assert q2[0].assignee == "Robin"

    assert events[0] == ("Listing project issues", None, None)
    assert events[-1] == ("Processed batch 3/3", 5, 5)


def test_rebuild_counts_failures_and_keeps_going(tmp_path):
    svc = _service(tmp_path, DummySource(failing={"HT-2"}))
    summary = asyncio.run(svc.rebuild_cache())
    assert summary.errors == 1
    assert summary.error_keys == ["HT-2"]
    assert summary.completed_cycles == 2
    assert svc.store.get("HT-2") is None
    assert svc.store.get("HT-1") is not None


def test_rebuild_cache_has_no_key_subset(tmp_path):
    svc = _service(tmp_path)
    with pytest.raises(TypeError):
        svc.rebuild_cache(["HT-1", "HT-3"])


def test_failed_listing_leaves_cache_untouched(tmp_path):
    svc = _service(tmp_path, DummySource(listing_fails=True))
    svc.store.upsert(_stale_record())
    summary = asyncio.run(svc.rebuild_cache())
    assert summary.errors == 1
    assert svc.store.get("OLD-1") is not None


def test_refresh_issues_only_touches_given_keys(tmp_path):
    source = DummySource()
    svc = _service(tmp_path, source)
    asyncio.run(svc.rebuild_cache())
    source.histories["HT-3"] = _cycle(datetime(2025, 5, 1, 15, tzinfo=UTC), 9, "Won't Do")
    fetched_before = len(source.fetches)

    summary = asyncio.run(svc.refresh_issues(["HT-3", " HT-3 ", ""]))
    assert summary.processed == 1
    assert source.fetches[fetched_before:] == ["HT-3"]
    assert svc.store.get("HT-3").info.calendar_days_in_discovery == 9
    details = {d.issue_key: d for d in svc.store.get_project_details("Q2_2025")}
    assert details["HT-3"].calendar_days_in_discovery == 9
    assert "HT-2" in details
    assert asyncio.run(svc.refresh_issues([])).processed == 0


def test_clear_and_rebuild_quarter(tmp_path):
    svc = _service(tmp_path)
    asyncio.run(svc.rebuild_cache())

    removed = asyncio.run(svc.clear_quarter("Q2_2025"))
    assert removed == ["HT-2", "HT-3"]
    assert svc.store.get("HT-2") is None
    assert svc.store.get_project_details("Q2_2025") == []
    assert [d.issue_key for d in svc.store.get_project_details("Q1_2025")] == ["HT-1"]

    asyncio.run(svc.rebuild_cache())
    summary = asyncio.run(svc.rebuild_quarter("Q2_2025"))
    assert summary.processed == 2
    assert svc.store.get("HT-2") is not None
    assert len(svc.store.get_project_details("Q2_2025")) == 2
    assert asyncio.run(svc.rebuild_quarter("Q4_2030")).processed == 0


def test_get_cohorts_merges_persisted_and_explicit_exclusions(tmp_path):
    svc = _service(tmp_path)
    asyncio.run(svc.rebuild_cache())
    cohorts = svc.get_cohorts("calendar")
    assert cohorts["Q1_2025"].size == 1
    assert cohorts["Q2_2025"].size == 2
    assert cohorts["Q2_2025"].stats.max == 20

    assert svc.toggle_exclusion("HT-2", "robin@example.com") is True
    assert svc.excluded_issue_keys() == {"HT-2"}
    cohorts = svc.get_cohorts("active", excluded_keys={"HT-1"})
    assert list(cohorts) == ["Q2_2025"]
    assert cohorts["Q2_2025"].data == [5]


def test_get_quarter_details_rebuilds_missing_rows(tmp_path):
    svc = _service(tmp_path)
    asyncio.run(svc.rebuild_cache())
    svc.store.clear_project_details()

    details = asyncio.run(svc.get_quarter_details("Q2_2025"))
    assert [d.issue_key for d in details] == ["HT-2", "HT-3"]
    assert details[1].summary == "Summary HT-3"
    assert len(svc.store.get_project_details("Q2_2025")) == 2
    assert asyncio.run(svc.get_quarter_details("Q3_2019")) == []


def test_quarter_details_fall_back_when_listing_fails(tmp_path):
    source = DummySource()
    svc = _service(tmp_path, source)
    asyncio.run(svc.rebuild_cache())
    svc.store.clear_project_details()
    source.listing_fails = True

    details = asyncio.run(svc.get_quarter_details("Q1_2025"))
    assert details[0].summary == "Project HT-1"
    assert details[0].assignee == "Unknown"


def test_prefilled_memo_is_used_and_cleared(tmp_path):
    source = DummySource({"HT-1": {"values": []}})
    svc = _service(tmp_path, source)
    memo = ChangelogMemo({"HT-1": _cycle(datetime(2025, 1, 6, 15, tzinfo=UTC), 4)})
    asyncio.run(svc.rebuild_cache(memo=memo))
    assert source.fetches == []
    assert len(memo) == 0
    assert svc.store.get("HT-1").info.calendar_days_in_discovery == 4


def test_changelog_memo_scope():
    with ChangelogMemo() as memo:
        memo.put("HT-1", {"values": []})
        assert "HT-1" in memo
        assert memo.get("HT-1") == {"values": []}
    assert "HT-1" not in memo
    assert memo.get("HT-1") is None


def test_forced_recompute_keeps_project_details_in_step(tmp_path):
    source = DummySource()
    svc = _service(tmp_path, source)
    asyncio.run(svc.rebuild_cache())
    source.histories["HT-2"] = _cycle(datetime(2025, 4, 7, 15, tzinfo=UTC), 30)
    source.histories["HT-4"] = _cycle(datetime(2025, 6, 1, 15, tzinfo=UTC), 10)

    assert asyncio.run(svc.get_cycle_info("HT-2", force=True)).info.calendar_days_in_discovery == 30
    assert asyncio.run(svc.get_cycle_info("HT-4", force=True)).info.completion_quarter == "Q2_2025"

    details = {d.issue_key: d for d in asyncio.run(svc.get_quarter_details("Q2_2025"))}
    assert set(details) == {"HT-2", "HT-3", "HT-4"}
    assert details["HT-2"].calendar_days_in_discovery == 30
    assert details["HT-2"].summary == "Summary HT-2"
    assert details["HT-4"].summary == "Summary HT-4"
    assert svc.get_cohorts("calendar")["Q2_2025"].stats.max == 30


def test_recompute_moving_issue_out_of_quarter_drops_its_detail_row(tmp_path):
    source = DummySource()
    svc = _service(tmp_path, source)
    asyncio.run(svc.rebuild_cache())
    source.histories["HT-3"] = _cycle(datetime(2025, 7, 1, 15, tzinfo=UTC), 5, "Won't Do")

    asyncio.run(svc.get_cycle_info("HT-3", force=True))
    assert [d.issue_key for d in asyncio.run(svc.get_quarter_details("Q2_2025"))] == ["HT-2"]
    # Q3 had no cached details, so the whole quarter is derived on demand
    assert svc.store.get_project_details("Q3_2025") == []
    q3 = asyncio.run(svc.get_quarter_details("Q3_2025"))
    assert [d.issue_key for d in q3] == ["HT-3"]
    assert q3[0].summary == "Summary HT-3"


def test_rows_from_other_inactivity_rule_are_cache_misses(tmp_path):
    source = DummySource()
    svc = _service(tmp_path, source)
    asyncio.run(svc.rebuild_cache())
    assert {r.inactivity_rule for r in svc.get_all_cycle_infos()} == {INACTIVITY_RULE_STATUS_AWARE}

    flipped = CycleTimeService(
        source, svc.store, EngineSettings(hold_overrides_discovery_status=True), clock=lambda: NOW
    )
    assert flipped.get_all_cycle_infos() == []
    assert all(c.size == 0 for c in flipped.get_cohorts("calendar").values())
    assert asyncio.run(flipped.get_quarter_details("Q2_2025")) == []
    assert flipped.cache_status()["by_inactivity_rule"] == {INACTIVITY_RULE_STATUS_AWARE: 5}

    fetched_before = len(source.fetches)
    record = asyncio.run(flipped.get_cycle_info("HT-1"))
    assert record.inactivity_rule == INACTIVITY_RULE_HOLD_OVERRIDES
    assert source.fetches[fetched_before:] == ["HT-1"]
    assert svc.store.get("HT-1").inactivity_rule == INACTIVITY_RULE_HOLD_OVERRIDES
    assert [r.issue_key for r in flipped.get_all_cycle_infos()] == ["HT-1"]
    assert list(flipped.get_cohorts("calendar")) == ["Q1_2025"]
