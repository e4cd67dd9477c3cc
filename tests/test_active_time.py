from datetime import UTC, datetime, timedelta

from discovery_app.analytics.metrics.active_time import accumulate_active_time
from discovery_app.core.models import HealthTransition, StatusTransition

T0 = datetime(2025, 3, 3, 9, 30, tzinfo=UTC)


def _s(days, frm, to):
    return StatusTransition(timestamp=T0 + timedelta(days=days), from_status=frm, to_status=to)


def _h(days, frm, to):
    return HealthTransition(timestamp=T0 + timedelta(days=days), from_health=frm, to_health=to)


BUILD_AFTER_TEN = [_s(0, "01 Inbox", "02 Generative Discovery"), _s(10, "02 Generative Discovery", "06 Build")]
ON_HOLD = [_h(3, "On Track", "On Hold"), _h(8, "On Hold", "On Track")]
END = T0 + timedelta(days=10)


def test_no_inactivity_means_active_equals_calendar():
    result = accumulate_active_time(BUILD_AFTER_TEN, [], T0, END)
    assert result.calendar_days == 10
    assert result.active_days == 10
    assert result.inactive_days == 0
    assert result.inactive_periods == []


def test_on_hold_in_discovery_ignored_by_default():
    result = accumulate_active_time(BUILD_AFTER_TEN, ON_HOLD, T0, END)
    assert result.calendar_days == 10
    assert result.active_days == 10
    assert result.inactive_periods == []


def test_on_hold_overrides_discovery_status_when_enabled():
    result = accumulate_active_time(BUILD_AFTER_TEN, ON_HOLD, T0, END, hold_overrides_discovery_status=True)
    assert result.calendar_days == 10
    assert result.inactive_days == 5
    assert result.active_days == 5
    assert len(result.inactive_periods) == 1
    period = result.inactive_periods[0]
    assert period.start == T0 + timedelta(days=3)
    assert period.end == T0 + timedelta(days=8)
    assert period.days == 5


def test_inactive_status_interval_is_subtracted():
    status = [
        _s(0, "01 Inbox", "02 Generative Discovery"),
        _s(2, "02 Generative Discovery", "03 Committed"),
        _s(6, "03 Committed", "04 Problem Discovery"),
        _s(10, "04 Problem Discovery", "06 Build"),
    ]
    result = accumulate_active_time(status, [], T0, END)
    assert result.inactive_days == 4
    assert result.active_days == 6
    assert [p.start for p in result.inactive_periods] == [T0 + timedelta(days=2)]


def test_events_after_cycle_end_are_ignored():
    status = [
        _s(0, "01 Inbox", "02 Generative Discovery"),
        _s(10, "02 Generative Discovery", "06 Build"),
        _s(14, "06 Build", "07 Beta"),
    ]
    health = [_h(11, "On Track", "On Hold")]
    result = accumulate_active_time(status, health, T0, END)
    assert result.active_days == 10


def test_health_before_start_does_not_apply():
    for flag in (False, True):
        result = accumulate_active_time(
            BUILD_AFTER_TEN, [_h(-5, "On Track", "On Hold")], T0, END, hold_overrides_discovery_status=flag
        )
        assert result.calendar_days == 10
        assert result.inactive_days == 0
        assert result.active_days == 10
        assert result.inactive_periods == []

    health = [_h(-5, "On Track", "On Hold"), _h(4, "On Hold", "On Track")]
    result = accumulate_active_time(BUILD_AFTER_TEN, health, T0, END, hold_overrides_discovery_status=True)
    assert result.inactive_days == 0
    assert result.active_days == 10


def test_health_set_inside_cycle_carries_across_status_changes():
    status = [
        _s(0, "01 Inbox", "02 Generative Discovery"),
        _s(4, "02 Generative Discovery", "04 Problem Discovery"),
        _s(10, "04 Problem Discovery", "06 Build"),
    ]
    health = [_h(2, "On Track", "On Hold")]
    result = accumulate_active_time(status, health, T0, END, hold_overrides_discovery_status=True)
    assert result.inactive_days == 8
    assert result.active_days == 2


def test_inactive_tail_of_completed_cycle_is_counted():
    health = [_h(6, "On Track", "On Hold")]
    result = accumulate_active_time(BUILD_AFTER_TEN, health, T0, END, hold_overrides_discovery_status=True)
    assert result.inactive_days == 4
    assert result.active_days == 6
    assert result.inactive_periods[-1].end == END


def test_open_cycle_tail_is_reported_but_not_subtracted():
    now = T0 + timedelta(days=10, hours=12)
    status = [_s(0, "01 Inbox", "02 Generative Discovery"), _s(6, "02 Generative Discovery", "03 Committed")]
    result = accumulate_active_time(status, [], T0, now, is_open=True)
    assert result.calendar_days == 11
    assert result.inactive_days == 0
    assert result.active_days == 11
    assert len(result.inactive_periods) == 1
    assert result.inactive_periods[0].end == now


def test_short_inactive_spells_are_not_periods():
    status = [
        _s(0, "01 Inbox", "02 Generative Discovery"),
        _s(2, "02 Generative Discovery", "03 Committed"),
        _s(2.5, "03 Committed", "02 Generative Discovery"),
        _s(10, "02 Generative Discovery", "06 Build"),
    ]
    result = accumulate_active_time(status, [], T0, END)
    assert result.inactive_periods == []
    assert result.active_days == 10


def test_active_never_exceeds_calendar_nor_goes_negative():
    histories = [
        (BUILD_AFTER_TEN, ON_HOLD),
        (BUILD_AFTER_TEN, [_h(0, None, "On Hold")]),
        ([_s(0, None, "02 Generative Discovery"), _s(0.2, "02 Generative Discovery", "01 Inbox")], []),
    ]
    for status, health in histories:
        for flag in (False, True):
            end = T0 + timedelta(days=10)
            result = accumulate_active_time(status, health, T0, end, hold_overrides_discovery_status=flag)
            assert 0 <= result.active_days <= result.calendar_days
