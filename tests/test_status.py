from discovery_app.core.models import EndDateLogic
from discovery_app.core.status import (
    classify_cycle_end,
    clean_status_name,
    is_discovery_status,
    is_inactive,
    normalize_health,
)


def test_clean_and_normalize():
    assert clean_status_name("  06 Build ") == "06 Build"
    assert clean_status_name("null") is None
    assert clean_status_name("") is None
    assert normalize_health("ONHOLD") == "On Hold"
    assert normalize_health("Something New") == "Something New"
    assert normalize_health(None) is None


def test_discovery_statuses_match_by_containment():
    assert is_discovery_status("05 Solution Discovery (legacy)")
    assert not is_discovery_status("03 Committed")
    assert not is_discovery_status(None)


def test_classify_cycle_end():
    assert classify_cycle_end("06 Build") is EndDateLogic.BUILD_TRANSITION
    assert classify_cycle_end("Won't Do") is EndDateLogic.WONT_DO
    assert classify_cycle_end("09 Live") is EndDateLogic.LIVE
    assert classify_cycle_end("Done") is EndDateLogic.COMPLETED
    assert classify_cycle_end("04 Problem Discovery") is None
    assert classify_cycle_end("01 Inbox") is None


def test_inactivity_rules():
    assert is_inactive("03 Committed", None)
    assert is_inactive("01 Inbox", "On Track")
    assert not is_inactive("02 Generative Discovery", "At Risk")
    # On Hold inside discovery depends on the rule
    assert not is_inactive("02 Generative Discovery", "On Hold")
    assert is_inactive("02 Generative Discovery", "On Hold", hold_overrides_discovery_status=True)
    # Outside discovery it always counts
    assert is_inactive("06 Build", "on hold")
    assert not is_inactive(None, None)
