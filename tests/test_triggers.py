"""Tests for the extraction trigger."""

from datetime import datetime, timedelta

from hippo.memory.triggers import ExtractionTrigger, TriggerReason

T0 = datetime(2024, 6, 1, 12, 0)


def test_fires_on_full_batch():
    trigger = ExtractionTrigger(batch_size=5, active_threshold=100)
    decisions = [trigger.on_message("g1", now=T0) for _ in range(5)]
    assert [d.should_extract for d in decisions] == [False] * 4 + [True]
    assert decisions[-1].reason == TriggerReason.BATCH
    assert decisions[-1].pending == 5


def test_fires_after_persona_spoke():
    trigger = ExtractionTrigger(batch_size=100, active_threshold=3)
    trigger.on_message("g1", now=T0)
    trigger.on_message("g1", from_persona=True, now=T0)
    decisions = [trigger.on_message("g1", now=T0) for _ in range(3)]
    assert [d.should_extract for d in decisions] == [False, False, True]
    assert decisions[-1].reason == TriggerReason.ACTIVE


def test_fires_after_max_wait():
    trigger = ExtractionTrigger(batch_size=100, max_wait_minutes=15)
    assert not trigger.on_message("g1", now=T0).should_extract
    assert not trigger.check("g1", now=T0 + timedelta(minutes=10)).should_extract

    decision = trigger.check("g1", now=T0 + timedelta(minutes=16))
    assert decision.should_extract
    assert decision.reason == TriggerReason.TIMEOUT


def test_nothing_pending_never_fires():
    trigger = ExtractionTrigger(max_wait_minutes=1)
    assert not trigger.check("g1", now=T0 + timedelta(days=1)).should_extract


def test_mark_extracted_resets():
    trigger = ExtractionTrigger(batch_size=2, active_threshold=1)
    trigger.on_message("g1", from_persona=True, now=T0)
    assert trigger.on_message("g1", now=T0).should_extract

    trigger.mark_extracted("g1", now=T0)

    assert trigger.pending("g1") == 0
    assert not trigger.on_message("g1", now=T0 + timedelta(minutes=1)).should_extract


def test_communities_counted_separately():
    trigger = ExtractionTrigger(batch_size=2)
    trigger.on_message("g1", now=T0)
    trigger.on_message("g2", now=T0)
    assert trigger.pending("g1") == 1
    assert trigger.on_message("g1", now=T0).should_extract
    assert not trigger.check("g2", now=T0).should_extract


def test_in_flight_guard():
    trigger = ExtractionTrigger()
    assert trigger.begin("g1")
    assert not trigger.begin("g1")
    assert trigger.in_flight("g1")
    assert trigger.begin("g2")

    trigger.finish("g1")

    assert not trigger.in_flight("g1")
    assert trigger.begin("g1")
