from datetime import datetime, timezone

import pytest

from firstaid.catalog import Catalog
from firstaid.engine import GuidanceEngine
from firstaid.schema import InstructionKey
from firstaid.timer import ManualScheduler


class FakeMetronome:
    def __init__(self):
        self.events = []

    def start(self):
        self.events.append("start")

    def stop(self):
        self.events.append("stop")


def test_countdown_trigger_starts_and_hides_timer(catalog: Catalog, scheduler: ManualScheduler):
    engine = GuidanceEngine(catalog.get_topic("chemical-burns"), scheduler=scheduler)
    assert engine.timer(4) is None
    assert engine.affordances(4).timer is None

    assert engine.toggle(InstructionKey(4, 0)) is True
    view = engine.affordances(4).timer
    assert view.label == "Cooling Timer: "
    assert view.remaining == "20:00"
    assert view.state == "running"
    assert not view.start_offered

    scheduler.advance(1)
    assert engine.affordances(4).timer.remaining == "19:59"

    assert engine.toggle(InstructionKey(4, 0)) is False
    assert engine.timer(4) is None
    assert scheduler.pending == 0


def test_non_trigger_instruction_leaves_timer_alone(catalog: Catalog, scheduler: ManualScheduler):
    engine = GuidanceEngine(catalog.get_topic("chemical-burns"), scheduler=scheduler)
    engine.toggle(InstructionKey(4, 1))
    assert engine.is_completed((4, 1))
    assert engine.timer(4) is None


def test_double_toggle_restores_state_for_every_topic(catalog: Catalog):
    for topic in catalog.topics():
        engine = GuidanceEngine(topic, scheduler=ManualScheduler())
        before = {s.number: engine.affordances(s.number) for s in topic.steps}
        for key in topic.instruction_keys():
            engine.toggle(key)
            engine.toggle(key)
        assert engine.completed() == []
        assert {s.number: engine.affordances(s.number) for s in topic.steps} == before


def test_progress_counts_completed(catalog: Catalog, scheduler: ManualScheduler):
    topic = catalog.get_topic("cpr")
    engine = GuidanceEngine(topic, scheduler=scheduler)
    engine.toggle(InstructionKey(1, 0))
    engine.toggle(InstructionKey(3, 1))
    assert engine.progress() == (2, len(topic.instruction_keys()))
    assert engine.completed() == [InstructionKey(1, 0), InstructionKey(3, 1)]


def test_on_request_timer_is_offered_not_started(catalog: Catalog, scheduler: ManualScheduler):
    engine = GuidanceEngine(catalog.get_topic("minor-burns"), scheduler=scheduler)
    assert engine.start_timer(1) is False

    engine.toggle(InstructionKey(1, 0))
    view = engine.affordances(1).timer
    assert view.state == "idle" and view.start_offered

    assert engine.start_timer(1) is True
    scheduler.advance(65)
    assert engine.affordances(1).timer.remaining == "18:55"

    assert engine.stop_timer(1) is True
    assert engine.affordances(1).timer.state == "paused"
    assert engine.restart_timer(1) is True
    assert engine.affordances(1).timer.remaining == "20:00"


def test_step_level_timer_is_visible_from_the_start(catalog: Catalog, scheduler: ManualScheduler):
    engine = GuidanceEngine(catalog.get_topic("nosebleeds"), scheduler=scheduler)
    view = engine.affordances(2).timer
    assert view.label == "Nose Pinching Timer: "
    assert view.remaining == "10:00"
    assert view.state == "idle"
    assert engine.start_timer(2)


def test_timestamp_trigger_records_clock(catalog: Catalog, scheduler: ManualScheduler):
    moment = datetime(2024, 5, 1, 14, 30, tzinfo=timezone.utc)
    engine = GuidanceEngine(catalog.get_topic("anaphylaxis"), scheduler=scheduler, clock=lambda: moment)
    engine.toggle(InstructionKey(1, 2))
    aff = engine.affordances(1)
    assert aff.timestamp == moment
    assert aff.timestamp_label == "Adrenaline administered at "
    assert aff.timer is None

    engine.toggle(InstructionKey(1, 2))
    assert engine.timestamp(1) is None
    assert engine.affordances(1).timestamp_label is None


def test_timer_control_errors(catalog: Catalog, scheduler: ManualScheduler):
    engine = GuidanceEngine(catalog.get_topic("cpr"), scheduler=scheduler)
    with pytest.raises(ValueError):
        engine.start_timer(1)
    with pytest.raises(KeyError):
        engine.toggle(InstructionKey(9, 0))
    with pytest.raises(KeyError):
        engine.toggle(InstructionKey(1, 42))


def test_expiry_notifies_with_step_number(catalog: Catalog, scheduler: ManualScheduler):
    expired = []
    engine = GuidanceEngine(catalog.get_topic("seizures"), scheduler=scheduler, on_timer_expire=expired.append)
    engine.toggle(InstructionKey(1, 3))
    scheduler.advance(299)
    assert expired == []
    scheduler.advance(1)
    assert expired == [1]
    view = engine.affordances(1).timer
    assert view.state == "expired" and view.remaining == "00:00"
    assert not view.start_offered


def test_dispose_stops_timers_and_metronome(catalog: Catalog, scheduler: ManualScheduler):
    metronome = FakeMetronome()
    with GuidanceEngine(catalog.get_topic("cpr"), scheduler=scheduler, metronome=metronome) as engine:
        assert engine.metronome_available
        assert engine.toggle_metronome() is True
        assert engine.affordances(3).metronome_playing
        assert not engine.affordances(2).metronome_available
    assert metronome.events == ["start", "stop"]
    assert engine.toggle(InstructionKey(1, 0)) is False
    assert engine.completed() == []


def test_dispose_cancels_running_countdown(catalog: Catalog, scheduler: ManualScheduler):
    engine = GuidanceEngine(catalog.get_topic("asthma"), scheduler=scheduler)
    engine.toggle(InstructionKey(3, 0))
    assert scheduler.pending == 1
    engine.dispose()
    assert scheduler.pending == 0
    assert engine.start_timer(3) is False


def test_metronome_requires_metronome_step(catalog: Catalog):
    engine = GuidanceEngine(catalog.get_topic("choking"), metronome=FakeMetronome())
    assert not engine.metronome_available
    with pytest.raises(ValueError):
        engine.toggle_metronome()


def test_call_buttons_links_and_warnings(catalog: Catalog):
    survey = GuidanceEngine(catalog.get_topic("primary-survey"))
    aff = survey.affordances(5)
    assert aff.call_buttons == [0, 1]
    assert aff.links == {0: "severe-bleeding", 1: "recovery-position"}

    asthma = GuidanceEngine(catalog.get_topic("asthma"))
    assert asthma.affordances(2).warning_call
    assert asthma.affordances(4).warning_link == "cpr"
    assert asthma.affordances(3).call_buttons == [0]
