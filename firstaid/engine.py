from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, Field

from .collaborators import Metronome
from .schema import InstructionKey, Step, Topic
from .timer import IntervalTimer, Scheduler, TimerStatus

logger = logging.getLogger(__name__)


class TimerView(BaseModel):
    label: str
    remaining: str
    state: TimerStatus
    start_offered: bool

    model_config = {"extra": "forbid", "frozen": True}


class StepAffordances(BaseModel):
    step: int
    timer: Optional[TimerView] = None
    timestamp: Optional[datetime] = None
    timestamp_label: Optional[str] = None
    call_buttons: List[int] = Field(default_factory=list)
    links: Dict[int, str] = Field(default_factory=dict)
    warning_call: bool = False
    warning_link: Optional[str] = None
    metronome_available: bool = False
    metronome_playing: bool = False

    model_config = {"extra": "forbid", "frozen": True}


def _now() -> datetime:
    return datetime.now().astimezone()


class GuidanceEngine:
    """Checklist state and derived affordances for one open topic.

    Completion is keyed on ``InstructionKey`` so identical instruction text in
    different steps is tracked independently. Timers are owned by the engine
    and stopped by ``dispose`` (or on leaving the ``with`` block).
    """

    def __init__(
        self,
        topic: Topic,
        scheduler: Optional[Scheduler] = None,
        clock: Optional[Callable[[], datetime]] = None,
        metronome: Optional[Metronome] = None,
        on_timer_expire: Optional[Callable[[int], None]] = None,
    ):
        self.topic = topic
        self.clock = clock or _now
        self.metronome = metronome
        self.on_timer_expire = on_timer_expire
        self._completed: Set[InstructionKey] = set()
        self._timers: Dict[int, IntervalTimer] = {}
        self._revealed: Set[int] = set()
        self._timestamps: Dict[int, datetime] = {}
        self._metronome_playing = False
        self._disposed = False
        for step in topic.steps:
            trig = step.trigger
            if trig is None or not trig.is_timer:
                continue
            self._timers[step.number] = IntervalTimer(
                trig.duration_seconds,
                scheduler=scheduler,
                on_expire=self._expired_callback(step.number),
            )
            if trig.instruction is None:
                self._revealed.add(step.number)

    def _expired_callback(self, number: int) -> Callable[[], None]:
        def expired() -> None:
            logger.info("%s step %d: timer finished", self.topic.id, number)
            if self.on_timer_expire is not None:
                self.on_timer_expire(number)

        return expired

    # checklist

    def toggle(self, key: InstructionKey) -> bool:
        """Flip completion of ``key``; returns the new membership."""
        if self._disposed:
            logger.debug("toggle %s ignored after dispose", key)
            return key in self._completed
        key = InstructionKey(*key)
        self.topic.instruction(key)
        step = self.topic.step(key.step)
        if key in self._completed:
            self._completed.discard(key)
            if step.is_trigger(key):
                self._disarm(step)
            return False
        self._completed.add(key)
        if step.is_trigger(key):
            self._arm(step)
        return True

    def is_completed(self, key: InstructionKey) -> bool:
        return InstructionKey(*key) in self._completed

    def completed(self) -> List[InstructionKey]:
        return sorted(self._completed)

    def progress(self) -> Tuple[int, int]:
        return len(self._completed), len(self.topic.instruction_keys())

    def _arm(self, step: Step) -> None:
        trig = step.trigger
        if trig.kind == "timestamp":
            self._timestamps[step.number] = self.clock()
            return
        self._revealed.add(step.number)
        if trig.kind == "countdown":
            self._timers[step.number].restart()

    def _disarm(self, step: Step) -> None:
        trig = step.trigger
        if trig.kind == "timestamp":
            self._timestamps.pop(step.number, None)
            return
        self._timers[step.number].reset()
        self._revealed.discard(step.number)

    # timers

    def timer(self, step_number: int) -> Optional[IntervalTimer]:
        """The step's timer while it is shown, else None."""
        if step_number in self._revealed:
            return self._timers.get(step_number)
        return None

    def start_timer(self, step_number: int) -> bool:
        t = self._control(step_number)
        if t is None:
            return False
        t.start()
        return t.is_running

    def stop_timer(self, step_number: int) -> bool:
        t = self._control(step_number)
        if t is None:
            return False
        t.stop()
        return True

    def restart_timer(self, step_number: int) -> bool:
        t = self._control(step_number)
        if t is None:
            return False
        t.restart()
        return True

    def _control(self, step_number: int) -> Optional[IntervalTimer]:
        if step_number not in self._timers:
            raise ValueError(f"step {step_number} of {self.topic.id} has no timer")
        if self._disposed:
            logger.debug("timer control on step %d ignored after dispose", step_number)
            return None
        return self.timer(step_number)

    def timestamp(self, step_number: int) -> Optional[datetime]:
        return self._timestamps.get(step_number)

    # metronome

    @property
    def metronome_available(self) -> bool:
        return self.metronome is not None and any(s.metronome for s in self.topic.steps)

    @property
    def metronome_playing(self) -> bool:
        return self._metronome_playing

    def toggle_metronome(self) -> bool:
        if self._disposed:
            logger.debug("metronome toggle ignored after dispose")
            return False
        if not self.metronome_available:
            raise ValueError(f"{self.topic.id} has no metronome step")
        if self._metronome_playing:
            self.metronome.stop()
        else:
            self.metronome.start()
        self._metronome_playing = not self._metronome_playing
        return self._metronome_playing

    # derived view state

    def affordances(self, step_number: int) -> StepAffordances:
        step = self.topic.step(step_number)
        timer_view = None
        t = self.timer(step_number)
        if t is not None:
            timer_view = TimerView(
                label=step.trigger.label,
                remaining=t.formatted_remaining(),
                state=t.state,
                start_offered=t.state in ("idle", "paused"),
            )
        stamp = self._timestamps.get(step_number)
        return StepAffordances(
            step=step_number,
            timer=timer_view,
            timestamp=stamp,
            timestamp_label=step.trigger.label if stamp is not None else None,
            call_buttons=[i for i, ins in enumerate(step.instructions) if ins.emergency_call],
            links={i: ins.link for i, ins in enumerate(step.instructions) if ins.link},
            warning_call=step.warning_call,
            warning_link=step.warning_link,
            metronome_available=step.metronome and self.metronome is not None,
            metronome_playing=step.metronome and self._metronome_playing,
        )

    # lifecycle

    def dispose(self) -> None:
        if self._disposed:
            return
        for t in self._timers.values():
            t.dispose()
        if self._metronome_playing:
            self.metronome.stop()
            self._metronome_playing = False
        self._disposed = True
        logger.debug("guidance for %s disposed", self.topic.id)

    def __enter__(self) -> "GuidanceEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.dispose()
