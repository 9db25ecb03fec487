from __future__ import annotations

import logging
import socket
from typing import Callable, List, Optional, Protocol

from .timer import AsyncioScheduler, Handle, Scheduler

logger = logging.getLogger(__name__)

EMERGENCY_NUMBERS = ("999", "112")
OFFLINE_BANNER = "Offline Mode: You can still access first aid guides."


class Telephony(Protocol):
    def place_call(self, number: str) -> None: ...


class Metronome(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...


class EmergencyCaller:
    """Dials an emergency number once the user confirms the prompt."""

    def __init__(self, telephony: Telephony, confirm: Callable[[str], bool]):
        self.telephony = telephony
        self.confirm = confirm

    @staticmethod
    def prompt(number: str) -> str:
        return f"Are you sure you want to call {number}?"

    def call(self, number: str) -> bool:
        if number not in EMERGENCY_NUMBERS:
            raise ValueError(f"not an emergency number: {number!r}")
        if not self.confirm(self.prompt(number)):
            logger.info("call to %s cancelled", number)
            return False
        logger.info("placing call to %s", number)
        self.telephony.place_call(number)
        return True


class ScheduledMetronome:
    """Compression pacing beat driven by a scheduler instead of an audio loop."""

    def __init__(
        self,
        on_beat: Callable[[int], None],
        scheduler: Optional[Scheduler] = None,
        bpm: int = 110,
    ):
        if not 100 <= bpm <= 120:
            raise ValueError("compression rate must be 100-120 per minute")
        self.on_beat = on_beat
        self.scheduler: Scheduler = scheduler if scheduler is not None else AsyncioScheduler()
        self.period = 60.0 / bpm
        self.beats = 0
        self._anchor = 0.0
        self._handle: Optional[Handle] = None

    @property
    def playing(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        if self.playing:
            return
        self.beats = 0
        self._anchor = self.scheduler.time()
        self._handle = self.scheduler.call_at(self._anchor + self.period, self._beat)

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _beat(self) -> None:
        self.beats += 1
        self._handle = self.scheduler.call_at(self._anchor + (self.beats + 1) * self.period, self._beat)
        self.on_beat(self.beats)


class ConnectivityMonitor:
    """Boolean reachability observable."""

    def __init__(self, connected: bool = True):
        self._connected = connected
        self._subscribers: List[Callable[[bool], None]] = []

    @property
    def connected(self) -> bool:
        return self._connected

    def subscribe(self, callback: Callable[[bool], None]) -> Callable[[], None]:
        self._subscribers.append(callback)
        callback(self._connected)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def set_connected(self, connected: bool) -> None:
        if connected == self._connected:
            return
        self._connected = connected
        logger.info("connectivity changed: %s", "online" if connected else "offline")
        for cb in list(self._subscribers):
            cb(connected)


def check_connectivity(host: str = "8.8.8.8", port: int = 53, timeout: float = 1.5) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True
    except OSError as e:
        logger.info("no route to %s:%d: %s", host, port, e)
        return False


class NetworkGate:
    """Decides whether network-backed features may be offered."""

    def __init__(self, monitor: ConnectivityMonitor):
        self.monitor = monitor

    @property
    def network_features_available(self) -> bool:
        return self.monitor.connected

    @property
    def banner(self) -> Optional[str]:
        return None if self.monitor.connected else OFFLINE_BANNER
