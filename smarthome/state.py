"""Canonical device state.

`DeviceStateStore` is the only writer of the device record. Every mutation
builds a new frozen `DeviceState` and swaps it in under one lock, so a
snapshot handed to a reader can never be half-updated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from threading import Lock

from .schemas import RELAY_IDS, DeviceState, StatusReport, TelemetryReading

log = logging.getLogger("state")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceStateStore:
    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._lock = Lock()
        # never heard from the device: silence is measured from startup
        self._state = DeviceState(last_seen=clock(), online=False)

    def read_snapshot(self) -> DeviceState:
        with self._lock:
            return self._state.model_copy(deep=True)

    def apply_telemetry(self, reading: TelemetryReading, *, merge: bool = False) -> DeviceState:
        """Overwrite the sensor fields. With `merge`, only fields present in the payload."""
        fields = reading.model_dump(exclude_unset=merge)
        with self._lock:
            now = self._clock()
            self._state = self._state.model_copy(update={**fields, "last_seen": now, "online": True})
            return self._state.model_copy(deep=True)

    def apply_status(self, report: StatusReport, *, merge: bool = False) -> DeviceState:
        fields = report.model_dump(exclude_unset=merge)
        with self._lock:
            now = self._clock()
            relays = dict(self._state.relays)
            for relay_id in RELAY_IDS:
                if relay_id in fields:
                    relays[relay_id] = fields[relay_id]
            self._state = self._state.model_copy(update={"relays": relays, "last_seen": now, "online": True})
            return self._state.model_copy(deep=True)

    def mark_heartbeat(self) -> DeviceState:
        with self._lock:
            self._state = self._state.model_copy(update={"last_seen": self._clock(), "online": True})
            return self._state.model_copy(deep=True)

    def mark_offline(self) -> DeviceState:
        with self._lock:
            self._state = self._state.model_copy(update={"online": False})
            return self._state.model_copy(deep=True)

    def is_silent(self, window: timedelta, now: datetime | None = None) -> bool:
        """True when the device has said nothing for longer than `window`."""
        with self._lock:
            last_seen = self._state.last_seen
        return ((now or self._clock()) - last_seen) > window

    def expire_if_silent(self, window: timedelta) -> DeviceState | None:
        """Demote an online device whose silence exceeds `window`.

        Returns the demoted snapshot, or None when nothing changed.
        """
        with self._lock:
            state = self._state
            if not state.online or (self._clock() - state.last_seen) <= window:
                return None
            self._state = state.model_copy(update={"online": False})
            demoted = self._state.model_copy(deep=True)
        log.debug("state: online -> offline (last_seen=%s)", demoted.last_seen.isoformat())
        return demoted
