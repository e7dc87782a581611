import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from .state import DeviceStateStore

log = logging.getLogger("liveness")


class LivenessMonitor:
    """Periodically demotes the device to offline after a silence window.

    Only the monitor declares the device offline; only device traffic
    (through the ingestor) brings it back.
    """

    def __init__(
        self,
        store: DeviceStateStore,
        *,
        window: float = 120.0,
        interval: float = 30.0,
        on_offline: Callable[[datetime], None] | None = None,
    ) -> None:
        self.store = store
        self.window = timedelta(seconds=window)
        self.interval = interval
        self.on_offline = on_offline
        self._task: asyncio.Task | None = None

    def tick(self) -> bool:
        demoted = self.store.expire_if_silent(self.window)
        if demoted is None:
            return False
        # the live record may already be back online; report what was demoted
        last_seen = demoted.last_seen
        log.warning("Device appears offline (last seen %s)", last_seen.isoformat())
        if self.on_offline is not None:
            try:
                self.on_offline(last_seen)
            except Exception:
                log.exception("offline listener failed")
        return True

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            # the offline listener commits to the database
            await asyncio.to_thread(self.tick)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="liveness-monitor")
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
