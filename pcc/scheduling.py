from __future__ import annotations

import asyncio
import enum
from typing import Any, Awaitable, Callable

from . import db
from .model import GLOBALS, TOPOLOGY, ProxyModel
from .payload import PERSISTENCE, build_payload
from .settings import settings


class Debouncer:
    """Single pending timer on the running event loop.

    arm() cancels whatever was pending and starts the window again, so only
    the last call in a burst fires.
    """

    def __init__(self, delay_s: float, callback: Callable[[], None]):
        self.delay_s = max(0.0, float(delay_s))
        self.callback = callback
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_s, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.callback()


class ReloadState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    RUNNING_WITH_RERUN = "running_with_rerun"


class ReloadCoordinator:
    """Debounced, coalescing hot-reload trigger.

    Armed only once the model is hydrated and the engine reports running. The
    first change observed after arming is the hydration/start itself and is
    skipped. While a reload is in flight, any number of further firings
    collapse into one rerun issued right after it completes.

    `busy` reports whether a manual start/stop/reload holds the engine. A
    firing during one is queued like a rerun and issued from on_idle(), or
    dropped if the engine stopped meanwhile.
    """

    def __init__(
        self,
        reload: Callable[[], Awaitable[Any]],
        debounce_s: float | None = None,
        busy: Callable[[], bool] | None = None,
    ):
        self._reload = reload
        self._busy = busy or (lambda: False)
        self._timer = Debouncer(settings.debounce_s if debounce_s is None else debounce_s, self._fire)
        self.state = ReloadState.IDLE
        self.hydrated = False
        self.running = False
        self._skip_first = True
        self._task: asyncio.Task | None = None

    @property
    def armed(self) -> bool:
        return self.hydrated and self.running

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def mark_hydrated(self) -> None:
        was_armed = self.armed
        self.hydrated = True
        if self.armed and not was_armed:
            self._observe()

    def set_running(self, running: bool) -> None:
        if running == self.running:
            return
        self.running = running
        if self.armed:
            self._observe()
            return
        self._timer.cancel()
        if not self.in_flight and self.state is ReloadState.RUNNING_WITH_RERUN:
            self.state = ReloadState.IDLE

    def on_change(self, kind: str) -> None:
        # Global fields are persisted, never hot-reloaded.
        if kind == TOPOLOGY:
            self._observe()

    def on_idle(self) -> None:
        """Issue the reload queued while the engine was busy elsewhere."""
        if self.in_flight or self.state is not ReloadState.RUNNING_WITH_RERUN:
            return
        if not self.armed:
            self.state = ReloadState.IDLE
            return
        self._start()

    def close(self) -> None:
        self._timer.cancel()

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def join(self) -> None:
        """Wait for the in-flight reload cycle (and its rerun) to finish."""
        while self.in_flight:
            await asyncio.shield(self._task)

    def _observe(self) -> None:
        if not self.armed:
            return
        if self._skip_first:
            self._skip_first = False
            return
        self._timer.arm()

    def _fire(self) -> None:
        if self.state is ReloadState.IDLE and not self._busy():
            self._start()
        else:
            self.state = ReloadState.RUNNING_WITH_RERUN

    def _start(self) -> None:
        self.state = ReloadState.RUNNING
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            if self._busy():
                # on_idle() picks this up once the other operation ends.
                self.state = ReloadState.RUNNING_WITH_RERUN
                return
            try:
                await self._reload()
            except Exception as e:
                db.log_event("ERROR", f"Automatic hot reload failed: {type(e).__name__}: {e}")
            if self.state is ReloadState.RUNNING_WITH_RERUN and self.armed:
                self.state = ReloadState.RUNNING
                continue
            self.state = ReloadState.IDLE
            return


class AutosaveScheduler:
    """Debounced persistence of the whole model, regardless of engine state."""

    def __init__(self, model: ProxyModel, store: Any, debounce_s: float | None = None):
        self.model = model
        self.store = store
        self.hydrated = False
        self._timer = Debouncer(settings.debounce_s if debounce_s is None else debounce_s, self._fire)
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer.pending

    def mark_hydrated(self) -> None:
        self.hydrated = True
        self._timer.arm()

    def on_change(self, kind: str) -> None:
        if self.hydrated and kind in {GLOBALS, TOPOLOGY}:
            self._timer.arm()

    def close(self) -> None:
        self._timer.cancel()

    async def join(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self) -> None:
        task = asyncio.create_task(self.save_now())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def save_now(self) -> bool:
        cfg = build_payload(self.model, PERSISTENCE)
        if cfg is None:
            return False
        try:
            await self.store.save_settings(cfg)
            return True
        except Exception as e:
            db.log_event("ERROR", f"Autosave failed: {type(e).__name__}: {e}")
            return False
