from __future__ import annotations

from typing import Any, Callable

from . import db
from .model import ProxyModel
from .payload import PERSISTENCE, RUNTIME, build_payload

NO_CONFIG_MESSAGE = "no usable service/upstream configuration"

RunningListener = Callable[[bool], None]
IdleListener = Callable[[], None]


class Lifecycle:
    """Start/reload/stop orchestration for the live engine.

    Collaborators (all awaited):
      store.save_settings(cfg)
      engine.start_proxy(cfg) / engine.reload_proxy(cfg) / engine.stop_proxy(port)
      status.update_tray_status(running, port, extra=None)   best effort

    The operations never raise; they log the failure, reconcile `running`
    and return False. `busy` is held for the whole of each operation and idle
    listeners are called when it drops.
    """

    def __init__(self, model: ProxyModel, store: Any, engine: Any, status: Any):
        self.model = model
        self.store = store
        self.engine = engine
        self.status = status
        self.last_error: str | None = None
        self._busy = False
        self._running = False
        self._listeners: list[RunningListener] = []
        self._idle_listeners: list[IdleListener] = []

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._busy

    @busy.setter
    def busy(self, busy: bool) -> None:
        released = self._busy and not busy
        self._busy = busy
        if released:
            for listener in list(self._idle_listeners):
                listener()

    def _set_running(self, running: bool) -> None:
        changed = running != self._running
        self._running = running
        if changed:
            for listener in list(self._listeners):
                listener(running)

    def subscribe(self, listener: RunningListener) -> None:
        self._listeners.append(listener)

    def subscribe_idle(self, listener: IdleListener) -> None:
        self._idle_listeners.append(listener)

    def _fail(self, message: str) -> None:
        self.last_error = message
        db.log_event("ERROR", message)

    async def _persist(self) -> None:
        persist_cfg = build_payload(self.model, PERSISTENCE)
        if persist_cfg is not None:
            await self.store.save_settings(persist_cfg)

    async def _notify(self, running: bool, port: int, extra: Any = None) -> None:
        # Status is advisory: a broken sink never changes an operation's outcome.
        try:
            await self.status.update_tray_status(running, port, extra)
        except Exception as e:
            db.log_event("WARN", f"Status update failed: {type(e).__name__}: {e}")

    async def start(self) -> bool:
        self.busy = True
        cfg = build_payload(self.model, RUNTIME)
        if cfg is None:
            self._set_running(False)
            self._fail(NO_CONFIG_MESSAGE)
            self.busy = False
            return False

        port = cfg.listen_port
        try:
            await self._persist()
            await self.engine.start_proxy(cfg)
        except Exception as e:
            self._set_running(False)
            await self._notify(False, port)
            self._fail(f"Start failed: {type(e).__name__}: {e}")
            return False
        else:
            await self._notify(True, port, 0)
            self._set_running(True)
            self.last_error = None
            db.log_event("INFO", f"Gateway started on port {port} with {len(cfg.services)} service(s)")
            return True
        finally:
            self.busy = False

    async def reload(self) -> bool:
        if not self._running:
            return await self.start()

        self.busy = True
        cfg = build_payload(self.model, RUNTIME)
        if cfg is None:
            self._fail(NO_CONFIG_MESSAGE)
            self.busy = False
            return False

        try:
            await self._persist()
            await self.engine.reload_proxy(cfg)
        except Exception as e:
            self._fail(f"Hot reload failed: {type(e).__name__}: {e}")
            return False
        else:
            await self._notify(True, cfg.listen_port, 0)
            self._set_running(True)
            self.last_error = None
            db.log_event("INFO", f"Gateway reloaded with {len(cfg.services)} service(s)")
            return True
        finally:
            self.busy = False

    async def stop(self) -> bool:
        self.busy = True
        port = self.model.listen_port
        try:
            await self.engine.stop_proxy(port)
        except Exception as e:
            self._fail(f"Stop failed: {type(e).__name__}: {e}")
            return False
        else:
            await self._notify(False, port, 0)
            self._set_running(False)
            self.last_error = None
            db.log_event("INFO", f"Gateway on port {port} stopped")
            return True
        finally:
            self.busy = False
