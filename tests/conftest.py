import asyncio
import sys

import pytest

# Ensure project root is importable (so `import main` / `import cli` work reliably across environments)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from pcc import db  # noqa: E402
from pcc.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_db(tmp_path, monkeypatch):
    """Point the event log and settings store at a throwaway sqlite file."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "pcc.db")))
    db.init_db()
    return tmp_path / "pcc.db"


class FakeStore:
    def __init__(self, saved=None, fail=False):
        self.saved = saved
        self.fail = fail
        self.writes = []

    async def load_settings(self):
        return self.saved

    async def save_settings(self, cfg):
        if self.fail:
            raise OSError("disk full")
        self.writes.append(cfg.to_payload())


class FakeEngine:
    """Records calls; `gate` / `stop_gate` (asyncio.Event) hold reloads / stops in flight."""

    def __init__(self):
        self.calls = []
        self.reloads = []
        self.fail_start = False
        self.fail_reload = False
        self.fail_stop = False
        self.gate = None
        self.stop_gate = None

    async def start_proxy(self, cfg):
        self.calls.append(("start", cfg.to_payload()))
        if self.fail_start:
            raise RuntimeError("port in use")

    async def reload_proxy(self, cfg):
        payload = cfg.to_payload()
        self.calls.append(("reload", payload))
        self.reloads.append(payload)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_reload:
            raise RuntimeError("engine rejected config")

    async def stop_proxy(self, port):
        self.calls.append(("stop", port))
        if self.stop_gate is not None:
            await self.stop_gate.wait()
        if self.fail_stop:
            raise RuntimeError("not running")


class FakeStatus:
    def __init__(self, fail=False):
        self.updates = []
        self.fail = fail

    async def update_tray_status(self, running, port, extra=None):
        self.updates.append((running, port, extra))
        if self.fail:
            raise RuntimeError("tray unavailable")
        return True


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def status():
    return FakeStatus()


def run(coro):
    return asyncio.run(coro)
