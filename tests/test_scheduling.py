import asyncio

from conftest import FakeEngine, FakeStatus, FakeStore, run

from pcc import db
from pcc.lifecycle import Lifecycle
from pcc.model import GLOBALS, TOPOLOGY, ProxyModel
from pcc.scheduling import AutosaveScheduler, Debouncer, ReloadCoordinator, ReloadState

DEBOUNCE = 0.02
SETTLE = 0.1


def _runnable_model():
    m = ProxyModel()
    sid = m.services[0].id
    up = m.add_upstream("U", "https://api.example.com")
    m.link_upstream(sid, up.id)
    return m, sid


def _wire(engine=None):
    m, sid = _runnable_model()
    engine = engine or FakeEngine()
    lifecycle = Lifecycle(m, FakeStore(), engine, FakeStatus())
    coordinator = ReloadCoordinator(lifecycle.reload, debounce_s=DEBOUNCE, busy=lambda: lifecycle.busy)
    m.subscribe(coordinator.on_change)
    lifecycle.subscribe(coordinator.set_running)
    lifecycle.subscribe_idle(coordinator.on_idle)
    return m, sid, engine, lifecycle, coordinator


def test_debouncer_fires_once_for_a_burst():
    async def scenario():
        fired = []
        d = Debouncer(DEBOUNCE, lambda: fired.append(1))
        for _ in range(5):
            d.arm()
            await asyncio.sleep(DEBOUNCE / 4)
        assert fired == []
        await asyncio.sleep(SETTLE)
        assert fired == [1]
        assert not d.pending

        d.arm()
        d.cancel()
        await asyncio.sleep(SETTLE)
        assert fired == [1]

    run(scenario())


def test_no_reload_until_hydrated_and_running():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        m.update_service(sid, name="edited")
        assert not coordinator.pending

        coordinator.mark_hydrated()
        m.update_service(sid, name="edited again")
        await asyncio.sleep(SETTLE)
        assert engine.reloads == []

    run(scenario())


def test_first_change_after_arming_is_skipped():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        assert await lifecycle.start()
        assert coordinator.armed
        await asyncio.sleep(SETTLE)
        assert engine.reloads == []

        m.update_service(sid, name="renamed")
        await asyncio.sleep(SETTLE)
        await coordinator.join()
        assert len(engine.reloads) == 1
        assert engine.reloads[0]["services"][0]["name"] == "renamed"

    run(scenario())


def test_burst_of_edits_collapses_into_one_reload():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        await lifecycle.start()
        for i in range(4):
            m.update_service(sid, name=f"n{i}")
        await asyncio.sleep(SETTLE)
        await coordinator.join()
        assert [r["services"][0]["name"] for r in engine.reloads] == ["n3"]

    run(scenario())


def test_edits_during_in_flight_reload_coalesce_into_one_rerun():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        await lifecycle.start()

        engine.gate = asyncio.Event()
        m.update_service(sid, name="first")
        await asyncio.sleep(SETTLE)
        assert coordinator.state is ReloadState.RUNNING
        assert len(engine.reloads) == 1

        for i in range(5):
            m.update_service(sid, name=f"later-{i}")
            await asyncio.sleep(SETTLE)
        assert coordinator.state is ReloadState.RUNNING_WITH_RERUN
        assert len(engine.reloads) == 1

        engine.gate.set()
        await coordinator.join()
        assert coordinator.state is ReloadState.IDLE
        assert [r["services"][0]["name"] for r in engine.reloads] == ["first", "later-4"]

    run(scenario())


def test_global_changes_do_not_reload():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        await lifecycle.start()
        m.set_global_key("new-key")
        await asyncio.sleep(SETTLE)
        assert engine.reloads == []

    run(scenario())


def test_stopping_cancels_the_pending_reload():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        await lifecycle.start()
        m.update_service(sid, name="x")
        assert coordinator.pending
        await lifecycle.stop()
        assert not coordinator.pending
        await asyncio.sleep(SETTLE)
        assert engine.reloads == []

    run(scenario())


def test_edit_during_slow_stop_never_reaches_the_engine():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        await lifecycle.start()

        engine.stop_gate = asyncio.Event()
        stopping = asyncio.create_task(lifecycle.stop())
        await asyncio.sleep(0)
        assert lifecycle.busy
        m.update_service(sid, name="edited while stopping")
        await asyncio.sleep(SETTLE)
        assert [c[0] for c in engine.calls] == ["start", "stop"]

        engine.stop_gate.set()
        assert await stopping
        await asyncio.sleep(SETTLE)
        await coordinator.join()
        assert [c[0] for c in engine.calls] == ["start", "stop"]
        assert coordinator.state is ReloadState.IDLE
        assert lifecycle.running is False

    run(scenario())


def test_edit_during_manual_reload_is_reloaded_after_it_ends():
    async def scenario():
        m, sid, engine, lifecycle, coordinator = _wire()
        coordinator.mark_hydrated()
        await lifecycle.start()

        engine.gate = asyncio.Event()
        manual = asyncio.create_task(lifecycle.reload())
        await asyncio.sleep(0)
        m.update_service(sid, name="edited mid reload")
        await asyncio.sleep(SETTLE)
        assert len(engine.reloads) == 1
        assert coordinator.state is ReloadState.RUNNING_WITH_RERUN
        assert not coordinator.in_flight

        engine.gate.set()
        assert await manual
        await asyncio.sleep(SETTLE)
        await coordinator.join()
        assert [r["services"][0]["name"] for r in engine.reloads] == ["Default service", "edited mid reload"]
        assert coordinator.state is ReloadState.IDLE
        assert lifecycle.busy is False

    run(scenario())


def test_reload_failures_are_swallowed_and_do_not_block_later_cycles():
    async def scenario():
        calls = []

        async def boom():
            calls.append(1)
            raise RuntimeError("engine exploded")

        coordinator = ReloadCoordinator(boom, debounce_s=DEBOUNCE)
        coordinator.mark_hydrated()
        coordinator.set_running(True)  # consumes the one-shot skip

        coordinator.on_change(TOPOLOGY)
        await asyncio.sleep(SETTLE)
        await coordinator.join()
        coordinator.on_change(TOPOLOGY)
        await asyncio.sleep(SETTLE)
        await coordinator.join()

        assert calls == [1, 1]
        assert coordinator.state is ReloadState.IDLE
        assert any("engine exploded" in e["message"] for e in db.latest_events(level="ERROR"))

    run(scenario())


def test_autosave_saves_after_hydration_and_collapses_bursts():
    async def scenario():
        m, sid = _runnable_model()
        store = FakeStore()
        autosave = AutosaveScheduler(m, store, debounce_s=DEBOUNCE)
        m.subscribe(autosave.on_change)

        m.set_global_key("before hydration")
        await asyncio.sleep(SETTLE)
        assert store.writes == []

        autosave.mark_hydrated()
        await asyncio.sleep(SETTLE)
        await autosave.join()
        assert len(store.writes) == 1

        m.set_proxy_url("http://proxy:3128")
        m.set_fallback_retries(4)
        m.update_service(sid, enabled=False)
        await asyncio.sleep(SETTLE)
        await autosave.join()
        assert len(store.writes) == 2
        last = store.writes[-1]
        assert last["proxyUrl"] == "http://proxy:3128"
        assert last["fallbackRetries"] == 4
        assert last["services"][0]["enabled"] is False

    run(scenario())


def test_autosave_failure_is_logged_not_raised():
    async def scenario():
        m, _ = _runnable_model()
        autosave = AutosaveScheduler(m, FakeStore(fail=True), debounce_s=DEBOUNCE)
        autosave.mark_hydrated()
        autosave.on_change(GLOBALS)
        await asyncio.sleep(SETTLE)
        await autosave.join()
        assert any("Autosave failed" in e["message"] for e in db.latest_events(level="ERROR"))

    run(scenario())
