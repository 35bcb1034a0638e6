from __future__ import annotations

from dataclasses import asdict
from typing import Any, Callable

from fastapi import FastAPI, HTTPException

from pcc import db
from pcc.api_models import (
    GlobalSettingsRequest,
    RoutesRequest,
    ServiceCreateRequest,
    ServiceUpdateRequest,
    UpstreamCreateRequest,
    UpstreamUpdateRequest,
)
from pcc.engine import EngineClient
from pcc.hydrate import hydrate
from pcc.lifecycle import Lifecycle
from pcc.model import ProxyModel, RouteLink, make_id
from pcc.payload import PERSISTENCE, RUNTIME, build_payload
from pcc.scheduling import AutosaveScheduler, ReloadCoordinator
from pcc.settings import settings
from pcc.status import StatusSink


def _edit(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    try:
        return fn(*args, **kwargs)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]) if e.args else "not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def create_app(
    store: Any = None,
    engine: Any = None,
    status: Any = None,
    debounce_s: float | None = None,
    autostart: bool | None = None,
) -> FastAPI:
    app = FastAPI(title="Proxy Config Coordinator")

    model = ProxyModel()
    store = store or db.SettingsStore()
    lifecycle = Lifecycle(model, store, engine or EngineClient(), status or StatusSink())
    coordinator = ReloadCoordinator(lifecycle.reload, debounce_s=debounce_s, busy=lambda: lifecycle.busy)
    autosave = AutosaveScheduler(model, store, debounce_s=debounce_s)

    model.subscribe(coordinator.on_change)
    model.subscribe(autosave.on_change)
    lifecycle.subscribe(coordinator.set_running)
    lifecycle.subscribe_idle(coordinator.on_idle)

    app.state.model = model
    app.state.lifecycle = lifecycle
    app.state.coordinator = coordinator
    app.state.autosave = autosave

    @app.on_event("startup")
    async def startup() -> None:
        db.init_db()
        try:
            saved = await store.load_settings()
            if saved:
                hydrate(model, saved)
        except Exception as e:
            db.log_event("ERROR", f"Loading saved settings failed: {type(e).__name__}: {e}")
        finally:
            coordinator.mark_hydrated()
            autosave.mark_hydrated()
        if (settings.autostart if autostart is None else autostart):
            await lifecycle.start()

    @app.on_event("shutdown")
    async def shutdown() -> None:
        coordinator.close()
        autosave.close()

    def _gateway_status() -> dict[str, Any]:
        return {
            "running": lifecycle.running,
            "busy": lifecycle.busy,
            "listen_port": model.listen_port,
            "last_error": lifecycle.last_error,
            "reload_state": coordinator.state.value,
        }

    # ---- config views ------------------------------------------------

    @app.get("/config")
    async def get_config() -> dict[str, Any]:
        return {**model.snapshot(), "running": lifecycle.running, "busy": lifecycle.busy}

    @app.get("/config/persisted")
    async def get_persisted() -> dict[str, Any]:
        cfg = build_payload(model, PERSISTENCE)
        return cfg.to_payload() if cfg else {}

    @app.get("/config/runtime")
    async def get_runtime() -> dict[str, Any]:
        cfg = build_payload(model, RUNTIME)
        if cfg is None:
            raise HTTPException(status_code=404, detail="No enabled service with a usable upstream")
        return cfg.to_payload()

    @app.put("/settings")
    async def put_settings(req: GlobalSettingsRequest) -> dict[str, Any]:
        if req.listen_port is not None:
            _edit(model.set_listen_port, req.listen_port)
        if req.global_key is not None:
            model.set_global_key(req.global_key)
        if req.proxy_url is not None:
            model.set_proxy_url(req.proxy_url)
        if req.fallback_retries is not None:
            model.set_fallback_retries(req.fallback_retries)
        return model.snapshot()

    # ---- services ----------------------------------------------------

    @app.post("/services")
    async def create_service(req: ServiceCreateRequest) -> dict[str, Any]:
        svc = _edit(model.add_service, req.name, base_path=req.base_path, enabled=req.enabled, id=req.id)
        return asdict(svc)

    @app.patch("/services/{service_id}")
    async def update_service(service_id: str, req: ServiceUpdateRequest) -> dict[str, Any]:
        fields = req.model_dump(exclude_none=True)
        return asdict(_edit(model.update_service, service_id, **fields))

    @app.delete("/services/{service_id}")
    async def delete_service(service_id: str) -> dict[str, Any]:
        _edit(model.remove_service, service_id)
        return {"ok": True}

    @app.put("/services/{service_id}/routes")
    async def put_routes(service_id: str, req: RoutesRequest) -> dict[str, Any]:
        for entry in req.links:
            _edit(model.get_upstream, entry.upstream_id)
        links = [
            RouteLink(id=make_id(), upstream_id=entry.upstream_id, enabled=entry.enabled, priority=i)
            for i, entry in enumerate(req.links)
        ]
        _edit(model.set_routes, service_id, links)
        return {"service_id": service_id, "links": [asdict(link) for link in links]}

    @app.post("/services/{service_id}/routes/{upstream_id}")
    async def link_upstream(service_id: str, upstream_id: str, enabled: bool = True) -> dict[str, Any]:
        return asdict(_edit(model.link_upstream, service_id, upstream_id, enabled=enabled))

    @app.delete("/services/{service_id}/routes/{upstream_id}")
    async def unlink_upstream(service_id: str, upstream_id: str) -> dict[str, Any]:
        _edit(model.unlink_upstream, service_id, upstream_id)
        return {"ok": True}

    # ---- upstreams ---------------------------------------------------

    @app.post("/upstreams")
    async def create_upstream(req: UpstreamCreateRequest) -> dict[str, Any]:
        up = _edit(
            model.add_upstream,
            req.label,
            req.upstream_base,
            api_key=req.api_key,
            enabled=req.enabled,
            id=req.id,
        )
        return asdict(up)

    @app.patch("/upstreams/{upstream_id}")
    async def update_upstream(upstream_id: str, req: UpstreamUpdateRequest) -> dict[str, Any]:
        fields = req.model_dump(exclude_none=True)
        return asdict(_edit(model.update_upstream, upstream_id, **fields))

    @app.delete("/upstreams/{upstream_id}")
    async def delete_upstream(upstream_id: str) -> dict[str, Any]:
        _edit(model.remove_upstream, upstream_id)
        return {"ok": True}

    # ---- gateway control ---------------------------------------------

    async def _guarded(op: Callable[[], Any]) -> dict[str, Any]:
        if lifecycle.busy:
            raise HTTPException(status_code=409, detail="Another start/stop/reload is in progress")
        ok = await op()
        return {"ok": ok, **_gateway_status()}

    @app.post("/gateway/start")
    async def gateway_start() -> dict[str, Any]:
        return await _guarded(lifecycle.start)

    @app.post("/gateway/reload")
    async def gateway_reload() -> dict[str, Any]:
        return await _guarded(lifecycle.reload)

    @app.post("/gateway/stop")
    async def gateway_stop() -> dict[str, Any]:
        return await _guarded(lifecycle.stop)

    @app.get("/gateway/status")
    async def gateway_status() -> dict[str, Any]:
        return _gateway_status()

    @app.get("/events")
    async def events(limit: int = 100, level: str | None = None) -> list[dict[str, Any]]:
        return db.latest_events(limit=max(1, min(1000, limit)), level=level)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
