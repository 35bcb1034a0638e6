from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from . import db
from .api_models import PersistedConfig
from .model import (
    UNLINKED_SERVICE_ID,
    UNNAMED_SERVICE,
    UNNAMED_UPSTREAM,
    ProxyModel,
    RouteLink,
    ServiceConfig,
    UpstreamConfig,
    clamp_retries,
    default_service,
    make_id,
)


def _str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def _bool(value: Any, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _priority(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    try:
        return max(0, int(value))
    except (OverflowError, ValueError):
        return 0


def _entries(svc: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    raw = svc.get("upstreams")
    if not isinstance(raw, list):
        return []
    return [e for e in raw if isinstance(e, Mapping)]


def _upstream_from_entry(uid: str, entry: Mapping[str, Any]) -> UpstreamConfig:
    return UpstreamConfig(
        id=uid,
        label=_str(entry.get("label")) or UNNAMED_UPSTREAM,
        upstream_base=_str(entry.get("upstreamBase")),
        api_key=_str(entry.get("apiKey")),
        enabled=_bool(entry.get("enabled"), True),
    )


def _partition(raw_services: list[Mapping[str, Any]]) -> tuple[list[Mapping[str, Any]], Mapping[str, Any] | None]:
    """Split services into real ones and the unlinked placeholder.

    The placeholder is the last disabled service carrying the reserved id,
    which is where the builder writes it. Any other service using the
    reserved id, or repeating an id already seen, is a real service and gets
    a fresh id.
    """
    real: list[Mapping[str, Any]] = []
    sentinel: Mapping[str, Any] | None = None
    for svc in reversed(raw_services):
        if _str(svc.get("id")) == UNLINKED_SERVICE_ID and not _bool(svc.get("enabled"), False):
            sentinel = svc
            break
    seen: set[str] = set()
    for svc in raw_services:
        if svc is sentinel:
            continue
        sid = _str(svc.get("id"))
        if not sid or sid == UNLINKED_SERVICE_ID or sid in seen:
            new_id = make_id()
            db.log_event(
                "WARN",
                f"Service id {sid!r} is reserved, missing or duplicated; re-identified as {new_id}",
                service_id=new_id,
            )
            svc = {**svc, "id": new_id}
            sid = new_id
        seen.add(sid)
        real.append(svc)
    return real, sentinel


def hydrate(model: ProxyModel, cfg: PersistedConfig | Mapping[str, Any] | None) -> None:
    """Rebuild the normalized model from a persisted payload.

    Tolerates missing and malformed optional values; this is the recovery path
    for a damaged settings file, so it degrades to defaults instead of raising.
    """
    if isinstance(cfg, PersistedConfig):
        cfg = cfg.to_payload()
    if not isinstance(cfg, Mapping):
        db.log_event("ERROR", f"Ignoring persisted settings of type {type(cfg).__name__}")
        return

    port = cfg.get("listenPort")
    if isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535:
        model.set_listen_port(port)
    model.set_global_key(_str(cfg.get("globalKey")))
    model.set_proxy_url(_str(cfg.get("proxyUrl")))
    model.set_fallback_retries(clamp_retries(cfg.get("fallbackRetries")))

    raw_services = cfg.get("services")
    if not isinstance(raw_services, list):
        raw_services = []
    real, sentinel = _partition([s for s in raw_services if isinstance(s, Mapping)])

    services = [
        ServiceConfig(
            id=svc["id"],
            name=_str(svc.get("name")) or UNNAMED_SERVICE,
            base_path=_str(svc.get("basePath")) or "/",
            enabled=_bool(svc.get("enabled"), True),
        )
        for svc in real
    ]
    if not services:
        services.append(default_service())

    upstreams: dict[str, UpstreamConfig] = {}
    routes: dict[str, list[RouteLink]] = {s.id: [] for s in services}

    for svc in real:
        for entry in _entries(svc):
            uid = _str(entry.get("id"))
            if not uid:
                db.log_event("WARN", "Skipping upstream entry without an id", service_id=svc["id"])
                continue
            if uid not in upstreams:
                upstreams[uid] = _upstream_from_entry(uid, entry)
            routes[svc["id"]].append(
                RouteLink(
                    id=make_id(),
                    upstream_id=uid,
                    enabled=_bool(entry.get("enabled"), True),
                    priority=_priority(entry.get("priority")),
                )
            )

    if sentinel is not None:
        for entry in _entries(sentinel):
            uid = _str(entry.get("id"))
            if uid and uid not in upstreams:
                upstreams[uid] = _upstream_from_entry(uid, entry)

    model.replace(services, list(upstreams.values()), routes)
