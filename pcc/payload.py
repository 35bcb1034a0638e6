from __future__ import annotations

from . import db
from .api_models import PersistedConfig, PersistedService, PersistedUpstreamEntry
from .model import UNLINKED_SERVICE_ID, UNNAMED_SERVICE, ProxyModel, UpstreamConfig, resequence_links

RUNTIME = "runtime"
PERSISTENCE = "persistence"


def _blank_to_none(value: str | None) -> str | None:
    value = (value or "").strip()
    return value or None


def _entry(up: UpstreamConfig, priority: int, enabled: bool) -> PersistedUpstreamEntry | None:
    base = (up.upstream_base or "").strip()
    if not base:
        return None
    return PersistedUpstreamEntry(
        id=up.id,
        label=_blank_to_none(up.label),
        upstream_base=base,
        api_key=_blank_to_none(up.api_key),
        priority=priority,
        enabled=enabled,
    )


def build_payload(model: ProxyModel, mode: str = RUNTIME) -> PersistedConfig | None:
    """Denormalize the model into the service-centric config payload.

    RUNTIME: enabled services, links and upstreams only; returns None when
    no service ends up enabled with at least one upstream (nothing to run).
    PERSISTENCE: everything, plus upstreams that no service links to, carried
    in the disabled UNLINKED_SERVICE_ID placeholder service.
    """
    if mode not in {RUNTIME, PERSISTENCE}:
        raise ValueError(f"unknown build mode '{mode}'")
    for_persistence = mode == PERSISTENCE

    upstreams = {u.id: u for u in model.upstreams}
    linked_upstream_ids: set[str] = set()
    for links in model.routes.values():
        linked_upstream_ids.update(link.upstream_id for link in links)

    services: list[PersistedService] = []
    for svc in model.services:
        if not (for_persistence or svc.enabled):
            continue

        entries: list[PersistedUpstreamEntry] = []
        for link in resequence_links(model.routes.get(svc.id, [])):
            if not (for_persistence or link.enabled):
                continue
            up = upstreams.get(link.upstream_id)
            if up is None:
                db.log_event(
                    "WARN",
                    f"Dropping route link {link.id}: upstream no longer exists",
                    service_id=svc.id,
                    upstream_id=link.upstream_id,
                )
                continue
            if not (for_persistence or up.enabled):
                continue
            entry = _entry(up, link.priority, up.enabled and link.enabled)
            if entry is not None:
                entries.append(entry)

        services.append(
            PersistedService(
                id=svc.id,
                name=(svc.name or "").strip() or UNNAMED_SERVICE,
                base_path=(svc.base_path or "").strip() or "/",
                enabled=svc.enabled,
                upstreams=entries,
            )
        )

    if for_persistence:
        orphans = [u for u in model.upstreams if u.id not in linked_upstream_ids]
        unlinked = [e for e in (_entry(u, idx, u.enabled) for idx, u in enumerate(orphans)) if e is not None]
        if unlinked:
            services.append(
                PersistedService(
                    id=UNLINKED_SERVICE_ID,
                    name=UNLINKED_SERVICE_ID,
                    base_path=f"/{UNLINKED_SERVICE_ID}",
                    enabled=False,
                    upstreams=unlinked,
                )
            )
    else:
        services = [s for s in services if s.enabled and s.upstreams]
        if not services:
            return None

    return PersistedConfig(
        listen_port=model.listen_port,
        global_key=_blank_to_none(model.global_key),
        proxy_url=_blank_to_none(model.proxy_url),
        fallback_retries=model.fallback_retries,
        services=services,
    )
