from __future__ import annotations

import math
import secrets
from dataclasses import asdict, dataclass, replace as dc_replace
from typing import Any, Callable, Iterable

UNLINKED_SERVICE_ID = "__unlinked__"

DEFAULT_LISTEN_PORT = 23333
DEFAULT_FALLBACK_RETRIES = 1
MAX_FALLBACK_RETRIES = 10

DEFAULT_SERVICE_NAME = "Default service"
UNNAMED_SERVICE = "Unnamed service"
UNNAMED_UPSTREAM = "Unnamed provider"

# Change kinds published to subscribers.
GLOBALS = "globals"
TOPOLOGY = "topology"

ChangeListener = Callable[[str], None]


def make_id() -> str:
    return secrets.token_hex(8)


def clamp_retries(value: Any, default: int = DEFAULT_FALLBACK_RETRIES) -> int:
    # bool is an int subclass; treat it as non-numeric.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        value = default
    try:
        value = math.floor(value)
    except (OverflowError, ValueError):
        # inf / nan
        value = default
    return max(0, min(MAX_FALLBACK_RETRIES, value))


@dataclass
class ServiceConfig:
    id: str
    name: str
    base_path: str = "/"
    enabled: bool = True


@dataclass
class UpstreamConfig:
    id: str
    label: str
    upstream_base: str
    api_key: str = ""
    enabled: bool = True


@dataclass
class RouteLink:
    id: str
    upstream_id: str
    enabled: bool = True
    priority: int = 0


def default_service() -> ServiceConfig:
    return ServiceConfig(id=make_id(), name=DEFAULT_SERVICE_NAME, base_path="/", enabled=True)


def resequence_links(links: Iterable[RouteLink]) -> list[RouteLink]:
    """Order links by priority and renumber them densely from 0.

    Ties keep their stored order. The input links are not modified.
    """
    ordered = sorted(links, key=lambda link: link.priority)
    return [dc_replace(link, priority=i) for i, link in enumerate(ordered)]


class ProxyModel:
    """Normalized, editable proxy configuration.

    Every mutation goes through a setter below and notifies subscribers with
    the kind of change (GLOBALS or TOPOLOGY). Nothing else writes the fields.
    """

    def __init__(self) -> None:
        self.listen_port: int = DEFAULT_LISTEN_PORT
        self.global_key: str = ""
        self.proxy_url: str = ""
        self.fallback_retries: int = DEFAULT_FALLBACK_RETRIES

        svc = default_service()
        self.services: list[ServiceConfig] = [svc]
        self.upstreams: list[UpstreamConfig] = []
        self.routes: dict[str, list[RouteLink]] = {svc.id: []}  # service_id -> ordered links

        self._listeners: list[ChangeListener] = []

    # -- subscriptions -------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _changed(self, kind: str) -> None:
        for listener in list(self._listeners):
            listener(kind)

    # -- globals -------------------------------------------------------

    def set_listen_port(self, port: int) -> None:
        port = int(port)
        if not 1 <= port <= 65535:
            raise ValueError("listen port must be within 1..65535")
        self.listen_port = port
        self._changed(GLOBALS)

    def set_global_key(self, key: str | None) -> None:
        self.global_key = key or ""
        self._changed(GLOBALS)

    def set_proxy_url(self, url: str | None) -> None:
        self.proxy_url = url or ""
        self._changed(GLOBALS)

    def set_fallback_retries(self, retries: int) -> None:
        self.fallback_retries = clamp_retries(retries)
        self._changed(GLOBALS)

    # -- lookups -------------------------------------------------------

    def get_service(self, service_id: str) -> ServiceConfig:
        for s in self.services:
            if s.id == service_id:
                return s
        raise KeyError(f"unknown service '{service_id}'")

    def get_upstream(self, upstream_id: str) -> UpstreamConfig:
        for u in self.upstreams:
            if u.id == upstream_id:
                return u
        raise KeyError(f"unknown upstream '{upstream_id}'")

    def find_upstream(self, upstream_id: str) -> UpstreamConfig | None:
        try:
            return self.get_upstream(upstream_id)
        except KeyError:
            return None

    def links_for(self, service_id: str) -> list[RouteLink]:
        return list(self.routes.get(service_id, []))

    # -- services ------------------------------------------------------

    def add_service(
        self, name: str, base_path: str = "/", enabled: bool = True, id: str | None = None
    ) -> ServiceConfig:
        sid = id or make_id()
        if sid == UNLINKED_SERVICE_ID:
            raise ValueError(f"service id '{UNLINKED_SERVICE_ID}' is reserved")
        if any(s.id == sid for s in self.services):
            raise ValueError(f"service '{sid}' already exists")
        svc = ServiceConfig(id=sid, name=name, base_path=base_path, enabled=enabled)
        self.services.append(svc)
        self.routes[sid] = []
        self._changed(TOPOLOGY)
        return svc

    def update_service(self, service_id: str, **fields: Any) -> ServiceConfig:
        svc = self.get_service(service_id)
        for k, v in fields.items():
            if k not in {"name", "base_path", "enabled"}:
                raise ValueError(f"cannot update service field '{k}'")
            setattr(svc, k, v)
        self._changed(TOPOLOGY)
        return svc

    def remove_service(self, service_id: str) -> None:
        svc = self.get_service(service_id)
        self.services.remove(svc)
        self.routes.pop(service_id, None)
        self._changed(TOPOLOGY)

    # -- upstreams -----------------------------------------------------

    def add_upstream(
        self,
        label: str,
        upstream_base: str,
        api_key: str = "",
        enabled: bool = True,
        id: str | None = None,
    ) -> UpstreamConfig:
        uid = id or make_id()
        if self.find_upstream(uid) is not None:
            raise ValueError(f"upstream '{uid}' already exists")
        up = UpstreamConfig(id=uid, label=label, upstream_base=upstream_base, api_key=api_key, enabled=enabled)
        self.upstreams.append(up)
        self._changed(TOPOLOGY)
        return up

    def update_upstream(self, upstream_id: str, **fields: Any) -> UpstreamConfig:
        up = self.get_upstream(upstream_id)
        for k, v in fields.items():
            if k not in {"label", "upstream_base", "api_key", "enabled"}:
                raise ValueError(f"cannot update upstream field '{k}'")
            setattr(up, k, v)
        self._changed(TOPOLOGY)
        return up

    def remove_upstream(self, upstream_id: str) -> None:
        # Links pointing at it stay behind; the payload builder drops them.
        up = self.get_upstream(upstream_id)
        self.upstreams.remove(up)
        self._changed(TOPOLOGY)

    # -- routes --------------------------------------------------------

    def set_routes(self, service_id: str, links: list[RouteLink]) -> None:
        self.get_service(service_id)
        self.routes[service_id] = list(links)
        self._changed(TOPOLOGY)

    def link_upstream(self, service_id: str, upstream_id: str, enabled: bool = True) -> RouteLink:
        self.get_service(service_id)
        self.get_upstream(upstream_id)
        links = self.routes.setdefault(service_id, [])
        link = RouteLink(id=make_id(), upstream_id=upstream_id, enabled=enabled, priority=len(links))
        links.append(link)
        self._changed(TOPOLOGY)
        return link

    def unlink_upstream(self, service_id: str, upstream_id: str) -> None:
        self.get_service(service_id)
        links = self.routes.get(service_id, [])
        kept = [link for link in links if link.upstream_id != upstream_id]
        if len(kept) == len(links):
            raise KeyError(f"upstream '{upstream_id}' is not linked to service '{service_id}'")
        self.routes[service_id] = kept
        self._changed(TOPOLOGY)

    # -- bulk ----------------------------------------------------------

    def replace(
        self,
        services: list[ServiceConfig],
        upstreams: list[UpstreamConfig],
        routes: dict[str, list[RouteLink]],
    ) -> None:
        self.services = list(services)
        self.upstreams = list(upstreams)
        self.routes = {k: list(v) for k, v in routes.items()}
        self._changed(TOPOLOGY)

    def snapshot(self) -> dict[str, Any]:
        return {
            "listen_port": self.listen_port,
            "global_key": self.global_key,
            "proxy_url": self.proxy_url,
            "fallback_retries": self.fallback_retries,
            "services": [asdict(s) for s in self.services],
            "upstreams": [asdict(u) for u in self.upstreams],
            "routes": {sid: [asdict(link) for link in links] for sid, links in self.routes.items()},
        }
