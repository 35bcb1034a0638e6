from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _Wire(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class PersistedUpstreamEntry(_Wire):
    id: str
    label: str | None = None
    upstream_base: str = Field(..., alias="upstreamBase")
    api_key: str | None = Field(None, alias="apiKey")
    priority: int = Field(0, ge=0)
    enabled: bool = True


class PersistedService(_Wire):
    id: str
    name: str
    base_path: str = Field("/", alias="basePath")
    enabled: bool = True
    upstreams: list[PersistedUpstreamEntry] = Field(default_factory=list)


class PersistedConfig(_Wire):
    listen_port: int = Field(..., alias="listenPort", ge=1, le=65535)
    global_key: str | None = Field(None, alias="globalKey")
    proxy_url: str | None = Field(None, alias="proxyUrl")
    fallback_retries: int = Field(1, alias="fallbackRetries", ge=0, le=10)
    services: list[PersistedService] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Editing API request bodies


class GlobalSettingsRequest(BaseModel):
    listen_port: int | None = Field(None, ge=1, le=65535)
    global_key: str | None = None
    proxy_url: str | None = None
    fallback_retries: int | None = Field(None, ge=0, le=10)


class ServiceCreateRequest(BaseModel):
    name: str = Field(..., description="Display name")
    base_path: str = Field("/", description="Path prefix routed to this service")
    enabled: bool = True
    id: str | None = Field(None, description="Optional explicit id (immutable afterwards)")


class ServiceUpdateRequest(BaseModel):
    name: str | None = None
    base_path: str | None = None
    enabled: bool | None = None


class UpstreamCreateRequest(BaseModel):
    label: str = ""
    upstream_base: str = Field(..., description="Provider base URL, e.g. https://api.example.com")
    api_key: str = ""
    enabled: bool = True
    id: str | None = None


class UpstreamUpdateRequest(BaseModel):
    label: str | None = None
    upstream_base: str | None = None
    api_key: str | None = None
    enabled: bool | None = None


class RouteEntry(BaseModel):
    upstream_id: str
    enabled: bool = True


class RoutesRequest(BaseModel):
    links: list[RouteEntry] = Field(default_factory=list, description="Ordered; position becomes priority")
