from __future__ import annotations

from typing import Any

import httpx

from .settings import settings


class EngineCallFailure(Exception):
    pass


def _payload(cfg: Any) -> dict[str, Any]:
    return cfg.to_payload() if hasattr(cfg, "to_payload") else dict(cfg)


class EngineClient:
    """Talks to the proxy engine's admin endpoint.

    Endpoints:
      POST /start   runtime payload
      POST /reload  runtime payload
      POST /stop    {"listenPort": port}
    Any transport error or non-2xx answer raises EngineCallFailure.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout_s: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.engine_url).rstrip("/")
        self.timeout_s = settings.engine_timeout_s if timeout_s is None else timeout_s
        self._transport = transport

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout_s, transport=self._transport
            ) as client:
                resp = await client.post(path, json=body)
        except httpx.HTTPError as e:
            raise EngineCallFailure(f"{path}: {type(e).__name__}: {e}") from e
        if resp.status_code >= 300:
            raise EngineCallFailure(f"{path}: HTTP {resp.status_code}: {resp.text[:200]}")
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {"result": data}

    async def start_proxy(self, cfg: Any) -> dict[str, Any]:
        return await self._post("/start", _payload(cfg))

    async def reload_proxy(self, cfg: Any) -> dict[str, Any]:
        return await self._post("/reload", _payload(cfg))

    async def stop_proxy(self, listen_port: int) -> dict[str, Any]:
        return await self._post("/stop", {"listenPort": int(listen_port)})
