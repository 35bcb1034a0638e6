from __future__ import annotations

from typing import Any

import httpx

from . import db
from .settings import settings


class StatusSink:
    """Best-effort running-state notifications (tray icon, dashboards).

    Each update is recorded as a STATUS event and, if a webhook is configured,
    POSTed there. Returns False on delivery failure; never raises.
    """

    def __init__(self, webhook_url: str | None = None, timeout_s: float = 2.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url if webhook_url is not None else settings.status_webhook_url
        self.timeout_s = timeout_s
        self._transport = transport

    async def update_tray_status(self, running: bool, port: int, extra: Any = None) -> bool:
        state = "running" if running else "stopped"
        db.log_event("STATUS", f"Gateway {state} on port {port}" + (f" ({extra})" if extra else ""))
        if not self.webhook_url:
            return True
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json={"running": running, "port": port, "extra": extra})
            return resp.status_code < 300
        except httpx.HTTPError:
            return False
