from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Admin API (python main.py)
    host: str = os.getenv("PCC_HOST", "127.0.0.1")
    port: int = _env_int("PCC_PORT", 8000)

    # Storage
    db_path: str = os.getenv("PCC_DB_PATH", "pcc.db")

    # Live engine
    engine_url: str = os.getenv("PCC_ENGINE_URL", "http://127.0.0.1:23334")
    engine_timeout_s: int = _env_int("PCC_ENGINE_TIMEOUT_S", 10)

    # Scheduling
    debounce_ms: int = _env_int("PCC_DEBOUNCE_MS", 500)

    # Status sink (optional)
    status_webhook_url: str | None = os.getenv("PCC_STATUS_WEBHOOK_URL")

    # Start the engine right after hydration when a runnable config exists.
    autostart: bool = _env_bool("PCC_AUTOSTART", False)

    @property
    def debounce_s(self) -> float:
        return max(0, self.debounce_ms) / 1000.0


settings = Settings()
