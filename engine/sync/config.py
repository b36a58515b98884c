"""
Sync engine configuration — all environment variables in one place.

Read from environment at import. Never hardcode secrets.
"""

from __future__ import annotations

import os


class SyncSettings:
    """Client-side sync settings from environment variables."""

    # Hub (remote authority)
    HUB_URL: str = os.environ.get("RUNBOOK_HUB_URL", "http://localhost:8000")
    HUB_TOKEN: str = os.environ.get("RUNBOOK_HUB_TOKEN", "")
    HTTP_TIMEOUT_SECONDS: float = float(os.environ.get("RUNBOOK_HTTP_TIMEOUT_SECONDS", "30"))

    # Local persistence (memory when unset)
    DATABASE_URL: str = os.environ.get("RUNBOOK_LOCAL_DATABASE_URL", "")

    # Shared-state channel
    CHANNEL_JOIN_BASE_DELAY_SECONDS: float = float(os.environ.get("RUNBOOK_CHANNEL_JOIN_BASE_DELAY", "0.5"))
    CHANNEL_JOIN_MAX_DELAY_SECONDS: float = float(os.environ.get("RUNBOOK_CHANNEL_JOIN_MAX_DELAY", "30"))
    CHANNEL_JOIN_MAX_ATTEMPTS: int = int(os.environ.get("RUNBOOK_CHANNEL_JOIN_MAX_ATTEMPTS", "8"))
    CHANNEL_PUSH_TIMEOUT_SECONDS: float = float(os.environ.get("RUNBOOK_CHANNEL_PUSH_TIMEOUT", "10"))

    @property
    def HUB_WS_URL(self) -> str:
        url = os.environ.get("RUNBOOK_HUB_WS_URL")
        if url:
            return url
        if self.HUB_URL.startswith("https://"):
            return "wss://" + self.HUB_URL.removeprefix("https://")
        return "ws://" + self.HUB_URL.removeprefix("http://")


# Singleton instance
settings = SyncSettings()
