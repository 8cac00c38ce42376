"""Agent configuration loaded from environment variables and the state file."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SERVER_URL = "https://pet.pm"
DEFAULT_SYNC_DELAY_MS = 60_000
DEFAULT_PLUGIN_SUFFIX = ".plugin.js"
STATE_FILE_NAME = ".plugsync.json"

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class Settings(BaseSettings):
    """Process-level settings for the sync agent."""

    model_config = SettingsConfigDict(
        env_prefix="PLUGSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Paths
    plugins_dir: Path = Path("./plugins")
    state_file: Path | None = None
    plugin_suffix: str = DEFAULT_PLUGIN_SUFFIX

    # Server
    server_url: str = DEFAULT_SERVER_URL
    allow_insecure_http: bool = False
    request_timeout: float = Field(default=30.0, gt=0)

    # Reconciliation
    consistency_sweep: bool = True
    max_concurrent_transfers: int = Field(default=4, ge=1, le=32)
    persist_index: bool = False

    def resolved_state_file(self) -> Path:
        """Return the key-value state file, defaulting to one inside the plugins folder."""
        if self.state_file is not None:
            return self.state_file
        return self.plugins_dir / STATE_FILE_NAME


class AgentPreferences(BaseModel):
    """User-editable sync preferences, persisted under the ``settings`` key."""

    server_url: str = DEFAULT_SERVER_URL
    sync_delay: int = Field(default=DEFAULT_SYNC_DELAY_MS, gt=0)
    auto_sync_enabled: bool = True
    is_master: bool = True


def validate_server_url(server_url: str, allow_insecure_http: bool = False) -> str:
    """Validate server URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = server_url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("Server URL must include scheme and host (e.g. https://example.com)")

    hostname = parsed.hostname
    if parsed.scheme == "http" and not allow_insecure_http and hostname not in _LOCALHOST_HOSTS:
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized
