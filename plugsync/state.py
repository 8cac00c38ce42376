"""Explicit agent state: preferences, session token, and sync markers."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from plugsync.config import AgentPreferences

if TYPE_CHECKING:
    from plugsync.store import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "settings"
TOKEN_KEY = "token"
LAST_SYNC_KEY = "lastSyncTime"
INDEX_KEY = "pluginIndex"

# Persisted names as written by the host store, mapped to preference fields.
_PERSISTED_FIELDS = {
    "serverURL": "server_url",
    "syncDelay": "sync_delay",
    "autoSyncEnabled": "auto_sync_enabled",
    "isMaster": "is_master",
}


class SyncRole(StrEnum):
    """Which side of the sync is authoritative for this instance."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"


@dataclass
class SyncSession:
    """Bearer token and role used by the current run."""

    token: str
    role: SyncRole


@dataclass
class AgentState:
    """Everything the agent needs across scheduler ticks.

    The UI layers (CLI, settings panels) never touch the fields directly; they
    go through the setters below, which persist each change immediately.
    """

    store: KeyValueStore
    preferences: AgentPreferences = field(default_factory=AgentPreferences)
    token: str | None = None
    last_sync_time: int = 0

    @classmethod
    def load(cls, store: KeyValueStore, defaults: AgentPreferences | None = None) -> AgentState:
        """Restore state from the store, falling back to defaults for bad values."""
        base = defaults or AgentPreferences()
        raw = store.load(SETTINGS_KEY) or {}
        values: dict[str, Any] = base.model_dump()
        if isinstance(raw, dict):
            for persisted, attr in _PERSISTED_FIELDS.items():
                if persisted in raw and raw[persisted] is not None:
                    values[attr] = raw[persisted]
        try:
            preferences = AgentPreferences(**values)
        except ValidationError as exc:
            logger.warning("Stored settings are invalid, using defaults: %s", exc)
            preferences = base

        token = store.load(TOKEN_KEY)
        last_sync = store.load(LAST_SYNC_KEY, 0)
        return cls(
            store=store,
            preferences=preferences,
            token=token if isinstance(token, str) and token else None,
            last_sync_time=last_sync if isinstance(last_sync, int) else 0,
        )

    @property
    def role(self) -> SyncRole:
        return SyncRole.PUBLISHER if self.preferences.is_master else SyncRole.SUBSCRIBER

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None

    def session(self) -> SyncSession | None:
        """Return the session for a run, or None when logged out."""
        if self.token is None:
            return None
        return SyncSession(token=self.token, role=self.role)

    def set_token(self, token: str) -> None:
        self.token = token
        self.store.save(TOKEN_KEY, token)

    def clear_token(self) -> None:
        self.token = None
        self.store.save(TOKEN_KEY, None)

    def set_last_sync_time(self, timestamp_ms: int) -> None:
        self.last_sync_time = timestamp_ms
        self.store.save(LAST_SYNC_KEY, timestamp_ms)

    def update_preferences(self, **changes: Any) -> AgentPreferences:
        """Validate and persist preference changes. Raises ``ValidationError``."""
        merged = self.preferences.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        self.preferences = AgentPreferences(**merged)
        self.store.save(
            SETTINGS_KEY,
            {
                persisted: getattr(self.preferences, attr)
                for persisted, attr in _PERSISTED_FIELDS.items()
            },
        )
        return self.preferences
