"""Key-value persistence for settings, token, and sync markers."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any, Protocol

from plugsync.filesystem.plugin_dir import atomic_write_bytes

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Host-provided storage that survives restarts."""

    def load(self, key: str, default: Any = None) -> Any:
        """Return the stored value for key, or default when absent."""
        ...

    def save(self, key: str, value: Any) -> None:
        """Store value under key. ``None`` removes the key."""
        ...


class MemoryStore:
    """Non-durable store, used when nothing should touch the disk."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = dict(data or {})

    def load(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def save(self, key: str, value: Any) -> None:
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value


class JsonFileStore:
    """Store every key in a single JSON object on disk.

    The file is rewritten on each save through an atomic replace, so a crash
    mid-write keeps the previous contents.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: top-level value is not an object", self.path)
            return {}
        return data

    def load(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def save(self, key: str, value: Any) -> None:
        data = self._read()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write_bytes(self.path, json.dumps(data, indent=2).encode("utf-8"))
