"""In-memory index of plugin files and the modification time they were last uploaded at.

Thread-safety: safe under asyncio's single-threaded cooperative model. Every
method is synchronous, so a per-file task that mutates the index after its own
network call resolves cannot interleave with another task's mutation.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable


class LocalIndex:
    """Map of file name to the mtime (epoch ms) recorded at its last successful upload."""

    def __init__(self, entries: dict[str, int] | None = None) -> None:
        self._entries: dict[str, int] = dict(entries or {})

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, name: str) -> int | None:
        return self._entries.get(name)

    def is_dirty(self, name: str, modified_at: int) -> bool:
        """Return True when name was never synced or its mtime changed since."""
        return self._entries.get(name) != modified_at

    def mark_synced(self, name: str, modified_at: int) -> None:
        """Record a confirmed upload."""
        self._entries[name] = modified_at

    def forget(self, name: str) -> None:
        """Drop name after a confirmed delete. Unknown names are ignored."""
        self._entries.pop(name, None)

    def names_not_in(self, present_names: Iterable[str]) -> list[str]:
        """Return indexed names missing from present_names, i.e. deleted locally."""
        present = set(present_names)
        return sorted(name for name in self._entries if name not in present)

    def snapshot(self) -> dict[str, int]:
        return dict(self._entries)

    @classmethod
    def from_snapshot(cls, data: Any) -> LocalIndex:
        """Rebuild from a persisted snapshot, skipping malformed entries."""
        if not isinstance(data, dict):
            return cls()
        return cls(
            {
                str(name): value
                for name, value in data.items()
                if isinstance(value, int) and not isinstance(value, bool)
            }
        )
