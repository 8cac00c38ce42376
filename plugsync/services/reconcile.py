"""Reconciliation engine: converge the plugin folder and the remote store.

Publisher runs push local state outward:

1. snapshot the folder (name -> mtime),
2. upload every file the index considers dirty,
3. delete remotely every indexed name that vanished locally,
4. optionally sweep remote leftovers whose name is not in the snapshot.

Subscriber runs mirror the remote listing into the folder:

1. list remote entries (a failure aborts before touching the disk),
2. download every entry over any local copy,
3. delete every local plugin the listing no longer has.

The index changes only after the operation for that specific file succeeded.
All runs go through one lock; see ``run`` and ``try_run``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from plugsync.config import DEFAULT_PLUGIN_SUFFIX
from plugsync.exceptions import SyncError, SyncInProgressError
from plugsync.filesystem.plugin_dir import (
    atomic_write_bytes,
    is_safe_plugin_name,
    scan_plugin_files,
)
from plugsync.services.local_index import LocalIndex
from plugsync.state import SyncRole

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from pathlib import Path

    from plugsync.services.remote_client import RemoteEntry, RemoteStore

logger = logging.getLogger(__name__)


@dataclass
class SyncOutcome:
    """What a single run did."""

    role: SyncRole
    uploaded: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    swept: list[str] = field(default_factory=list)
    downloaded: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Number of entries whose sync state changed during the run."""
        if self.role is SyncRole.PUBLISHER:
            return len(self.uploaded) + len(self.deleted)
        return len(self.downloaded) + len(self.removed)

    @property
    def ok(self) -> bool:
        return not self.failures

    def _finalize(self) -> SyncOutcome:
        # Batches complete in arbitrary order.
        for names in (self.uploaded, self.deleted, self.swept, self.downloaded, self.removed):
            names.sort()
        return self


class ReconciliationEngine:
    """Runs Publisher or Subscriber reconciliation for one plugin folder."""

    def __init__(
        self,
        client: RemoteStore,
        plugins_dir: Path,
        index: LocalIndex | None = None,
        *,
        suffix: str = DEFAULT_PLUGIN_SUFFIX,
        consistency_sweep: bool = True,
        max_concurrency: int = 4,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.client = client
        self.plugins_dir = plugins_dir
        self.index = index if index is not None else LocalIndex()
        self.suffix = suffix
        self.consistency_sweep = consistency_sweep
        self.max_concurrency = max_concurrency
        # Serializes runs so the index and the folder see one writer at a time.
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run(self, role: SyncRole) -> SyncOutcome:
        """Run once in role, waiting for any active run to finish first."""
        async with self._lock:
            logger.debug("Starting %s run for %s", role, self.plugins_dir)
            if role is SyncRole.PUBLISHER:
                outcome = await self._publish()
            else:
                outcome = await self._subscribe()
            logger.info(
                "%s run finished: %d changed, %d failure(s)",
                role.capitalize(),
                outcome.changed,
                len(outcome.failures),
            )
            return outcome._finalize()

    async def try_run(self, role: SyncRole) -> SyncOutcome:
        """Run once in role, or raise ``SyncInProgressError`` if a run is active."""
        if self._lock.locked():
            raise SyncInProgressError("A sync is already in progress")
        return await self.run(role)

    async def replace_client(self, client: RemoteStore) -> None:
        """Swap the remote client once any active run has finished."""
        async with self._lock:
            self.client = client

    async def _for_each(
        self, items: Iterable[str], worker: Callable[[str], Awaitable[None]]
    ) -> None:
        """Run worker for every item with bounded concurrency and join them all."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(item: str) -> None:
            async with semaphore:
                await worker(item)

        async with asyncio.TaskGroup() as group:
            for item in items:
                group.create_task(_guarded(item))

    def _fail(self, outcome: SyncOutcome, message: str) -> None:
        logger.warning("%s", message)
        outcome.failures.append(message)

    # ── Publisher ──────────────────────────────────────

    async def _publish(self) -> SyncOutcome:
        outcome = SyncOutcome(role=SyncRole.PUBLISHER)
        snapshot = scan_plugin_files(self.plugins_dir, self.suffix)

        async def _upload(name: str) -> None:
            modified_at = snapshot[name]
            try:
                content = (self.plugins_dir / name).read_bytes()
            except OSError as exc:
                self._fail(outcome, f"Failed to read {name}: {exc.strerror or exc}")
                return
            try:
                await self.client.upload(name, content)
            except SyncError as exc:
                self._fail(outcome, str(exc))
                return
            self.index.mark_synced(name, modified_at)
            outcome.uploaded.append(name)

        async def _delete(name: str) -> None:
            try:
                await self.client.delete(name)
            except SyncError as exc:
                self._fail(outcome, str(exc))
                return
            self.index.forget(name)
            outcome.deleted.append(name)

        dirty = [name for name in sorted(snapshot) if self.index.is_dirty(name, snapshot[name])]
        await self._for_each(dirty, _upload)
        await self._for_each(self.index.names_not_in(snapshot), _delete)

        if self.consistency_sweep:
            await self._sweep_remote(snapshot, outcome)
        return outcome

    async def _sweep_remote(self, snapshot: dict[str, int], outcome: SyncOutcome) -> None:
        """Delete remote entries that have no local counterpart.

        Skipped when the listing cannot be read: an unreadable listing says
        nothing about what exists remotely.
        """
        try:
            remote = await self.client.list_entries()
        except SyncError as exc:
            self._fail(outcome, f"Skipped consistency sweep: {exc}")
            return

        # Names still indexed had their delete fail above; the next run retries them.
        handled = set(outcome.deleted) | set(self.index.names_not_in(snapshot))
        leftovers = sorted(
            {
                entry.name
                for entry in remote
                if entry.name not in snapshot and entry.name not in handled
            }
        )

        async def _sweep(name: str) -> None:
            try:
                await self.client.delete(name)
            except SyncError as exc:
                self._fail(outcome, str(exc))
                return
            outcome.swept.append(name)

        await self._for_each(leftovers, _sweep)

    # ── Subscriber ─────────────────────────────────────

    async def _subscribe(self) -> SyncOutcome:
        outcome = SyncOutcome(role=SyncRole.SUBSCRIBER)
        # FetchError propagates: with the remote state unknown nothing local may change.
        entries = await self.client.list_entries()

        wanted: dict[str, RemoteEntry] = {}
        for entry in entries:
            if not is_safe_plugin_name(entry.name, self.suffix):
                logger.warning("Skipping remote entry with unmanaged name: %s", entry.key)
                continue
            wanted[entry.name] = entry

        self.plugins_dir.mkdir(parents=True, exist_ok=True)

        async def _download(name: str) -> None:
            entry = wanted[name]
            try:
                content = await self.client.download(entry.key)
            except SyncError as exc:
                self._fail(outcome, str(exc))
                return
            try:
                atomic_write_bytes(self.plugins_dir / name, content)
            except OSError as exc:
                self._fail(outcome, f"Failed to write {name}: {exc.strerror or exc}")
                return
            outcome.downloaded.append(name)

        await self._for_each(sorted(wanted), _download)

        remote_names = {entry.name for entry in entries}
        local = scan_plugin_files(self.plugins_dir, self.suffix)
        for name in sorted(local):
            if name in remote_names:
                continue
            try:
                (self.plugins_dir / name).unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                self._fail(outcome, f"Failed to delete local {name}: {exc.strerror or exc}")
                continue
            self.index.forget(name)
            outcome.removed.append(name)
        return outcome
