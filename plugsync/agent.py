"""Sync agent: wires state, client, engine, and scheduler together."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from plugsync.exceptions import (
    AuthError,
    CooldownError,
    FetchError,
    NotAuthenticatedError,
    SyncError,
)
from plugsync.filesystem.plugin_dir import scan_plugin_files
from plugsync.services.local_index import LocalIndex
from plugsync.services.notify import LoggingNotifier, NotificationLevel
from plugsync.services.reconcile import ReconciliationEngine
from plugsync.services.remote_client import RemoteStoreClient
from plugsync.services.scheduler import SyncScheduler, now_ms
from plugsync.state import INDEX_KEY, SyncRole

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from plugsync.config import AgentPreferences, Settings
    from plugsync.services.notify import Notifier
    from plugsync.services.reconcile import SyncOutcome
    from plugsync.services.remote_client import RemoteEntry
    from plugsync.state import AgentState, SyncSession

logger = logging.getLogger(__name__)


class SyncAgent:
    """Background plugin sync agent for one plugin folder."""

    def __init__(
        self,
        settings: Settings,
        state: AgentState,
        *,
        notifier: Notifier | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.settings = settings
        self.state = state
        self.notifier: Notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._transport = transport
        self.client = self._build_client(state.preferences.server_url)
        index = LocalIndex()
        if settings.persist_index:
            index = LocalIndex.from_snapshot(state.store.load(INDEX_KEY))
        self.engine = ReconciliationEngine(
            self.client,
            settings.plugins_dir,
            index,
            suffix=settings.plugin_suffix,
            consistency_sweep=settings.consistency_sweep,
            max_concurrency=settings.max_concurrent_transfers,
        )
        self.scheduler = SyncScheduler(
            self._scheduled_sync,
            last_run_ms=state.last_sync_time,
            clock=clock,
        )

    @property
    def index(self) -> LocalIndex:
        return self.engine.index

    # ── Lifecycle ──────────────────────────────────────

    async def start(self) -> None:
        """Begin auto sync when logged in and enabled."""
        session = self.state.session()
        if session is None:
            logger.info("Not logged in; auto sync is idle")
            return
        if not self.state.preferences.auto_sync_enabled:
            logger.info("Auto sync disabled")
            return
        if session.role is SyncRole.SUBSCRIBER:
            # Subscribers pull once right away instead of waiting a full interval.
            await self._run_and_report(session)
        self.scheduler.start(self.state.preferences.sync_delay)

    async def stop(self) -> None:
        """Stop the timer, let an in-flight run finish, and release the client."""
        self.scheduler.stop()
        await self.scheduler.wait_idle()
        self._persist_index()
        await self.client.aclose()

    async def _restart_auto_sync(self) -> None:
        self.scheduler.stop()
        await self.start()

    # ── Session ────────────────────────────────────────

    async def login(self, identity: str, secret: str, *, start_sync: bool = True) -> None:
        """Authenticate and (re)start auto sync. Raises ``AuthError`` on failure."""
        if not identity or not secret:
            self.notifier.notify("User ID and Password cannot be empty", NotificationLevel.ERROR)
            raise AuthError("User ID and Password cannot be empty")
        try:
            token = await self.client.authenticate(identity, secret)
        except AuthError as exc:
            self.notifier.notify(exc.reason, NotificationLevel.ERROR)
            raise
        self.state.set_token(token)
        self.client.token = token
        self.notifier.notify("Login successful!", NotificationLevel.SUCCESS)
        if start_sync:
            await self._restart_auto_sync()

    def logout(self) -> None:
        self.scheduler.stop()
        self.state.clear_token()
        self.client.token = None
        self.notifier.notify("Logged out!", NotificationLevel.SUCCESS)

    async def update_settings(self, **changes: Any) -> AgentPreferences:
        """Validate, persist, and apply preference changes.

        Raises ``pydantic.ValidationError`` when a value is invalid.
        """
        preferences = self.state.update_preferences(**changes)
        if self.client.server_url != preferences.server_url.rstrip("/"):
            await self._replace_client(preferences.server_url)
        self.notifier.notify("Settings saved!", NotificationLevel.SUCCESS)
        await self._restart_auto_sync()
        return preferences

    def _build_client(self, server_url: str) -> RemoteStoreClient:
        return RemoteStoreClient(
            server_url,
            self.state.token,
            timeout=self.settings.request_timeout,
            transport=self._transport,
        )

    async def _replace_client(self, server_url: str) -> None:
        old = self.client
        new = self._build_client(server_url)
        # Waits for an in-flight run so it never sees a closed client.
        await self.engine.replace_client(new)
        self.client = new
        await old.aclose()

    # ── Sync ───────────────────────────────────────────

    async def sync_now(self) -> SyncOutcome:
        """Run a manual sync in the configured role.

        Raises ``NotAuthenticatedError``, ``CooldownError`` or
        ``SyncInProgressError`` when the run is refused, and ``FetchError``
        when a Subscriber run aborts.
        """
        session = self.state.session()
        if session is None:
            raise NotAuthenticatedError()
        remaining = self.scheduler.cooldown_remaining()
        if remaining > 0:
            raise CooldownError(remaining)
        try:
            outcome = await self.engine.try_run(session.role)
        except FetchError as exc:
            self._record_run()
            self.notifier.notify(f"Error syncing from server: {exc}", NotificationLevel.ERROR)
            raise
        self._record_run()
        self._report(outcome)
        return outcome

    async def _scheduled_sync(self) -> None:
        session = self.state.session()
        if session is None:
            logger.info("Skipping scheduled sync: not logged in")
            return
        await self._run_and_report(session)

    async def _run_and_report(self, session: SyncSession) -> SyncOutcome | None:
        try:
            outcome = await self.engine.run(session.role)
        except SyncError as exc:
            self.notifier.notify(f"Error syncing from server: {exc}", NotificationLevel.ERROR)
            return None
        self._report(outcome)
        self._persist_index()
        return outcome

    def _record_run(self) -> None:
        timestamp = self._clock()
        self.scheduler.record_manual_run(timestamp)
        self.state.set_last_sync_time(timestamp)
        self._persist_index()

    def _report(self, outcome: SyncOutcome) -> None:
        for failure in outcome.failures:
            self.notifier.notify(failure, NotificationLevel.ERROR)
        if outcome.changed > 0:
            self.notifier.notify(
                f"Synced {outcome.changed} plugin(s)", NotificationLevel.SUCCESS
            )

    def _persist_index(self) -> None:
        if self.settings.persist_index:
            self.state.store.save(INDEX_KEY, self.index.snapshot())

    # ── Status ─────────────────────────────────────────

    async def fetch_user_info(self) -> dict[str, Any]:
        return await self.client.fetch_user_info()

    async def remote_entries(self) -> list[RemoteEntry]:
        return await self.client.list_entries()

    def pending_changes(self) -> dict[str, list[str]]:
        """Return what the next Publisher run would upload and delete."""
        snapshot = scan_plugin_files(self.settings.plugins_dir, self.settings.plugin_suffix)
        return {
            "to_upload": [
                name for name in sorted(snapshot) if self.index.is_dirty(name, snapshot[name])
            ],
            "to_delete": self.index.names_not_in(snapshot),
        }
