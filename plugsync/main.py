"""Agent process entry: logging setup and the long-running loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from typing import TYPE_CHECKING

from plugsync.agent import SyncAgent
from plugsync.config import AgentPreferences
from plugsync.state import AgentState
from plugsync.store import JsonFileStore

if TYPE_CHECKING:
    from plugsync.config import Settings
    from plugsync.services.notify import Notifier

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    """Configure agent logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.INFO if debug else logging.WARNING)


def create_agent(settings: Settings, notifier: Notifier | None = None) -> SyncAgent:
    """Build an agent whose state lives in the configured state file."""
    store = JsonFileStore(settings.resolved_state_file())
    # Stored preferences win; Settings only seeds a fresh state file.
    state = AgentState.load(store, AgentPreferences(server_url=settings.server_url))
    return SyncAgent(settings, state, notifier=notifier)


async def run_agent(agent: SyncAgent, stop_event: asyncio.Event | None = None) -> None:
    """Run auto sync until stop_event is set or the process gets SIGINT/SIGTERM."""
    stop = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform (e.g. Windows event loops).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)

    logger.info(
        "Starting plugsync agent (role=%s, dir=%s)",
        agent.state.role,
        agent.settings.plugins_dir,
    )
    try:
        await agent.start()
        await stop.wait()
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        await agent.stop()
        logger.info("plugsync agent stopped")
