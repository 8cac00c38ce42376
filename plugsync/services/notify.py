"""User-facing notifications."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class Notifier(Protocol):
    """Presents short messages to the user (toasts, terminal lines, ...)."""

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None: ...


class LoggingNotifier:
    """Default notifier: writes each message to the log."""

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        if level is NotificationLevel.ERROR:
            logger.error("%s", message)
        else:
            logger.info("%s", message)
