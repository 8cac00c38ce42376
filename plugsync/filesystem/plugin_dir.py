"""Managed plugin directory: scanning, safe names, and atomic writes."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".plugsync-"


def mtime_ms(stat_result: os.stat_result) -> int:
    """Return a file's modification time as integer epoch milliseconds."""
    return stat_result.st_mtime_ns // 1_000_000


def scan_plugin_files(plugins_dir: Path, suffix: str) -> dict[str, int]:
    """Map each managed file name in plugins_dir to its mtime in epoch ms.

    Only regular files directly inside the directory whose names end with
    suffix are managed. Hidden files (our own temp and state files) are skipped.
    """
    if not plugins_dir.is_dir():
        return {}
    entries: dict[str, int] = {}
    with os.scandir(plugins_dir) as it:
        for entry in it:
            if entry.name.startswith(".") or not entry.name.endswith(suffix):
                continue
            try:
                if not entry.is_file():
                    continue
                entries[entry.name] = mtime_ms(entry.stat())
            except FileNotFoundError:
                # Deleted between listing and stat.
                continue
    return entries


def is_safe_plugin_name(name: str, suffix: str) -> bool:
    """Return True when name can be written directly inside the plugins folder."""
    if not name or name in {".", ".."} or name.startswith("."):
        return False
    if "/" in name or "\\" in name or "\x00" in name:
        return False
    return name.endswith(suffix)


def atomic_write_bytes(path: Path, content: bytes) -> None:
    """Write content to path via a sibling temp file and ``os.replace``."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=TEMP_PREFIX, suffix=".part")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp_name)
        raise
