"""Shared test fixtures for plugsync."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any

import pytest
from fastapi import FastAPI, File, Header, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from httpx import ASGITransport

from plugsync.config import Settings
from plugsync.services.notify import NotificationLevel
from plugsync.services.reconcile import ReconciliationEngine
from plugsync.services.remote_client import RemoteStoreClient

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

logger = logging.getLogger(__name__)

TEST_SERVER_URL = "http://store.test"
TEST_USER_ID = "390527881891151872"
TEST_PASSWORD = "correct-horse-battery"
TEST_TOKEN = "test-token"
PLUGIN_SUFFIX = ".plugin.js"


class FakePluginStore:
    """In-memory plugin backend served to the real client through ASGITransport.

    Stores plugins under ``<prefix>/<name>`` keys, records every call, and can
    be told to fail or block individual operations.
    """

    def __init__(self, prefix: str = "user") -> None:
        self.prefix = prefix
        self.plugins: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_list = False
        self.fail_uploads: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.fail_downloads: set[str] = set()
        # When set, uploads wait on ``gate`` after signalling ``entered``.
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()
        self.app = self._build_app()

    def key_for(self, name: str) -> str:
        return f"{self.prefix}/{name}"

    def put(self, name: str, content: bytes) -> None:
        self.plugins[self.key_for(name)] = content

    def names(self) -> set[str]:
        return {key.rsplit("/", 1)[-1] for key in self.plugins}

    def ops(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    def transport(self) -> ASGITransport:
        return ASGITransport(app=self.app)

    def _unauthorized(self, authorization: str | None) -> JSONResponse | None:
        if authorization != f"Bearer {TEST_TOKEN}":
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})
        return None

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        store = self

        @app.post("/login")
        async def login(request: Request) -> JSONResponse:
            body: dict[str, Any] = await request.json()
            store.calls.append(("login", str(body.get("userId"))))
            if body.get("userId") == TEST_USER_ID and body.get("password") == TEST_PASSWORD:
                return JSONResponse({"token": TEST_TOKEN, "message": "Login successful!"})
            return JSONResponse(status_code=401, content={"error": "Invalid credentials"})

        @app.get("/protected/user")
        async def user(authorization: str | None = Header(default=None)) -> Response:
            denied = store._unauthorized(authorization)
            if denied is not None:
                return denied
            return JSONResponse({"userId": TEST_USER_ID, "plan": "free"})

        @app.get("/protected/plugins")
        async def plugins(authorization: str | None = Header(default=None)) -> Response:
            denied = store._unauthorized(authorization)
            if denied is not None:
                return denied
            store.calls.append(("list", ""))
            if store.fail_list:
                return JSONResponse(status_code=500, content={"error": "Database unavailable"})
            return JSONResponse(
                {
                    "plugins": [
                        {"key": key, "size": len(content)}
                        for key, content in sorted(store.plugins.items())
                    ]
                }
            )

        @app.post("/protected/upload-plugin")
        async def upload(
            file: UploadFile = File(...),
            authorization: str | None = Header(default=None),
        ) -> Response:
            denied = store._unauthorized(authorization)
            if denied is not None:
                return denied
            name = file.filename or ""
            store.calls.append(("upload", name))
            if store.gate is not None:
                store.entered.set()
                await store.gate.wait()
            if name in store.fail_uploads:
                return JSONResponse(status_code=500, content={"error": "Storage full"})
            store.put(name, await file.read())
            return JSONResponse({"message": "Uploaded"})

        @app.delete("/protected/delete-plugin")
        async def delete(
            request: Request,
            authorization: str | None = Header(default=None),
        ) -> Response:
            denied = store._unauthorized(authorization)
            if denied is not None:
                return denied
            body: dict[str, Any] = await request.json()
            name = str(body.get("fileName", ""))
            store.calls.append(("delete", name))
            if name in store.fail_deletes:
                return JSONResponse(status_code=500, content={"error": "Delete failed"})
            key = store.key_for(name)
            if key not in store.plugins:
                return JSONResponse(status_code=404, content={"error": "Not found"})
            del store.plugins[key]
            return JSONResponse({"message": "Deleted"})

        @app.get("/protected/download-plugin")
        async def download(
            fileName: str,  # noqa: N803
            authorization: str | None = Header(default=None),
        ) -> Response:
            denied = store._unauthorized(authorization)
            if denied is not None:
                return denied
            store.calls.append(("download", fileName))
            if fileName.rsplit("/", 1)[-1] in store.fail_downloads:
                return JSONResponse(status_code=500, content={"error": "Read failed"})
            if fileName not in store.plugins:
                return JSONResponse(status_code=404, content={"error": "Not found"})
            return Response(store.plugins[fileName], media_type="application/javascript")

        return app


class RecordingNotifier:
    """Keep every notification in memory."""

    def __init__(self) -> None:
        self.messages: list[tuple[NotificationLevel, str]] = []

    def notify(self, message: str, level: NotificationLevel = NotificationLevel.INFO) -> None:
        self.messages.append((level, message))

    def errors(self) -> list[str]:
        return [msg for level, msg in self.messages if level is NotificationLevel.ERROR]

    def successes(self) -> list[str]:
        return [msg for level, msg in self.messages if level is NotificationLevel.SUCCESS]


def write_plugin(
    plugins_dir: Path, name: str, content: str = "module.exports = {};\n", mtime_ms: int = 0
) -> Path:
    """Write a plugin file, optionally pinning its mtime (epoch ms)."""
    path = plugins_dir / name
    path.write_text(content)
    if mtime_ms:
        ns = mtime_ms * 1_000_000
        os.utime(path, ns=(ns, ns))
    return path


@pytest.fixture
def plugin_store() -> FakePluginStore:
    return FakePluginStore()


@pytest.fixture
def plugins_dir(tmp_path: Path) -> Path:
    """Create an empty managed plugin directory."""
    directory = tmp_path / "plugins"
    directory.mkdir()
    return directory


@pytest.fixture
def test_settings(plugins_dir: Path, tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        plugins_dir=plugins_dir,
        state_file=tmp_path / "state.json",
        server_url=TEST_SERVER_URL,
        max_concurrent_transfers=2,
    )


@pytest.fixture
async def remote_client(plugin_store: FakePluginStore) -> AsyncGenerator[RemoteStoreClient]:
    """Create a logged-in client talking to the fake store."""
    async with RemoteStoreClient(
        TEST_SERVER_URL, TEST_TOKEN, transport=plugin_store.transport()
    ) as client:
        yield client


@pytest.fixture
def engine(remote_client: RemoteStoreClient, plugins_dir: Path) -> ReconciliationEngine:
    return ReconciliationEngine(remote_client, plugins_dir, suffix=PLUGIN_SUFFIX)
