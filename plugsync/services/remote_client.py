"""Authenticated HTTP client for the remote plugin store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from plugsync.exceptions import (
    AuthError,
    DeleteError,
    DownloadError,
    FetchError,
    NotAuthenticatedError,
    UploadError,
)

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)


@dataclass
class RemoteEntry:
    """One entry of the remote listing. Presence means the file exists remotely."""

    key: str
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def name(self) -> str:
        """Basename of the key, the join key against local file names."""
        return self.key.rsplit("/", 1)[-1]


@runtime_checkable
class RemoteStore(Protocol):
    """Operations the reconciliation engine needs from the remote side."""

    async def list_entries(self) -> list[RemoteEntry]:
        """Return the full remote listing. Raises FetchError."""
        ...

    async def upload(self, name: str, content: bytes) -> None:
        """Create or replace one entry. Raises UploadError."""
        ...

    async def delete(self, name: str) -> None:
        """Remove one entry. Raises DeleteError."""
        ...

    async def download(self, key: str) -> bytes:
        """Return the raw content of one entry. Raises DownloadError."""
        ...


def _error_detail(resp: httpx.Response) -> str:
    """Extract the server's ``{"error": ...}`` message, else the status code."""
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"HTTP {resp.status_code}"


class RemoteStoreClient:
    """Client for the plugin store backend.

    Every call except ``authenticate`` needs ``token`` to be set. Nothing is
    retried; each failure is raised once to the caller.
    """

    def __init__(
        self,
        server_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.token = token
        self.client = httpx.AsyncClient(
            base_url=self.server_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> RemoteStoreClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if not self.token:
            raise NotAuthenticatedError()
        return {"Authorization": f"Bearer {self.token}"}

    async def authenticate(self, identity: str, secret: str) -> str:
        """Exchange credentials for a bearer token. Does not store it."""
        try:
            resp = await self.client.post(
                "/login",
                json={"userId": identity, "password": secret},
            )
        except httpx.HTTPError as exc:
            logger.warning("Login request failed: %s", exc)
            raise AuthError("Failed to connect to the server") from exc

        if not resp.is_success:
            raise AuthError(f"Login failed: {_error_detail(resp)}")
        try:
            token = resp.json().get("token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            raise AuthError("Login response missing token")
        return str(token)

    async def fetch_user_info(self) -> dict[str, Any]:
        """Return the authenticated user's profile."""
        headers = self._auth_headers()
        try:
            resp = await self.client.get("/protected/user", headers=headers)
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to connect to the server: {exc}") from exc
        if not resp.is_success:
            raise FetchError(f"Failed to fetch user info: {_error_detail(resp)}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise FetchError("User info response is not JSON") from exc
        if not isinstance(data, dict):
            raise FetchError("User info response is not an object")
        return data

    async def list_entries(self) -> list[RemoteEntry]:
        """Return every plugin stored for the authenticated user."""
        headers = self._auth_headers()
        try:
            resp = await self.client.get("/protected/plugins", headers=headers)
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to connect to the server: {exc}") from exc
        if not resp.is_success:
            raise FetchError(f"Failed to fetch plugins: {_error_detail(resp)}")
        try:
            plugins = resp.json()["plugins"]
        except (ValueError, KeyError, TypeError) as exc:
            raise FetchError("Malformed plugin listing") from exc
        if not isinstance(plugins, list):
            raise FetchError("Malformed plugin listing")

        entries: list[RemoteEntry] = []
        for item in plugins:
            if not isinstance(item, dict) or not isinstance(item.get("key"), str):
                raise FetchError(f"Malformed plugin entry: {item!r}")
            extra = {k: v for k, v in item.items() if k != "key"}
            entries.append(RemoteEntry(key=item["key"], extra=extra))
        return entries

    async def upload(self, name: str, content: bytes) -> None:
        """Create or replace the plugin called name."""
        headers = self._auth_headers()
        try:
            resp = await self.client.post(
                "/protected/upload-plugin",
                headers=headers,
                files={"file": (name, content)},
            )
        except httpx.HTTPError as exc:
            raise UploadError(name, str(exc) or type(exc).__name__) from exc
        if not resp.is_success:
            raise UploadError(name, _error_detail(resp))

    async def delete(self, name: str) -> None:
        """Delete the plugin called name. A missing plugin counts as deleted."""
        headers = self._auth_headers()
        try:
            resp = await self.client.request(
                "DELETE",
                "/protected/delete-plugin",
                headers=headers,
                json={"fileName": name},
            )
        except httpx.HTTPError as exc:
            raise DeleteError(name, str(exc) or type(exc).__name__) from exc
        if resp.status_code == 404:
            logger.debug("Remote plugin %s already absent", name)
            return
        if not resp.is_success:
            raise DeleteError(name, _error_detail(resp))

    async def download(self, key: str) -> bytes:
        """Return the raw bytes stored under key."""
        headers = self._auth_headers()
        try:
            resp = await self.client.get(
                "/protected/download-plugin",
                headers=headers,
                params={"fileName": key},
            )
        except httpx.HTTPError as exc:
            raise DownloadError(key, str(exc) or type(exc).__name__) from exc
        if not resp.is_success:
            raise DownloadError(key, _error_detail(resp))
        return resp.content
