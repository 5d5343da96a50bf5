"""Remote archive client for finished credential bundles.

The client uploads bytes to an HTTP object store and turns the URL it gets
back into a locator. It performs exactly one attempt per call; the pairing
workflow owns the retry policy.
"""

import asyncio
import json
import logging
from typing import Optional, Protocol

import aiohttp

from linkvault.errors import AuthError, NetworkError, ProtocolError
from linkvault.locator import make_locator

logger = logging.getLogger(__name__)


class ArchiveClient(Protocol):
    """Protocol for remote archive implementations."""

    async def upload(self, data: bytes, name: str) -> str:
        """Upload data and return its locator.

        Raises:
            AuthError: Remote store rejected the credentials.
            NetworkError: Transient failure, safe to retry.
            ProtocolError: Unexpected response from the remote store.
        """
        ...


class HttpArchiveClient:
    """Uploads credential bundles to an HTTP object store.

    The store is expected to accept a POST with the raw bytes and answer
    with JSON holding the public URL of the stored file under ``url`` (or
    ``link``).
    """

    REQUEST_TIMEOUT = 60.0  # seconds

    def __init__(
        self,
        upload_url: str,
        *,
        username: Optional[str],
        password: Optional[str],
        tag: str = "SESS",
        timeout: float = REQUEST_TIMEOUT,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize archive client.

        Args:
            upload_url: Endpoint that accepts uploads.
            username: Remote store account name.
            password: Remote store password.
            tag: Product tag for derived locators.
            timeout: Total request timeout in seconds.
            http_session: Optional aiohttp session (for testing). The client
                never closes a session it did not create.
        """
        self._upload_url = upload_url
        self._username = username
        self._password = password
        self._tag = tag
        self._timeout = timeout
        self._session = http_session

    @property
    def tag(self) -> str:
        return self._tag

    async def upload(self, data: bytes, name: str) -> str:
        """Upload once and derive the locator.

        Args:
            data: Bytes to store.
            name: Remote file name.

        Returns:
            Locator for the stored file.

        Raises:
            AuthError: Missing or rejected credentials.
            NetworkError: Connection failure, timeout, 429 or 5xx.
            ProtocolError: Any other unexpected response.
        """
        if not self._username or not self._password:
            raise AuthError("Remote store credentials are not configured")
        if not self._upload_url:
            raise ProtocolError("Remote store upload URL is not configured")

        session = self._session or aiohttp.ClientSession()
        try:
            url = await self._post(session, data, name)
        finally:
            if self._session is None:
                await session.close()

        locator = make_locator(url, self._tag)
        logger.info(f"Archived {name} ({len(data)} bytes)")
        return locator

    async def _post(self, session: aiohttp.ClientSession, data: bytes, name: str) -> str:
        """Single upload request. Returns the remote URL."""
        try:
            async with session.post(
                self._upload_url,
                data=data,
                headers={
                    "Content-Type": "application/octet-stream",
                    "X-File-Name": name,
                },
                auth=aiohttp.BasicAuth(self._username, self._password),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status in (401, 403):
                    raise AuthError(f"Remote store rejected credentials ({resp.status})")
                if resp.status == 429 or resp.status >= 500:
                    raise NetworkError(f"Remote store returned {resp.status}")
                if resp.status >= 300:
                    text = await resp.text()
                    raise ProtocolError(f"Remote store returned {resp.status}: {text[:100]}")
                body = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NetworkError(f"Upload failed: {e}") from e

        return self._extract_url(body)

    @staticmethod
    def _extract_url(body: str) -> str:
        try:
            payload = json.loads(body)
        except json.JSONDecodeError as e:
            raise ProtocolError("Remote store response is not JSON") from e

        if not isinstance(payload, dict):
            raise ProtocolError("Remote store response is not an object")
        url = payload.get("url") or payload.get("link")
        if not isinstance(url, str) or not url:
            raise ProtocolError("Remote store response has no file URL")
        return url
