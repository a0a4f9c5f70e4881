"""Local stream endpoints that relay a remote HTTP source to one reader.

Each endpoint listens on a private address (a Unix domain socket on POSIX,
a loopback TCP port on Windows), accepts exactly one connection, and streams
the body of a single GET request into it.  ffmpeg opens the endpoint as an
ordinary non-seekable input.
"""

import asyncio
import os
import secrets
import sys
import threading
import time

import httpx

from tubemux.core.config import settings
from tubemux.core.logging import get_logger
from tubemux.core.urls import sanitize_url_for_logging
from tubemux.services.errors import RemoteFetchError

logger = get_logger(__name__)

IS_WINDOWS = sys.platform == "win32"

_live_addresses: set[str] = set()
_address_lock = threading.Lock()


def allocate_address(directory: str | None = None) -> str:
    """Reserve a process-unique endpoint address.

    Names combine a millisecond timestamp with a random suffix and are
    checked against both live reservations and the filesystem.
    """
    directory = directory or settings.RELAY_SOCKET_DIR
    with _address_lock:
        while True:
            name = f"np_t{int(time.time() * 1000)}r{secrets.token_hex(8)}"
            address = os.path.join(directory, name)
            if address in _live_addresses or os.path.exists(address):
                continue
            _live_addresses.add(address)
            return address


def release_address(address: str) -> None:
    with _address_lock:
        _live_addresses.discard(address)


class RelayEndpoint:
    """One listening endpoint bound to one remote URL."""

    def __init__(
        self,
        remote_url: str,
        address: str,
        client: httpx.AsyncClient,
        chunk_size: int | None = None,
    ) -> None:
        self.remote_url = remote_url
        self.address = address
        self.input_url = ""
        self.accepted = False
        self.closed = False
        self.error: RemoteFetchError | None = None
        self.bytes_forwarded = 0
        self._client = client
        self._chunk_size = chunk_size or settings.RELAY_CHUNK_SIZE
        self._server: asyncio.AbstractServer | None = None

    async def start(self) -> None:
        """Start listening on :attr:`address`."""
        if IS_WINDOWS:
            # asyncio has no public named-pipe server; use loopback TCP
            self._server = await asyncio.start_server(self._handle_connection, "127.0.0.1", 0)
            port = self._server.sockets[0].getsockname()[1]
            self.input_url = f"tcp://127.0.0.1:{port}"
        else:
            os.makedirs(os.path.dirname(self.address), exist_ok=True)
            self._server = await asyncio.start_unix_server(self._handle_connection, path=self.address)
            self.input_url = f"unix:{self.address}"
        logger.debug(f"Relay listening at {self.input_url}")

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        if self.accepted:
            logger.warning(f"Ignoring extra connection to relay {self.address}")
            writer.close()
            return
        self.accepted = True
        try:
            await self._forward(writer)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _forward(self, writer: asyncio.StreamWriter) -> None:
        safe_url = sanitize_url_for_logging(self.remote_url)
        try:
            async with self._client.stream("GET", self.remote_url) as response:
                response.raise_for_status()
                async for chunk in response.aiter_bytes(self._chunk_size):
                    writer.write(chunk)
                    # Let the local reader throttle the remote read
                    await writer.drain()
                    self.bytes_forwarded += len(chunk)
        except httpx.HTTPStatusError as e:
            logger.error(f"HTTP error {e.response.status_code} fetching {safe_url}")
            self.error = RemoteFetchError(
                f"HTTP error {e.response.status_code} while fetching remote source"
            )
        except httpx.HTTPError as e:
            logger.error(f"Error fetching {safe_url}: {e}")
            self.error = RemoteFetchError(f"Error fetching remote source: {e}")
        except OSError:
            # Reader went away; nothing left to forward to
            logger.debug(f"Relay reader disconnected after {self.bytes_forwarded} bytes")
        else:
            logger.debug(f"Relayed {self.bytes_forwarded} bytes from {safe_url}")

    def close(self) -> None:
        """Stop listening and release the address.

        A forward that is already running is left to finish on its own.
        Closing twice is a no-op.
        """
        if self.closed:
            return
        self.closed = True
        if self._server is not None:
            self._server.close()
        if not IS_WINDOWS:
            try:
                os.unlink(self.address)
            except FileNotFoundError:
                pass
        release_address(self.address)


async def open_endpoint(
    remote_url: str,
    client: httpx.AsyncClient,
    directory: str | None = None,
    chunk_size: int | None = None,
) -> RelayEndpoint:
    """Allocate an address and start a relay for *remote_url*."""
    endpoint = RelayEndpoint(
        remote_url,
        allocate_address(directory),
        client,
        chunk_size=chunk_size,
    )
    try:
        await endpoint.start()
    except OSError:
        endpoint.close()
        raise
    return endpoint


def create_http_client() -> httpx.AsyncClient:
    """Build the HTTP client shared by a downloader's relays."""
    headers = {}
    if settings.RELAY_USER_AGENT:
        headers["User-Agent"] = settings.RELAY_USER_AGENT
    return httpx.AsyncClient(
        headers=headers,
        proxy=settings.RELAY_PROXY,
        follow_redirects=True,
        # Only the connect phase is bounded; reads pace with the muxer
        timeout=httpx.Timeout(None, connect=settings.RELAY_CONNECT_TIMEOUT),
    )
