"""High-level async client for the remote JSON store."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import aiohttp

from pyrtdb._cancel import is_cancelled, run_cancellable
from pyrtdb._constants import AUTH_QUERY_PARAM, ERROR_KEY, JSON_SUFFIX
from pyrtdb._sse import SseDecoder, validate_message
from pyrtdb._transport import HttpResponse, HttpTransport, Transport
from pyrtdb.config import RtdbConfig
from pyrtdb.exceptions import (
    RtdbApiError,
    RtdbCancelledError,
    RtdbError,
    RtdbStreamError,
    RtdbTransportError,
)
from pyrtdb.models.stream import EventType, StreamedSnapshot

_logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | Awaitable[str]]
"""Zero-argument callable returning the current identity token (or an awaitable of it)."""

EventHandler = Callable[[EventType, StreamedSnapshot | None], Awaitable[None] | None]
"""Stream callback; async handlers are awaited before the next line is read."""


def _error_message(body: str) -> str | None:
    """Extract the message of a ``{"error": ...}`` envelope, if *body* is one."""
    try:
        decoded = json.loads(body)
    except ValueError:
        return None
    if isinstance(decoded, dict) and ERROR_KEY in decoded:
        return str(decoded[ERROR_KEY])
    return None


class RtdbClient:
    """Async client for the remote JSON store.

    The client holds no per-path state and can be shared by any number of
    :class:`~pyrtdb.endpoint.DatabaseEndpoint` instances.

    Usage::

        async with RtdbClient(config, token_provider=auth.current_token) as client:
            raw = await client.get_snapshot("players/42")
    """

    def __init__(
        self,
        config: RtdbConfig,
        token_provider: TokenProvider | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self._token_provider = token_provider
        self._external_session = session is not None
        self._http_session = session
        self._transport: Transport | None = transport
        self._owns_transport = transport is None

    @property
    def database_url(self) -> str:
        """Root URL every path is resolved against."""
        return self._config.database_url

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> RtdbClient:
        if self._owns_transport:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            self._transport = HttpTransport(self._config, self._http_session)
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        if self._owns_transport:
            self._transport = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise RtdbError("Client not initialized. Use 'async with RtdbClient(...) as client:'")
        return self._transport

    async def _current_token(self) -> str | None:
        provider = self._token_provider
        if provider is None:
            return None
        token = provider()
        if inspect.isawaitable(token):
            token = await token
        return str(token)

    async def build_url(self, path: str) -> str:
        """Resolve *path* to ``<root><path>.json?auth=<token>`` with a fresh token."""
        url = f"{self._config.database_url}{path.strip('/')}{JSON_SUFFIX}"
        token = await self._current_token()
        if token is None:
            return url
        return f"{url}?{urlencode({AUTH_QUERY_PARAM: token})}"

    def _check_response(self, method: str, path: str, response: HttpResponse) -> str | None:
        message = _error_message(response.text)
        if message is not None or not response.ok:
            raise RtdbApiError(
                f"{method} {path} failed: HTTP {response.status}: {message or response.text[:200]}",
                status_code=response.status,
                path=path,
                body=response.text,
            )
        return validate_message(response.text)

    async def _send(
        self,
        method: str,
        path: str,
        body: str | None,
        cancel: asyncio.Event | None,
    ) -> str | None:
        transport = self._require_transport()

        async def _call() -> HttpResponse:
            url = await self.build_url(path)
            return await transport.request(method, url, body=body)

        response = await run_cancellable(_call(), cancel)
        return self._check_response(method, path, response)

    # ------------------------------------------------------------------
    # Snapshot operations
    # ------------------------------------------------------------------

    async def get_snapshot(self, path: str, *, cancel: asyncio.Event | None = None) -> str | None:
        """Return the JSON text stored at *path*, or ``None`` when it holds no data."""
        return await self._send("GET", path, None, cancel)

    async def put_snapshot(
        self,
        path: str,
        json_text: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> str | None:
        """Overwrite everything at *path* with *json_text*; returns the stored JSON."""
        return await self._send("PUT", path, json_text, cancel)

    async def patch_snapshot(
        self,
        path: str,
        json_text: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> str | None:
        """Merge the named children of *json_text* into *path*.

        Children present in *json_text* are overwritten; omitted children
        are left untouched.
        """
        return await self._send("PATCH", path, json_text, cancel)

    async def post_snapshot(
        self,
        path: str,
        json_text: str,
        *,
        cancel: asyncio.Event | None = None,
    ) -> str | None:
        """Append *json_text* under a server-generated key below *path*.

        Returns the server's ``{"name": "<generated key>"}`` response.
        """
        return await self._send("POST", path, json_text, cancel)

    async def delete_snapshot(self, path: str, *, cancel: asyncio.Event | None = None) -> None:
        """Remove all data at *path*."""
        await self._send("DELETE", path, None, cancel)

    # ------------------------------------------------------------------
    # Event stream
    # ------------------------------------------------------------------

    async def stream_changes(
        self,
        path: str,
        on_event: EventHandler,
        *,
        cancel: asyncio.Event | None = None,
    ) -> None:
        """Listen to changes at *path* until the stream ends.

        *on_event* receives ``(kind, snapshot)`` for every ``put``, ``patch``
        and ``cancel`` event.  Returns when the server closes the stream or
        revokes read access; raises :class:`RtdbCancelledError` when *cancel*
        fires, :class:`~pyrtdb.exceptions.RtdbAuthRevokedError` when the token
        expires and :class:`RtdbStreamError` on read failures.  Never retries.
        """
        transport = self._require_transport()
        url = await run_cancellable(self.build_url(path), cancel)
        decoder = SseDecoder(path)

        async with transport.open_stream(url) as lines:
            _logger.debug("Stream opened for %s", path)
            while True:
                line = await self._next_line(lines, path, cancel)
                if line is None:
                    if is_cancelled(cancel):
                        raise RtdbCancelledError(f"Stream for {path} cancelled")
                    _logger.warning("Stream for %s ended unexpectedly", path)
                    return

                result = decoder.feed(line)
                if result is None:
                    continue
                kind, snapshot = result
                if is_cancelled(cancel):
                    raise RtdbCancelledError(f"Stream for {path} cancelled")

                _logger.debug("Stream event %s on %s path=%s", kind, path, snapshot.path if snapshot else None)
                outcome = on_event(kind, snapshot)
                if inspect.isawaitable(outcome):
                    await outcome

                if kind is EventType.CANCEL:
                    _logger.debug("Server revoked read access to %s; stream closed", path)
                    return

    @staticmethod
    async def _next_line(
        lines: AsyncIterator[str],
        path: str,
        cancel: asyncio.Event | None,
    ) -> str | None:
        try:
            return await run_cancellable(anext(lines, None), cancel)
        except RtdbTransportError as exc:
            raise RtdbStreamError(f"Stream for {path} failed: {exc}", path=path) from exc
