"""HTTP transport for snapshot requests and event streams."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator, AsyncIterator
from dataclasses import dataclass
from typing import Protocol

import aiohttp

from pyrtdb._constants import EVENT_STREAM_MEDIA_TYPE, JSON_MEDIA_TYPE
from pyrtdb._redact import redact_url, truncate_body
from pyrtdb.config import RtdbConfig
from pyrtdb.exceptions import RtdbTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpResponse:
    """Status and decoded body of a completed request."""

    status: int
    text: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    """Structural transport interface used by :class:`~pyrtdb.client.RtdbClient`.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`HttpTransport`) concrete.
    """

    async def request(self, method: str, url: str, *, body: str | None = None) -> HttpResponse:
        ...

    def open_stream(self, url: str) -> contextlib.AbstractAsyncContextManager[AsyncIterator[str]]:
        ...


def _decode_line(raw: bytes, url: str) -> str:
    try:
        return raw.decode("utf-8").rstrip("\r")
    except UnicodeDecodeError as exc:
        raise RtdbTransportError(f"Stream from {redact_url(url)} sent invalid UTF-8: {exc}") from exc


async def _iter_lines(content: aiohttp.StreamReader, url: str) -> AsyncGenerator[str, None]:
    """Yield decoded lines from a response body without a line-length limit."""
    buffer = b""
    chunks = content.iter_any()
    while True:
        try:
            chunk = await anext(chunks, None)
        except aiohttp.ClientError as exc:
            raise RtdbTransportError(f"Stream read from {redact_url(url)} failed: {exc}") from exc
        except TimeoutError as exc:
            raise RtdbTransportError(f"Stream from {redact_url(url)} timed out") from exc
        if chunk is None:
            break
        buffer += chunk
        while True:
            line, sep, rest = buffer.partition(b"\n")
            if not sep:
                break
            buffer = rest
            yield _decode_line(line, url)
    if buffer:
        yield _decode_line(buffer, url)


class HttpTransport:
    """aiohttp transport that speaks the store's JSON-over-HTTP protocol."""

    def __init__(self, config: RtdbConfig, http_session: aiohttp.ClientSession) -> None:
        self._config = config
        self._http = http_session
        self._request_timeout = aiohttp.ClientTimeout(total=config.request_timeout)
        self._stream_timeout = aiohttp.ClientTimeout(
            total=None,
            sock_connect=config.request_timeout,
            sock_read=config.stream_read_timeout or None,
        )

    def _headers(self, accept: str) -> dict[str, str]:
        return {
            "accept": accept,
            "user-agent": self._config.user_agent,
        }

    async def request(self, method: str, url: str, *, body: str | None = None) -> HttpResponse:
        """Send one request and return the status with the full body text."""
        headers = self._headers(JSON_MEDIA_TYPE)
        if body is not None:
            headers["content-type"] = JSON_MEDIA_TYPE

        safe_url = redact_url(url)
        _logger.debug("%s %s body=%s", method, safe_url, truncate_body(body, max_length=128))

        try:
            async with self._http.request(
                method,
                url,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                timeout=self._request_timeout,
            ) as resp:
                status = resp.status
                text = await resp.text(encoding="utf-8")
        except aiohttp.ClientError as exc:
            raise RtdbTransportError(f"{method} {safe_url} failed: {exc}") from exc
        except TimeoutError as exc:
            raise RtdbTransportError(f"{method} {safe_url} timed out") from exc
        except UnicodeDecodeError as exc:
            raise RtdbTransportError(
                f"{method} {safe_url} returned invalid UTF-8: {exc}",
                status_code=status,
            ) from exc

        _logger.debug("%s %s -> HTTP %d", method, safe_url, status)
        return HttpResponse(status=status, text=text)

    async def _connect_stream(self, url: str) -> aiohttp.ClientResponse:
        safe_url = redact_url(url)
        _logger.debug("GET %s (event stream)", safe_url)
        try:
            resp = await self._http.get(
                url,
                headers=self._headers(EVENT_STREAM_MEDIA_TYPE),
                timeout=self._stream_timeout,
                allow_redirects=True,
            )
            if not 200 <= resp.status < 300:
                try:
                    text = await resp.text(errors="replace")
                finally:
                    resp.close()
                raise RtdbTransportError(
                    f"Stream open for {safe_url} failed: HTTP {resp.status}: {text[:200]}",
                    status_code=resp.status,
                )
        except aiohttp.ClientError as exc:
            raise RtdbTransportError(f"Stream open for {safe_url} failed: {exc}") from exc
        except TimeoutError as exc:
            raise RtdbTransportError(f"Stream open for {safe_url} timed out") from exc
        return resp

    @contextlib.asynccontextmanager
    async def open_stream(self, url: str) -> AsyncIterator[AsyncIterator[str]]:
        """Open an event stream and yield an iterator over its lines.

        Redirects are followed.  A non-success status raises
        :class:`RtdbTransportError` before any line is produced.  Errors
        raised by the caller inside the ``async with`` block pass through
        unchanged.
        """
        resp = await self._connect_stream(url)
        lines = _iter_lines(resp.content, url)
        try:
            yield lines
        finally:
            await lines.aclose()
            resp.close()
