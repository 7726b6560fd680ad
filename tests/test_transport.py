from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from typing import Any

import aiohttp
import pytest

from pyrtdb._transport import HttpResponse, HttpTransport, _iter_lines
from pyrtdb.client import RtdbClient
from pyrtdb.config import RtdbConfig
from pyrtdb.exceptions import RtdbStreamError, RtdbTransportError

STREAM_URL = "https://example-db.test/a.json?auth=secret"


class _Chunks:
    """Stand-in for ``aiohttp.StreamReader`` that yields fixed chunks."""

    def __init__(self, *chunks: bytes, error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error

    async def iter_any(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class _FakeResponse:
    def __init__(self, status: int = 200, body: bytes = b"", chunks: tuple[bytes, ...] = ()) -> None:
        self.status = status
        self.content = _Chunks(*chunks)
        self.closed = False
        self._body = body

    async def text(self, encoding: str | None = None, errors: str = "strict") -> str:
        return self._body.decode(encoding or "utf-8", errors)

    def close(self) -> None:
        self.closed = True


class _FakeSession:
    """Minimal ``aiohttp.ClientSession`` double for ``HttpTransport``."""

    def __init__(self, response: _FakeResponse, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    @contextlib.asynccontextmanager
    async def request(self, method: str, url: str, **kwargs: Any) -> AsyncIterator[_FakeResponse]:
        self.calls.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        yield self.response

    async def get(self, url: str, **kwargs: Any) -> _FakeResponse:
        self.calls.append(("GET", url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def _transport(config: RtdbConfig, session: _FakeSession) -> HttpTransport:
    return HttpTransport(config, session)  # type: ignore[arg-type]


async def _collect(content: _Chunks) -> list[str]:
    return [line async for line in _iter_lines(content, STREAM_URL)]  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_iter_lines_joins_lines_split_across_chunks() -> None:
    content = _Chunks(b"event: pu", b"t\r\ndata: {\"path\":\"/\",", b"\"data\":1}\n\nevent: keep-alive\n")

    assert await _collect(content) == [
        "event: put",
        'data: {"path":"/","data":1}',
        "",
        "event: keep-alive",
    ]


@pytest.mark.asyncio
async def test_iter_lines_handles_long_lines_and_trailing_text() -> None:
    payload = "x" * 200_000
    content = _Chunks(f"data: {payload}\n".encode(), "data: Zoë".encode())

    assert await _collect(content) == [f"data: {payload}", "data: Zoë"]


@pytest.mark.asyncio
async def test_iter_lines_wraps_read_errors_without_leaking_token() -> None:
    content = _Chunks(b"event: put\n", error=aiohttp.ClientPayloadError("connection reset"))

    with pytest.raises(RtdbTransportError) as exc_info:
        await _collect(content)

    assert "secret" not in str(exc_info.value)


def test_http_response_ok_range() -> None:
    assert HttpResponse(status=200, text="").ok
    assert HttpResponse(status=204, text="").ok
    assert not HttpResponse(status=301, text="").ok
    assert not HttpResponse(status=401, text="").ok


@pytest.mark.asyncio
async def test_iter_lines_rejects_invalid_utf8() -> None:
    content = _Chunks(b"event: put\n", b"data: \xff\xfe\n")

    with pytest.raises(RtdbTransportError, match="invalid UTF-8") as exc_info:
        await _collect(content)

    assert isinstance(exc_info.value.__cause__, UnicodeDecodeError)
    assert "secret" not in str(exc_info.value)


@pytest.mark.asyncio
async def test_request_with_invalid_utf8_body_raises_transport_error(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(status=200, body=b'{"name":"\xff"}'))

    with pytest.raises(RtdbTransportError, match="invalid UTF-8") as exc_info:
        await _transport(config, session).request("GET", STREAM_URL)

    assert exc_info.value.status_code == 200


@pytest.mark.asyncio
async def test_request_returns_status_and_text(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(status=200, body='{"name":"Zoë"}'.encode()))

    response = await _transport(config, session).request("PUT", STREAM_URL, body='{"name":"Zoë"}')

    assert response == HttpResponse(status=200, text='{"name":"Zoë"}')
    method, _url, kwargs = session.calls[0]
    assert method == "PUT"
    assert kwargs["data"] == '{"name":"Zoë"}'.encode()
    assert kwargs["headers"]["user-agent"] == config.user_agent


@pytest.mark.asyncio
async def test_request_wraps_connection_errors(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(), error=aiohttp.ClientConnectionError("refused"))

    with pytest.raises(RtdbTransportError, match="refused"):
        await _transport(config, session).request("GET", STREAM_URL)


@pytest.mark.asyncio
async def test_stream_with_invalid_utf8_raises_stream_error(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(status=200, chunks=(b"event: put\n", b"data: \xff\n")))
    client = RtdbClient(config, transport=_transport(config, session))

    with pytest.raises(RtdbStreamError) as exc_info:
        await client.stream_changes("a", lambda *_: None)

    assert isinstance(exc_info.value.__cause__, RtdbTransportError)
    assert session.response.closed


@pytest.mark.asyncio
async def test_open_stream_passes_consumer_errors_through(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(status=200, chunks=(b"event: keep-alive\n",)))

    with pytest.raises(TimeoutError, match="handler too slow"):
        async with _transport(config, session).open_stream(STREAM_URL) as lines:
            assert await anext(lines) == "event: keep-alive"
            raise TimeoutError("handler too slow")

    assert session.response.closed


@pytest.mark.asyncio
async def test_open_stream_rejects_non_success_status(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(status=401, body=b'{"error":"Permission denied"}'))

    with pytest.raises(RtdbTransportError, match="HTTP 401") as exc_info:
        async with _transport(config, session).open_stream(STREAM_URL):
            pytest.fail("stream body should not be reached")

    assert exc_info.value.status_code == 401
    assert session.response.closed
    _method, _url, kwargs = session.calls[0]
    assert kwargs["headers"]["accept"] == "text/event-stream"


@pytest.mark.asyncio
async def test_open_stream_wraps_connection_errors(config: RtdbConfig) -> None:
    session = _FakeSession(_FakeResponse(), error=aiohttp.ClientConnectionError("reset"))

    with pytest.raises(RtdbTransportError, match="Stream open"):
        async with _transport(config, session).open_stream(STREAM_URL):
            pytest.fail("stream body should not be reached")
