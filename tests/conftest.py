from __future__ import annotations

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qsl, urlsplit

import pytest

from pyrtdb._transport import HttpResponse
from pyrtdb.client import RtdbClient
from pyrtdb.config import RtdbConfig
from pyrtdb.exceptions import RtdbTransportError

DATABASE_URL = "https://example-db.test/"


def _parse(url: str) -> tuple[list[str], str | None]:
    parts = urlsplit(url)
    path = parts.path.strip("/").removesuffix(".json")
    token = dict(parse_qsl(parts.query)).get("auth")
    return [segment for segment in path.split("/") if segment], token


class FakeStream:
    """One open event stream; tests push raw lines into it."""

    def __init__(self, url: str, segments: list[str]) -> None:
        self.url = url
        self.segments = segments
        self.released = False
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    def send(self, *lines: str) -> None:
        for line in lines:
            self._queue.put_nowait(line)

    def send_event(self, kind: str, payload: Any = None) -> None:
        self.send(f"event: {kind}", f"data: {json.dumps(payload)}")

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def lines(self) -> AsyncIterator[str]:
        while True:
            line = await self._queue.get()
            if line is None:
                return
            yield line


@dataclass
class FakeDatabase:
    """In-memory JSON tree that implements the client's transport protocol.

    Writes are broadcast as ``put`` events to streams open at or above the
    written location when ``broadcast`` is true.
    """

    data: Any = None
    broadcast: bool = False
    calls: list[tuple[str, str]] = field(default_factory=list)
    tokens: list[str | None] = field(default_factory=list)
    failures: dict[str, HttpResponse] = field(default_factory=dict)
    stream_failure: HttpResponse | None = None
    gate: asyncio.Event | None = None
    abandoned: int = 0
    streams: list[FakeStream] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Tree helpers
    # ------------------------------------------------------------------

    def lookup(self, path: str) -> Any:
        return self._lookup([segment for segment in path.split("/") if segment])

    def _lookup(self, segments: list[str]) -> Any:
        node = self.data
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        return node

    def _store(self, segments: list[str], value: Any) -> None:
        if not segments:
            self.data = value
            return
        if not isinstance(self.data, dict):
            self.data = {}
        node = self.data
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = node[segment] = {}
            node = child
        if value is None:
            node.pop(segments[-1], None)
        else:
            node[segments[-1]] = value

    def _notify_streams(self, segments: list[str]) -> None:
        if not self.broadcast:
            return
        for stream in self.streams:
            depth = len(stream.segments)
            if stream.released or segments[:depth] != stream.segments:
                continue
            relative = "/" + "/".join(segments[depth:])
            stream.send_event("put", {"path": relative, "data": self._lookup(segments)})

    # ------------------------------------------------------------------
    # Transport protocol
    # ------------------------------------------------------------------

    async def request(self, method: str, url: str, *, body: str | None = None) -> HttpResponse:
        self.calls.append((method, url))
        segments, token = _parse(url)
        self.tokens.append(token)

        if self.gate is not None:
            try:
                await self.gate.wait()
            except asyncio.CancelledError:
                self.abandoned += 1
                raise

        failure = self.failures.get("/".join(segments))
        if failure is not None:
            return failure

        payload = json.loads(body) if body is not None else None
        if method == "GET":
            result = self._lookup(segments)
        elif method == "PUT":
            self._store(segments, payload)
            result = payload
        elif method == "PATCH":
            for key, value in payload.items():
                self._store([*segments, key], value)
            result = payload
        elif method == "POST":
            name = f"-Nkey{len(self.calls)}"
            segments = [*segments, name]
            self._store(segments, payload)
            result = {"name": name}
        elif method == "DELETE":
            self._store(segments, None)
            result = None
        else:
            return HttpResponse(status=405, text=json.dumps({"error": f"Method {method} not allowed"}))

        if method != "GET":
            self._notify_streams(segments)
        return HttpResponse(status=200, text=json.dumps(result))

    @contextlib.asynccontextmanager
    async def open_stream(self, url: str) -> AsyncIterator[AsyncIterator[str]]:
        self.calls.append(("STREAM", url))
        segments, token = _parse(url)
        self.tokens.append(token)
        if self.stream_failure is not None:
            raise RtdbTransportError(
                f"Stream open failed: HTTP {self.stream_failure.status}",
                status_code=self.stream_failure.status,
            )
        stream = FakeStream(url, segments)
        self.streams.append(stream)
        lines = stream.lines()
        try:
            yield lines
        finally:
            await lines.aclose()
            stream.released = True

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    async def wait_for(self, predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        async with asyncio.timeout(timeout):
            while not predicate():
                await asyncio.sleep(0.005)

    async def next_stream(self, index: int = 0) -> FakeStream:
        await self.wait_for(lambda: len(self.streams) > index)
        return self.streams[index]


class TokenSource:
    """Token provider that hands out a new token on every call."""

    def __init__(self) -> None:
        self.issued = 0

    def __call__(self) -> str:
        self.issued += 1
        return f"token-{self.issued}"


@pytest.fixture
def config() -> RtdbConfig:
    return RtdbConfig(database_url=DATABASE_URL.rstrip("/"))


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def tokens() -> TokenSource:
    return TokenSource()


@pytest.fixture
def client(config: RtdbConfig, fake_db: FakeDatabase, tokens: TokenSource) -> RtdbClient:
    return RtdbClient(config, token_provider=tokens, transport=fake_db)
