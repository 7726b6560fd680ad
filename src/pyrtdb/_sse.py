"""Server-sent event decoding for the store's streaming protocol.

The stream is a sequence of line pairs::

    event: put
    data: {"path": "/", "data": {"a": 1}}

``put``/``patch`` carry a JSON object with the changed ``path`` (relative to
the streamed location) and its new ``data``.  ``keep-alive`` carries nothing,
``cancel`` reports that read access was revoked and ``auth_revoked`` reports
that the token in the request expired.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from pyrtdb._constants import (
    ROOT_PATH,
    SSE_AUTH_REVOKED,
    SSE_CANCEL,
    SSE_DATA_PREFIX,
    SSE_EVENT_PREFIX,
    SSE_KEEP_ALIVE,
    SSE_PATCH,
    SSE_PUT,
)
from pyrtdb.exceptions import RtdbAuthRevokedError, RtdbStreamError
from pyrtdb.models.stream import EventType, StreamedSnapshot

_logger = logging.getLogger(__name__)

_EVENT_KINDS: dict[str, EventType] = {
    SSE_PUT: EventType.PUT,
    SSE_PATCH: EventType.PATCH,
    SSE_KEEP_ALIVE: EventType.NONE,
    SSE_CANCEL: EventType.CANCEL,
}


class _EventEnvelope(BaseModel):
    """Minimal Pydantic envelope for ``put``/``patch`` payloads."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    path: str = ROOT_PATH
    data: Any = None


def validate_message(text: str | None) -> str | None:
    """Return trimmed *text*, or ``None`` for blank text and the literal ``null``."""
    if text is None:
        return None
    stripped = text.strip()
    if not stripped or stripped == "null":
        return None
    return stripped


def parse_event_data(text: str, *, path: str = "") -> StreamedSnapshot:
    """Convert a ``data:`` payload into a :class:`StreamedSnapshot`.

    The ``data`` member is re-encoded as compact JSON with newlines
    stripped, or ``None`` when it is JSON ``null``.
    """
    try:
        envelope = _EventEnvelope.model_validate_json(text)
    except ValidationError as exc:
        raise RtdbStreamError(f"Malformed stream payload for {path}: {text[:128]}", path=path) from exc

    data: str | None = None
    if envelope.data is not None:
        data = json.dumps(envelope.data, separators=(",", ":"), ensure_ascii=False).replace("\n", "")
    return StreamedSnapshot(path=envelope.path, data=data)


class SseDecoder:
    """Line-by-line decoder that tracks the pending event kind.

    Feed every line to :meth:`feed`; it returns ``(kind, snapshot)`` when the
    line completes an event and ``None`` otherwise.
    """

    def __init__(self, path: str = "") -> None:
        self._path = path
        self._pending = EventType.NONE

    @property
    def pending(self) -> EventType:
        return self._pending

    def feed(self, line: str) -> tuple[EventType, StreamedSnapshot | None] | None:
        if line.startswith(SSE_EVENT_PREFIX):
            return self._on_event_line(line[len(SSE_EVENT_PREFIX) :].strip())
        if line.startswith(SSE_DATA_PREFIX):
            return self._on_data_line(line[len(SSE_DATA_PREFIX) :])
        return None

    def _on_event_line(self, name: str) -> tuple[EventType, StreamedSnapshot | None] | None:
        if name == SSE_AUTH_REVOKED:
            raise RtdbAuthRevokedError(
                f"Credentials for stream {self._path} have expired",
                path=self._path,
            )
        kind = _EVENT_KINDS.get(name)
        if kind is None:
            _logger.debug("Ignoring unknown stream event %r on %s", name, self._path)
            kind = EventType.NONE
        if kind is EventType.CANCEL:
            self._pending = EventType.NONE
            return EventType.CANCEL, None
        self._pending = kind
        return None

    def _on_data_line(self, payload: str) -> tuple[EventType, StreamedSnapshot | None] | None:
        kind = self._pending
        text = validate_message(payload)
        if kind is EventType.NONE or text is None:
            return None
        self._pending = EventType.NONE
        return kind, parse_event_data(text, path=self._path)
