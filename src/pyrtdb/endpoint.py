"""Typed proxy that keeps a local value synchronized with one store path.

A :class:`DatabaseEndpoint` remembers the last JSON text it observed or sent
(``raw``) together with the decoded value.  Every transition of ``raw``
re-derives the value and notifies subscribers exactly once; seeing the same
text again is not a transition.

There is no lock around ``raw``/``value``.  Manual calls and the background
stream may interleave and the last write observed wins.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import typing
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from pyrtdb._cancel import is_cancelled, run_cancellable
from pyrtdb.client import RtdbClient
from pyrtdb.exceptions import RtdbCancelledError, RtdbEndpointError, RtdbStreamError
from pyrtdb.models.stream import EventType, StreamedSnapshot
from pyrtdb.serializer import PydanticSerializer, Serializer, SerializerOptions, default_path

_logger = logging.getLogger(__name__)

T = TypeVar("T")

ChangeCallback = Callable[[Any], None]
"""Subscriber invoked with the endpoint's new value."""

Dispatcher = Callable[[Callable[[], None]], object]
"""Runs a callback on the foreground context, e.g. ``loop.call_soon_threadsafe``."""


_ZERO_CONSTRUCTIBLE: tuple[type, ...] = (int, float, bool, str, list, dict)


def _zero_factory(value_type: Any) -> Callable[[], Any] | None:
    """Builtin types default to their zero form (``0``, ``""``, ``[]``...)."""
    origin = typing.get_origin(value_type) or value_type
    if origin in _ZERO_CONSTRUCTIBLE:
        return origin
    return None


def _is_abstract(value_type: Any) -> bool:
    if not isinstance(value_type, type):
        return False
    return inspect.isabstract(value_type) or bool(getattr(value_type, "_is_protocol", False))


class DatabaseEndpoint(Generic[T]):
    """Synchronized proxy for the value stored at one path.

    Parameters
    ----------
    client : RtdbClient
        Entered client used for every request.  May be shared.
    value_type : type
        Shape of the stored value.  Must be concrete; abstract classes and
        protocols are rejected with :class:`TypeError`.
    path : str or None
        Store path relative to the database root.  Defaults to
        :func:`~pyrtdb.serializer.default_path` of *value_type*.
    stream : bool
        Start a background subscription that keeps ``value`` live.  Needs a
        running event loop; call :meth:`aclose` (or use ``async with``) to
        stop it.
    serializer : Serializer or None
        Converts values to and from JSON text.  Defaults to
        :class:`~pyrtdb.serializer.PydanticSerializer`.
    options : SerializerOptions or None
        Options handed to every serializer call.
    dispatcher : callable or None
        Marshals change notifications to a foreground context.  Without one,
        subscribers run on whichever context detected the change.
    default_factory : callable or None
        Builds the value used when the path holds no data.  Without one,
        builtin scalars and containers (``int``, ``str``, ``list[...]``...)
        default to their zero form and every other type to ``None``.
    full_refetch : bool
        On ``put``/``patch`` stream events, re-read the whole snapshot
        (default).  When ``False`` only events covering the root path are
        adopted directly and deeper partial updates are ignored.
    initial_value : object or None
        Value written with :meth:`patch` when the endpoint is entered with
        ``async with``.
    """

    def __init__(
        self,
        client: RtdbClient,
        value_type: Any,
        path: str | None = None,
        *,
        stream: bool = True,
        serializer: Serializer[T] | None = None,
        options: SerializerOptions | None = None,
        dispatcher: Dispatcher | None = None,
        default_factory: Callable[[], T] | None = None,
        full_refetch: bool = True,
        initial_value: T | None = None,
    ) -> None:
        if _is_abstract(value_type):
            raise TypeError(
                f"{type(self).__name__} cannot use an abstract value type {getattr(value_type, '__name__', value_type)!r}"
            )

        self._client = client
        self._value_type = value_type
        self._path = path if path is not None else default_path(value_type)
        self._serializer: Serializer[T] = serializer if serializer is not None else PydanticSerializer(value_type)
        self._options = options if options is not None else SerializerOptions()
        self._dispatcher = dispatcher
        self._default_factory = default_factory if default_factory is not None else _zero_factory(value_type)
        self._full_refetch = full_refetch
        self._initial_value = initial_value

        self._raw: str | None = None
        self._value: T | None = self._default()
        self._subscribers: list[ChangeCallback] = []

        self._closing = asyncio.Event()
        self._closed = False
        self._stream_task: asyncio.Task[None] | None = None
        self._stream_error: RtdbStreamError | None = None

        if stream:
            self._stream_task = asyncio.get_running_loop().create_task(
                self._run_stream(),
                name=f"pyrtdb-stream:{self._path}",
            )

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> DatabaseEndpoint[T]:
        initial, self._initial_value = self._initial_value, None
        if initial is not None:
            try:
                await self.patch(initial)
            except BaseException:
                await self.aclose()
                raise
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop the background subscription.  Safe to call more than once.

        Once this returns no subscriber is called again and further manual
        operations are no-ops.
        """
        if self._closed:
            return
        self._closed = True
        self._closing.set()

        task = self._stream_task
        self._stream_task = None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def path(self) -> str:
        return self._path

    @property
    def value(self) -> T | None:
        """Last known value.  Never touches the network."""
        return self._value

    @property
    def raw(self) -> str | None:
        """Last JSON text observed or sent, ``None`` when there is no data."""
        return self._raw

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_streaming(self) -> bool:
        return self._stream_task is not None and not self._stream_task.done()

    @property
    def stream_error(self) -> RtdbStreamError | None:
        """Error the background subscription stopped with, if any."""
        return self._stream_error

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Call *callback* with the new value on every change.

        Returns a function that removes the subscription.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: ChangeCallback) -> None:
        with contextlib.suppress(ValueError):
            self._subscribers.remove(callback)

    def _notify(self, value: T | None) -> None:
        if self._closed or not self._subscribers:
            return
        callbacks = list(self._subscribers)

        def _deliver() -> None:
            for callback in callbacks:
                try:
                    callback(value)
                except Exception:
                    _logger.debug("Change callback failed for %s", self._path, exc_info=True)

        if self._dispatcher is None:
            _deliver()
        else:
            self._dispatcher(_deliver)

    # ------------------------------------------------------------------
    # Local state
    # ------------------------------------------------------------------

    def _default(self) -> T | None:
        return self._default_factory() if self._default_factory is not None else None

    def _decode(self, raw: str | None) -> T | None:
        if raw is None or not raw.strip():
            return self._default()
        return self._serializer.deserialize(raw, self._options)

    def _adopt(self, raw: str | None) -> bool:
        """Make *raw* the current form; returns ``False`` when nothing changed."""
        if raw is not None and not raw.strip():
            raw = None
        if raw == self._raw:
            return False
        value = self._decode(raw)
        self._raw = raw
        self._value = value
        self._notify(value)
        return True

    def _restore(self, written: str | None, previous: tuple[str | None, T | None]) -> None:
        """Undo an optimistic write unless something newer replaced it."""
        if self._raw != written:
            return
        raw, value = previous
        self._raw = raw
        self._value = value
        if raw != written:
            self._notify(value)

    # ------------------------------------------------------------------
    # Manual synchronization
    # ------------------------------------------------------------------

    async def get(self, *, cancel: asyncio.Event | None = None) -> T | None:
        """Fetch the current value from the store.

        When the fetched text differs from ``raw`` it is adopted and
        subscribers are notified.  Cancellation returns the default value
        and leaves the endpoint untouched.
        """
        try:
            snapshot = await run_cancellable(self._client.get_snapshot(self._path), cancel, self._closing)
        except RtdbCancelledError:
            _logger.debug("Get for %s cancelled", self._path)
            return self._default()
        except Exception as exc:
            raise RtdbEndpointError(f"Failed to get snapshot for {self._path}: {exc}", path=self._path) from exc

        try:
            self._adopt(snapshot)
        except Exception as exc:
            raise RtdbEndpointError(
                f"Failed to decode snapshot for {self._path}: {exc}",
                path=self._path,
            ) from exc
        return self._value

    async def put(self, new_value: T, *, cancel: asyncio.Event | None = None) -> None:
        """Replace the stored value with *new_value*.

        The local value changes (and subscribers are notified) before the
        request is sent; a second notification follows once the store
        confirms.
        """
        await self._write("put", self._client.put_snapshot, new_value, cancel)

    async def patch(self, new_value: T, *, cancel: asyncio.Event | None = None) -> None:
        """Merge the children present in *new_value* into the stored value.

        Children omitted from the serialized *new_value* survive remotely.
        Local state is updated the same way as :meth:`put`.
        """
        await self._write("patch", self._client.patch_snapshot, new_value, cancel)

    async def set_value(self, new_value: T, *, cancel: asyncio.Event | None = None) -> None:
        """Write *new_value* through to the store; same as :meth:`patch`."""
        await self.patch(new_value, cancel=cancel)

    async def _write(
        self,
        verb: str,
        send: Callable[[str, str], Awaitable[str | None]],
        new_value: T,
        cancel: asyncio.Event | None,
    ) -> None:
        if is_cancelled(cancel, self._closing):
            _logger.debug("%s for %s cancelled before start", verb, self._path)
            return
        try:
            raw = self._serializer.serialize(new_value, self._options)
        except Exception as exc:
            raise RtdbEndpointError(f"Failed to serialize value for {self._path}: {exc}", path=self._path) from exc

        previous = (self._raw, self._value)
        self._raw = raw
        self._value = new_value
        self._notify(new_value)

        try:
            await run_cancellable(send(self._path, raw), cancel, self._closing)
        except RtdbCancelledError:
            _logger.debug("%s for %s cancelled", verb, self._path)
            self._restore(raw, previous)
            return
        except Exception as exc:
            raise RtdbEndpointError(f"Failed to {verb} snapshot for {self._path}: {exc}", path=self._path) from exc

        self._notify(self._value)

    async def delete(self, *, cancel: asyncio.Event | None = None) -> None:
        """Remove the stored value.  Local state is cleared first."""
        if is_cancelled(cancel, self._closing):
            _logger.debug("delete for %s cancelled before start", self._path)
            return

        previous = (self._raw, self._value)
        self._adopt(None)

        try:
            await run_cancellable(self._client.delete_snapshot(self._path), cancel, self._closing)
        except RtdbCancelledError:
            _logger.debug("delete for %s cancelled", self._path)
            self._restore(None, previous)
        except Exception as exc:
            raise RtdbEndpointError(f"Failed to delete snapshot for {self._path}: {exc}", path=self._path) from exc

    # ------------------------------------------------------------------
    # Background subscription
    # ------------------------------------------------------------------

    async def _run_stream(self) -> None:
        try:
            await self._client.stream_changes(self._path, self._on_stream_event, cancel=self._closing)
        except RtdbCancelledError:
            _logger.debug("Stream for %s cancelled", self._path)
        except Exception as exc:
            _logger.warning("Stream for %s stopped: %s", self._path, exc)
            error = RtdbStreamError(f"Failed to stream changes for {self._path}", path=self._path)
            error.__cause__ = exc
            self._stream_error = error

    async def _on_stream_event(self, kind: EventType, snapshot: StreamedSnapshot | None) -> None:
        if kind is EventType.NONE:
            return
        if kind is EventType.CANCEL:
            self._adopt(None)
            return
        if self._full_refetch:
            await self.get()
            return
        if snapshot is not None and snapshot.is_root:
            self._adopt(snapshot.data)
        else:
            _logger.debug(
                "Ignoring %s of %s at partial path %s",
                kind,
                self._path,
                snapshot.path if snapshot is not None else None,
            )

    # ------------------------------------------------------------------
    # Equality
    # ------------------------------------------------------------------

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DatabaseEndpoint):
            return bool(self._value == other._value) and self._path == other._path
        return bool(self._value == other)

    def __ne__(self, other: object) -> bool:
        return not self == other

    def __hash__(self) -> int:
        try:
            value_hash = hash(self._value)
        except TypeError:
            value_hash = 0
        return hash((value_hash, self._path))

    def __str__(self) -> str:
        return f"{self._path}/{self._raw}"

    def __repr__(self) -> str:
        return f"DatabaseEndpoint(path={self._path!r}, raw={self._raw!r})"
