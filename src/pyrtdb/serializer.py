"""Pluggable value serialization for endpoints.

The default :class:`PydanticSerializer` accepts any type pydantic can build a
``TypeAdapter`` for: models, dataclasses, ``TypedDict``, and builtin
containers of those.
"""

from __future__ import annotations

import dataclasses
import typing
from collections.abc import Collection
from typing import Any, Generic, Protocol, TypeVar

from pydantic import TypeAdapter

T = TypeVar("T")


@dataclasses.dataclass(frozen=True)
class SerializerOptions:
    """Options passed to every serializer call.

    Parameters
    ----------
    by_alias : bool
        Use field aliases as JSON keys when dumping.
    exclude_none : bool
        Drop fields whose value is ``None`` when dumping.
    exclude_defaults : bool
        Drop fields still at their default when dumping.  Useful with
        ``patch`` so only changed children are sent.
    strict : bool
        Validate in strict mode (no type coercion) when loading.
    """

    by_alias: bool = True
    exclude_none: bool = False
    exclude_defaults: bool = False
    strict: bool = False


class Serializer(Protocol[T]):
    """Structural interface for converting values to and from JSON text."""

    def serialize(self, value: T, options: SerializerOptions) -> str:
        ...

    def deserialize(self, text: str, options: SerializerOptions) -> T:
        ...


class PydanticSerializer(Generic[T]):
    """Serializer backed by a pydantic :class:`~pydantic.TypeAdapter`."""

    def __init__(self, value_type: Any) -> None:
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)

    def serialize(self, value: T, options: SerializerOptions) -> str:
        return self._adapter.dump_json(
            value,
            by_alias=options.by_alias,
            exclude_none=options.exclude_none,
            exclude_defaults=options.exclude_defaults,
        ).decode("utf-8")

    def deserialize(self, text: str, options: SerializerOptions) -> T:
        return self._adapter.validate_json(text, strict=options.strict)


def default_path(value_type: Any) -> str:
    """Derive a conventional endpoint path from *value_type*.

    ``Player`` -> ``"player"``, ``list[Player]`` -> ``"players"``.
    """
    origin = typing.get_origin(value_type)
    if origin is not None:
        args = typing.get_args(value_type)
        if isinstance(origin, type) and issubclass(origin, Collection) and not issubclass(origin, (str, bytes)):
            element = args[0] if args else Any
            if issubclass(origin, dict) and len(args) == 2:
                element = args[1]
            return f"{_type_name(element)}s"
        return _type_name(origin)
    return _type_name(value_type)


def _type_name(value_type: Any) -> str:
    name = getattr(value_type, "__name__", None)
    if not isinstance(name, str) or not name:
        raise ValueError(f"Cannot derive an endpoint path from {value_type!r}; pass path= explicitly")
    return name.lower()
