from __future__ import annotations

import pytest
from pydantic import BaseModel, Field, ValidationError

from pyrtdb.serializer import PydanticSerializer, SerializerOptions, default_path


class Player(BaseModel):
    display_name: str = Field(default="", alias="displayName")
    level: int = 1
    clan: str | None = None


def test_default_path_uses_type_name() -> None:
    assert default_path(Player) == "player"
    assert default_path(int) == "int"


def test_default_path_pluralizes_collections() -> None:
    assert default_path(list[Player]) == "players"
    assert default_path(set[int]) == "ints"
    assert default_path(dict[str, Player]) == "players"


def test_default_path_requires_a_name() -> None:
    with pytest.raises(ValueError, match="path="):
        default_path("Player")


def test_serialize_respects_options() -> None:
    serializer: PydanticSerializer[Player] = PydanticSerializer(Player)
    player = Player(displayName="ada", level=3)

    assert serializer.serialize(player, SerializerOptions()) == '{"displayName":"ada","level":3,"clan":null}'
    assert serializer.serialize(player, SerializerOptions(exclude_none=True)) == '{"displayName":"ada","level":3}'
    assert (
        serializer.serialize(player, SerializerOptions(by_alias=False, exclude_defaults=True))
        == '{"display_name":"ada","level":3}'
    )


def test_deserialize_strict_mode_rejects_coercion() -> None:
    serializer: PydanticSerializer[Player] = PydanticSerializer(Player)

    assert serializer.deserialize('{"displayName":"ada","level":"4"}', SerializerOptions()).level == 4
    with pytest.raises(ValidationError):
        serializer.deserialize('{"displayName":"ada","level":"4"}', SerializerOptions(strict=True))


def test_builtin_containers_round_trip() -> None:
    serializer: PydanticSerializer[dict[str, int]] = PydanticSerializer(dict[str, int])

    assert serializer.serialize({"a": 1}, SerializerOptions()) == '{"a":1}'
    assert serializer.deserialize('{"b": 2}', SerializerOptions()) == {"b": 2}
