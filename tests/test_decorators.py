"""
Unit tests for the @llsdclass record mapping decorators.

These tests validate that decorated classes convert to and from LLSD maps
by type hint, honour the field and class options, and report failures
with the field path.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID

import pytest

from llsd_serializer import (
    LLSD, URI, to_llsd, to_int, format_binary, parse_binary, format_notation,
    llsdclass, llsdfield, is_llsdclass, get_llsdclass_by_name, _LLSDCLASS_REGISTRY,
    MissingFieldError, TypeMismatchError, UnknownFieldError, DuplicateKeyError,
    RangeError, ErrorKind,
)


# ============================================================================
# Decorator Basic Tests
# ============================================================================

def test_llsdclass_sets_attributes():
    """@llsdclass marks the class and adds the conversion methods."""
    @llsdclass
    class Marker:
        value: int = 0

    assert Marker.__is_llsd_class__ is True
    assert Marker.__llsd_name__ == "Marker"
    assert callable(Marker.to_llsd)
    assert callable(Marker.from_llsd)
    assert is_llsdclass(Marker)
    assert is_llsdclass(Marker())
    assert not is_llsdclass(object())


def test_llsdclass_makes_a_dataclass():
    """Plain classes get a dataclass __init__."""
    @llsdclass()
    class Point:
        x: int
        y: int = 0

    point = Point(3)

    assert (point.x, point.y) == (3, 0)


def test_llsdclass_keeps_existing_dataclass():
    """A class that is already a dataclass keeps its options."""
    @llsdclass
    @dataclass(frozen=True)
    class Frozen:
        x: int

    with pytest.raises(AttributeError):
        Frozen(1).x = 2
    assert Frozen.from_llsd(LLSD.map({"x": 1})) == Frozen(1)


def test_llsdclass_registers_in_registry():
    """Classes are registered by name."""
    @llsdclass(name="RegistryTestRecord")
    class Record:
        pass

    assert "RegistryTestRecord" in _LLSDCLASS_REGISTRY
    assert get_llsdclass_by_name("RegistryTestRecord") is Record
    assert get_llsdclass_by_name("NoSuchRecord") is None


def test_unknown_rename_policy_raises():
    """rename_all must name a known policy."""
    with pytest.raises(ValueError):
        llsdclass(rename_all="Title Case")


# ============================================================================
# Conversion Tests
# ============================================================================

@llsdclass
class Vector:
    x: float
    y: float
    z: float


@llsdclass(rename_all="camelCase")
class AgentInfo:
    agent_id: UUID
    display_name: str
    position: Vector
    born: datetime
    home_uri: URI
    groups: list[str] = field(default_factory=list)
    flags: dict[str, bool] = field(default_factory=dict)
    texture: Optional[bytes] = None
    nickname: Optional[str] = None


def _agent():
    return AgentInfo(
        agent_id=UUID(int=42),
        display_name="Ruth",
        position=Vector(1.0, 2.0, 3.5),
        born=datetime(2003, 6, 23, tzinfo=timezone.utc),
        home_uri=URI("secondlife://Ahern/128/128/0"),
        groups=["builders", "scripters"],
        flags={"god": False},
        texture=b"\x89PNG",
    )


def test_to_llsd_uses_renamed_keys():
    """rename_all maps field names to map keys."""
    value = _agent().to_llsd()

    assert list(value) == [
        "agentId", "displayName", "position", "born", "homeUri",
        "groups", "flags", "texture", "nickname",
    ]
    assert value["agentId"] == LLSD.uuid(UUID(int=42))
    assert value["position"] == LLSD.map({"x": 1.0, "y": 2.0, "z": 3.5})
    assert value["homeUri"].is_uri()
    assert value["nickname"].is_undefined()


def test_record_roundtrip_through_binary():
    """A record survives encode → decode → from_llsd."""
    agent = _agent()

    restored = AgentInfo.from_llsd(parse_binary(format_binary(agent)))

    assert restored == agent


def test_records_are_accepted_by_to_llsd():
    """to_llsd converts records, including inside containers."""
    value = to_llsd([Vector(0.0, 0.0, 1.0)])

    assert value[0]["z"] == LLSD.real(1.0)


def test_optional_field_accepts_undefined_and_absence():
    """Optional fields decode Undefined or a missing key as None."""
    @llsdclass
    class Maybe:
        count: Optional[int]
        label: "str | None" = "x"

    assert Maybe.from_llsd(LLSD.map({})) == Maybe(None, "x")
    assert Maybe.from_llsd(LLSD.map({"count": None, "label": None})) == Maybe(None, None)
    assert Maybe.from_llsd(LLSD.map({"count": 3})) == Maybe(3, "x")


def test_tuple_and_annotated_hints():
    """Fixed tuples, variadic tuples and Annotated hints convert element-wise."""
    @llsdclass
    class Shapes:
        pair: tuple[int, str]
        many: tuple[float, ...]
        tagged: Annotated[int, "meters"]
        raw: LLSD

    value = to_llsd({"pair": [1, "a"], "many": [1.5, 2], "tagged": 7, "raw": {"k": 1}})

    shapes = Shapes.from_llsd(value)

    assert shapes.pair == (1, "a")
    assert shapes.many == (1.5, 2.0)
    assert shapes.tagged == 7
    assert shapes.raw == LLSD.map({"k": 1})


def test_bare_container_hints_use_plain_data():
    """Unparameterized list and dict hints hold plain Python data."""
    @llsdclass
    class Loose:
        items: list
        table: dict

    loose = Loose.from_llsd(to_llsd({"items": [1, "a", None], "table": {"k": [True]}}))

    assert loose.items == [1, "a", None]
    assert loose.table == {"k": [True]}


# ============================================================================
# Field Option Tests
# ============================================================================

def test_rename_field():
    """rename overrides the key for one field."""
    @llsdclass(rename_all="SCREAMING_SNAKE_CASE")
    class Region:
        handle: int = llsdfield(rename="RegionHandle")
        sim_name: str = ""

    value = Region(5, "Ahern").to_llsd()

    assert list(value) == ["RegionHandle", "SIM_NAME"]
    assert Region.from_llsd(value) == Region(5, "Ahern")


@pytest.mark.parametrize("policy,expected", [
    ("snake_case", "display_name_text"),
    ("kebab-case", "display-name-text"),
    ("camelCase", "displayNameText"),
    ("PascalCase", "DisplayNameText"),
    ("SCREAMING_SNAKE_CASE", "DISPLAY_NAME_TEXT"),
    ("lowercase", "displaynametext"),
    ("UPPERCASE", "DISPLAYNAMETEXT"),
])
def test_rename_all_policies(policy, expected):
    """Every case policy rewrites snake_case field names."""
    @llsdclass(rename_all=policy)
    class Named:
        display_name_text: str = ""

    assert list(Named().to_llsd()) == [expected]


def test_skip_field():
    """Skipped fields are neither written nor read."""
    @llsdclass
    class Cached:
        key: str
        cache: dict = llsdfield(skip=True, default_factory=dict)

    value = Cached("k", {"hot": 1}).to_llsd()

    assert list(value) == ["key"]
    assert Cached.from_llsd(LLSD.map({"key": "k", "cache": {"x": 1}})).cache == {}


def test_one_way_skips():
    """skip_serializing and skip_deserializing act in one direction."""
    @llsdclass
    class OneWay:
        secret: str = llsdfield(default="", skip_serializing=True)
        computed: int = llsdfield(default=0, skip_deserializing=True)

    value = OneWay("pw", 9).to_llsd()

    assert list(value) == ["computed"]
    restored = OneWay.from_llsd(LLSD.map({"secret": "s", "computed": 5}))
    assert restored == OneWay("s", 0)


def test_skip_without_default_is_rejected():
    """A field skipped on input must have a default."""
    with pytest.raises(TypeError):
        @llsdclass
        class Broken:
            value: int = llsdfield(skip_deserializing=True)


def test_flatten_merges_nested_keys():
    """flatten merges the nested record's keys into the parent map."""
    @llsdclass
    class Meta:
        created: int = 0
        owner: str = ""

    @llsdclass(deny_unknown_fields=True)
    class Item:
        name: str
        meta: Meta = llsdfield(flatten=True, default_factory=Meta)

    item = Item("box", Meta(10, "ruth"))

    value = item.to_llsd()

    assert value == LLSD.map({"name": "box", "created": 10, "owner": "ruth"})
    assert Item.from_llsd(value) == item


def test_flatten_key_collision_is_duplicate():
    """Flattened keys may not collide with the parent's keys."""
    @llsdclass
    class Inner:
        name: str = ""

    @llsdclass
    class Outer:
        name: str
        inner: Inner = llsdfield(flatten=True, default_factory=Inner)

    with pytest.raises(DuplicateKeyError):
        Outer("a", Inner("b")).to_llsd()


def test_flatten_requires_a_record_type():
    """Only @llsdclass fields can be flattened."""
    @llsdclass
    class BadFlatten:
        data: dict = llsdfield(flatten=True, default_factory=dict)

    with pytest.raises(TypeError):
        BadFlatten().to_llsd()


class Celsius:
    """Custom converter storing a temperature as an integer of tenths."""

    @staticmethod
    def serialize(value):
        return LLSD.integer(round(value * 10))

    @staticmethod
    def deserialize(value):
        return to_int(value) / 10


def test_with_converter():
    """with_ replaces the type-hint conversion for a field."""
    @llsdclass
    class Reading:
        temperature: float = llsdfield(with_=Celsius)

    value = Reading(21.5).to_llsd()

    assert value == LLSD.map({"temperature": 215})
    assert Reading.from_llsd(value) == Reading(21.5)


# ============================================================================
# Error Tests
# ============================================================================

def test_missing_required_field():
    """A required field absent from the map raises MissingFieldError."""
    with pytest.raises(MissingFieldError) as excinfo:
        Vector.from_llsd(LLSD.map({"x": 1.0, "y": 2.0}))

    assert excinfo.value.kind is ErrorKind.MISSING_FIELD
    assert excinfo.value.path == ("field 'z'",)


def test_unknown_field_with_deny_unknown_fields():
    """deny_unknown_fields rejects undeclared keys."""
    @llsdclass(deny_unknown_fields=True)
    class Strict:
        a: int = 0

    with pytest.raises(UnknownFieldError) as excinfo:
        Strict.from_llsd(LLSD.map({"a": 1, "b": 2}))

    assert excinfo.value.path == ("key 'b'",)


def test_unknown_fields_are_ignored_by_default():
    """Extra keys are ignored without deny_unknown_fields."""
    assert Vector.from_llsd(LLSD.map({"x": 1, "y": 2, "z": 3, "w": 4})) == Vector(1, 2, 3)


def test_conversion_error_carries_field_path():
    """Nested failures report the full field path."""
    value = _agent().to_llsd().with_item("groups", ["ok", {"not": "a string"}])

    with pytest.raises(TypeMismatchError) as excinfo:
        AgentInfo.from_llsd(value)

    assert excinfo.value.path == ("field 'groups'", "[1]")


def test_nested_record_error_path():
    """Errors inside nested records are prefixed with every field name."""
    value = _agent().to_llsd().with_item("position", {"x": 1, "y": 2, "z": "high"})

    with pytest.raises(TypeMismatchError) as excinfo:
        AgentInfo.from_llsd(value)

    assert excinfo.value.path == ("field 'position'", "field 'z'")


def test_from_llsd_requires_a_map():
    """Records decode from maps only."""
    with pytest.raises(TypeMismatchError):
        Vector.from_llsd(LLSD.array([1, 2, 3]))


def test_out_of_range_field_on_output():
    """Serializing an integer outside int32 reports the field."""
    @llsdclass
    class Big:
        n: int

    with pytest.raises(RangeError) as excinfo:
        Big(2 ** 40).to_llsd()

    assert excinfo.value.path == ("field 'n'",)


def test_record_notation_output():
    """Records print through every format function."""
    assert format_notation(Vector(1.0, 0.0, -1.0)) == b"{'x':r1.0,'y':r0.0,'z':r-1.0}"
