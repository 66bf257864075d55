"""
LLSD Value Model.

This module implements the single in-memory LLSD value type: a closed
tagged union of eleven variants. Every codec consumes and produces this
type, and nothing else.

Supported Variants:
    - UNDEFINED: absence of a value
    - BOOLEAN: ``bool``
    - INTEGER: ``int`` constrained to signed 32-bit
    - REAL: ``float`` (IEEE 754 binary64)
    - STRING: ``str``
    - UUID: ``uuid.UUID``
    - DATE: timezone-aware ``datetime`` in UTC
    - URI: ``URI`` (a ``str`` subclass, validated only syntactically)
    - BINARY: ``bytes``
    - ARRAY: ``tuple`` of ``LLSD``
    - MAP: insertion-ordered ``str -> LLSD`` mapping

Values are immutable. Equality is structural: arrays compare in order,
maps compare by key set and values, and a NaN real equals another NaN
real so that round trips can be asserted.

Examples:
    >>> value = (LLSD.map_builder()
    ...          .insert("a", 1)
    ...          .insert("b", [True, None])
    ...          .build())
    >>> value["b"][0].as_boolean()
    True
    >>> value.pointer("/b/1").is_undefined()
    True
"""

import math
import re
from uuid import UUID
from datetime import datetime, timedelta, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from .errors import (
    DuplicateKeyError, LLSDError, MalformedError, RangeError, TypeMismatchError,
)


# ============================================================================
# Constants
# ============================================================================

INT32_MIN = -2 ** 31
INT32_MAX = 2 ** 31 - 1

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
"""Default date, and the origin of the binary date encoding."""

NIL_UUID = UUID(int=0)


class Kind(Enum):
    """Variant discriminant. Values are the XML element names."""

    UNDEFINED = "undef"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    REAL = "real"
    STRING = "string"
    UUID = "uuid"
    DATE = "date"
    URI = "uri"
    BINARY = "binary"
    ARRAY = "array"
    MAP = "map"


# ============================================================================
# Canonical Text Forms
# ============================================================================

_DATE_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})"
    r"(?:[Tt ](\d{2}):(\d{2})(?::(\d{2})(?:\.(\d+))?)?)?"
    r"(Z|z|[+-]\d{2}(?::?\d{2})?)?"
)


def format_date(value: datetime) -> str:
    """Format a UTC datetime as ISO-8601 with a ``Z`` suffix."""
    text = (f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
            f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}")
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    return text + "Z"


def parse_date(text: str) -> datetime:
    """
    Parse ISO-8601 text into an aware UTC datetime.

    Accepts an optional time part, fractional seconds (truncated to
    microseconds) and a ``Z`` or numeric offset suffix. Text without a
    zone designator is taken as UTC.

    Raises:
        ValueError: If the text is not an ISO-8601 timestamp.
    """
    match = _DATE_RE.fullmatch(text.strip())
    if match is None:
        raise ValueError(f"Invalid ISO-8601 date: {text!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micros = int((fraction or "0")[:6].ljust(6, "0"))
    tz = timezone.utc
    if zone and zone not in ("Z", "z"):
        sign = -1 if zone[0] == "-" else 1
        digits = zone[1:].replace(":", "")
        offset = timedelta(hours=int(digits[:2]), minutes=int(digits[2:] or 0))
        tz = timezone(sign * offset)
    result = datetime(int(year), int(month), int(day), int(hour or 0),
                      int(minute or 0), int(second or 0), micros, tzinfo=tz)
    return result.astimezone(timezone.utc)


def format_real(value: float) -> str:
    """Shortest round-trip text for a float, with nan/inf/-inf literals."""
    if math.isnan(value):
        return "nan"
    if math.isinf(value):
        return "inf" if value > 0 else "-inf"
    return repr(value)


def check_int32(value: int) -> int:
    """Return ``value`` or raise RangeError when it does not fit int32."""
    if not INT32_MIN <= value <= INT32_MAX:
        raise RangeError(f"Integer {value} out of signed 32-bit range")
    return value


# ============================================================================
# URI
# ============================================================================

_SCHEME_RE = re.compile(r"[A-Za-z][A-Za-z0-9+.\-]*:")


class URI(str):
    """
    Opaque resource-locator text.

    A URI is kept as given. ``error`` reports why basic syntactic validation
    failed (``None`` when it passed), and ``is_url`` tells whether the text
    is an absolute URL with a scheme.
    """

    __slots__ = ()

    @property
    def is_empty(self) -> bool:
        return not self

    @property
    def error(self) -> Optional[str]:
        if not self:
            return None
        if any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in self):
            return "contains whitespace or control characters"
        if not _SCHEME_RE.match(self):
            return "relative URI without scheme"
        return None

    @property
    def is_url(self) -> bool:
        return bool(self) and self.error is None

    def __repr__(self) -> str:
        return f"URI({str.__repr__(self)})"


# ============================================================================
# LLSD Value
# ============================================================================

Key = Union[str, int]


class LLSD:
    """
    Immutable LLSD value: a ``kind`` discriminant plus its payload.

    Build values with the class-method constructors (``LLSD.integer(5)``),
    with ``to_llsd`` from native Python data, or with ``LLSD.map_builder()``
    and ``LLSD.array_builder()``. ``LLSD()`` is Undefined.
    """

    __slots__ = ("_kind", "_payload")

    def __init__(self):
        object.__setattr__(self, "_kind", Kind.UNDEFINED)
        object.__setattr__(self, "_payload", None)

    @classmethod
    def _make(cls, kind: Kind, payload: Any) -> "LLSD":
        value = cls.__new__(cls)
        object.__setattr__(value, "_kind", kind)
        object.__setattr__(value, "_payload", payload)
        return value

    def __setattr__(self, name, value):
        raise AttributeError("LLSD values are immutable")

    def __delattr__(self, name):
        raise AttributeError("LLSD values are immutable")

    def __copy__(self) -> "LLSD":
        return self

    def __deepcopy__(self, memo) -> "LLSD":
        return self

    def __reduce__(self):
        return LLSD._make, (self._kind, self._payload)

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def undefined(cls) -> "LLSD":
        return UNDEFINED

    @classmethod
    def boolean(cls, value: bool) -> "LLSD":
        return TRUE if value else FALSE

    @classmethod
    def integer(cls, value: int) -> "LLSD":
        if isinstance(value, bool) or not hasattr(value, "__index__"):
            raise TypeMismatchError(f"Expected an integer, got {type(value).__name__}")
        return cls._make(Kind.INTEGER, check_int32(int(value)))

    @classmethod
    def real(cls, value: float) -> "LLSD":
        try:
            return cls._make(Kind.REAL, float(value))
        except (TypeError, ValueError) as exc:
            raise TypeMismatchError(f"Expected a real, got {type(value).__name__}") from exc

    @classmethod
    def string(cls, value: str) -> "LLSD":
        if not isinstance(value, str):
            raise TypeMismatchError(f"Expected a str, got {type(value).__name__}")
        return cls._make(Kind.STRING, str(value))

    @classmethod
    def uuid(cls, value: Union[UUID, str, bytes]) -> "LLSD":
        if isinstance(value, UUID):
            return cls._make(Kind.UUID, value)
        try:
            if isinstance(value, str):
                return cls._make(Kind.UUID, UUID(value))
            if isinstance(value, (bytes, bytearray)):
                return cls._make(Kind.UUID, UUID(bytes=bytes(value)))
        except ValueError as exc:
            raise MalformedError(f"Invalid UUID: {value!r}") from exc
        raise TypeMismatchError(f"Expected a UUID, got {type(value).__name__}")

    @classmethod
    def date(cls, value: datetime) -> "LLSD":
        if not isinstance(value, datetime):
            raise TypeMismatchError(f"Expected a datetime, got {type(value).__name__}")
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        else:
            value = value.astimezone(timezone.utc)
        return cls._make(Kind.DATE, value)

    @classmethod
    def uri(cls, value: str, strict: bool = False) -> "LLSD":
        if not isinstance(value, str):
            raise TypeMismatchError(f"Expected a str, got {type(value).__name__}")
        value = URI(value)
        if strict and value.error:
            raise MalformedError(f"Invalid URI {str(value)!r}: {value.error}")
        return cls._make(Kind.URI, value)

    @classmethod
    def binary(cls, value: Union[bytes, bytearray, memoryview]) -> "LLSD":
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeMismatchError(f"Expected bytes, got {type(value).__name__}")
        return cls._make(Kind.BINARY, bytes(value))

    @classmethod
    def array(cls, items: Iterable[Any] = ()) -> "LLSD":
        from .conversion import to_llsd
        return cls._make(Kind.ARRAY, tuple(to_llsd(item) for item in items))

    @classmethod
    def map(cls, items: Union[Mapping[str, Any], Iterable[tuple[str, Any]]] = ()) -> "LLSD":
        builder = MapBuilder()
        pairs = items.items() if isinstance(items, Mapping) else items
        for key, item in pairs:
            builder.insert(key, item)
        return builder.build()

    @classmethod
    def map_builder(cls) -> "MapBuilder":
        return MapBuilder()

    @classmethod
    def array_builder(cls) -> "ArrayBuilder":
        return ArrayBuilder()

    # ------------------------------------------------------------------
    # Discriminant
    # ------------------------------------------------------------------

    @property
    def kind(self) -> Kind:
        return self._kind

    @property
    def payload(self) -> Any:
        """Raw payload: None, a scalar, a tuple of LLSD or a read-only mapping."""
        if self._kind is Kind.MAP:
            return MappingProxyType(self._payload)
        return self._payload

    def is_undefined(self) -> bool:
        return self._kind is Kind.UNDEFINED

    def is_boolean(self) -> bool:
        return self._kind is Kind.BOOLEAN

    def is_integer(self) -> bool:
        return self._kind is Kind.INTEGER

    def is_real(self) -> bool:
        return self._kind is Kind.REAL

    def is_string(self) -> bool:
        return self._kind is Kind.STRING

    def is_uuid(self) -> bool:
        return self._kind is Kind.UUID

    def is_date(self) -> bool:
        return self._kind is Kind.DATE

    def is_uri(self) -> bool:
        return self._kind is Kind.URI

    def is_binary(self) -> bool:
        return self._kind is Kind.BINARY

    def is_array(self) -> bool:
        return self._kind is Kind.ARRAY

    def is_map(self) -> bool:
        return self._kind is Kind.MAP

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    def _expect(self, kind: Kind) -> Any:
        if self._kind is not kind:
            raise TypeMismatchError(
                f"Expected {kind.name.lower()}, found {self._kind.name.lower()}"
            )
        return self._payload

    def as_boolean(self) -> bool:
        return self._expect(Kind.BOOLEAN)

    def as_integer(self) -> int:
        return self._expect(Kind.INTEGER)

    def as_real(self) -> float:
        return self._expect(Kind.REAL)

    def as_string(self) -> str:
        return self._expect(Kind.STRING)

    def as_uuid(self) -> UUID:
        return self._expect(Kind.UUID)

    def as_date(self) -> datetime:
        return self._expect(Kind.DATE)

    def as_uri(self) -> URI:
        return self._expect(Kind.URI)

    def as_binary(self) -> bytes:
        return self._expect(Kind.BINARY)

    def as_array(self) -> tuple["LLSD", ...]:
        return self._expect(Kind.ARRAY)

    def as_map(self) -> Mapping[str, "LLSD"]:
        return MappingProxyType(self._expect(Kind.MAP))

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        if self._kind is Kind.ARRAY or self._kind is Kind.MAP:
            return len(self._payload)
        return 0

    def __bool__(self) -> bool:
        return self._kind is not Kind.UNDEFINED

    def __iter__(self) -> Iterator:
        if self._kind is Kind.ARRAY or self._kind is Kind.MAP:
            return iter(self._payload)
        return iter(())

    def __contains__(self, item) -> bool:
        if self._kind is Kind.MAP or self._kind is Kind.ARRAY:
            return item in self._payload
        return False

    def get(self, key: Key, default: Any = None) -> Any:
        """Child at a map key or array index, or ``default`` when absent."""
        if self._kind is Kind.MAP and isinstance(key, str):
            return self._payload.get(key, default)
        if self._kind is Kind.ARRAY and isinstance(key, int) and not isinstance(key, bool):
            if -len(self._payload) <= key < len(self._payload):
                return self._payload[key]
        return default

    def __getitem__(self, key: Key) -> "LLSD":
        """Child at ``key``; Undefined when it does not exist."""
        return self.get(key, UNDEFINED)

    def pointer(self, pointer: str) -> Optional["LLSD"]:
        """
        Resolve a JSON-pointer style path such as ``"/a/0/b"``.

        ``~1`` and ``~0`` inside a segment stand for ``/`` and ``~``.

        Returns:
            The referenced value, or None if the path does not resolve.
        """
        if pointer == "":
            return self
        if not pointer.startswith("/"):
            return None
        target = self
        for token in pointer.split("/")[1:]:
            token = token.replace("~1", "/").replace("~0", "~")
            if target._kind is Kind.MAP:
                target = target._payload.get(token)
            elif target._kind is Kind.ARRAY and token.isdigit():
                index = int(token)
                target = target._payload[index] if index < len(target._payload) else None
            else:
                return None
            if target is None:
                return None
        return target

    # ------------------------------------------------------------------
    # Copy-on-write updates
    # ------------------------------------------------------------------

    def with_item(self, key: str, value: Any) -> "LLSD":
        """New map with ``key`` set (overwriting). Undefined becomes a map."""
        from .conversion import to_llsd
        if self._kind is Kind.UNDEFINED:
            items = {}
        else:
            items = dict(self._expect(Kind.MAP))
        if not isinstance(key, str):
            raise TypeMismatchError(f"Map keys must be str, got {type(key).__name__}")
        items[key] = to_llsd(value)
        return LLSD._make(Kind.MAP, items)

    def with_appended(self, value: Any) -> "LLSD":
        """New array with ``value`` appended. Undefined becomes an array."""
        from .conversion import to_llsd
        items = () if self._kind is Kind.UNDEFINED else self._expect(Kind.ARRAY)
        return LLSD._make(Kind.ARRAY, items + (to_llsd(value),))

    # ------------------------------------------------------------------
    # Comparison and display
    # ------------------------------------------------------------------

    def __eq__(self, other) -> bool:
        if not isinstance(other, LLSD):
            return NotImplemented
        if self._kind is not other._kind:
            return False
        if self._kind is Kind.REAL:
            a, b = self._payload, other._payload
            return a == b or (math.isnan(a) and math.isnan(b))
        return self._payload == other._payload

    __hash__ = None

    def __repr__(self) -> str:
        kind = self._kind
        if kind is Kind.UNDEFINED:
            return "LLSD.undefined()"
        if kind is Kind.UUID or kind is Kind.URI:
            return f"LLSD.{kind.name.lower()}({str(self._payload)!r})"
        if kind is Kind.DATE:
            return f"LLSD.date({format_date(self._payload)!r})"
        if kind is Kind.ARRAY:
            return f"LLSD.array([{', '.join(map(repr, self._payload))}])"
        if kind is Kind.MAP:
            items = ", ".join(f"{k!r}: {v!r}" for k, v in self._payload.items())
            return f"LLSD.map({{{items}}})"
        return f"LLSD.{kind.name.lower()}({self._payload!r})"


UNDEFINED = LLSD()
TRUE = LLSD._make(Kind.BOOLEAN, True)
FALSE = LLSD._make(Kind.BOOLEAN, False)


# ============================================================================
# Builders
# ============================================================================

class MapBuilder:
    """
    Chained map construction that rejects duplicate keys.

    ``insert`` raises DuplicateKeyError when the key is already present;
    ``set`` is the explicit overwrite.
    """

    def __init__(self):
        self._items: dict[str, LLSD] = {}

    def insert(self, key: str, value: Any) -> "MapBuilder":
        from .conversion import to_llsd
        if not isinstance(key, str):
            raise TypeMismatchError(f"Map keys must be str, got {type(key).__name__}")
        if key in self._items:
            raise DuplicateKeyError(f"Duplicate map key {key!r}", path=(f"key {key!r}",))
        try:
            self._items[key] = to_llsd(value)
        except LLSDError as err:
            raise err.with_path(f"key {key!r}")
        return self

    def set(self, key: str, value: Any) -> "MapBuilder":
        from .conversion import to_llsd
        if not isinstance(key, str):
            raise TypeMismatchError(f"Map keys must be str, got {type(key).__name__}")
        self._items[key] = to_llsd(value)
        return self

    def __contains__(self, key) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)

    def build(self) -> LLSD:
        return LLSD._make(Kind.MAP, dict(self._items))


class ArrayBuilder:
    """Chained array construction."""

    def __init__(self):
        self._items: list[LLSD] = []

    def push(self, value: Any) -> "ArrayBuilder":
        from .conversion import to_llsd
        self._items.append(to_llsd(value))
        return self

    def extend(self, values: Iterable[Any]) -> "ArrayBuilder":
        for value in values:
            self.push(value)
        return self

    def __len__(self) -> int:
        return len(self._items)

    def build(self) -> LLSD:
        return LLSD._make(Kind.ARRAY, tuple(self._items))
