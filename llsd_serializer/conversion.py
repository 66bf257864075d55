"""
Scalar Conversion Layer.

Bidirectional conversions between the LLSD value model and native Python
data. ``to_llsd`` builds values losslessly; the ``to_*`` extractors pull
native data back out and raise a structured ``LLSDError`` when the variant
or range does not fit.

Supported Native Types (``to_llsd``):
    - None, bool, int (signed 32-bit), float, str
    - bytes, bytearray, memoryview
    - uuid.UUID, datetime.datetime, datetime.date, URI
    - Mapping with str keys, list, tuple and other iterables
    - numpy scalars (bool_, integer, floating) and numpy arrays
    - @llsdclass decorated records

Coercion Table (extractors):
    - to_bool / to_int / to_float: Boolean, Integer, Real, numeric String
    - to_str: String, URI, UUID, Binary (UTF-8 decoded)
    - to_bytes: Binary, String (UTF-8 encoded)
    - to_uuid: UUID, String
    - to_uri: URI, String
    - to_datetime: Date, ISO-8601 String

Examples:
    >>> to_int(LLSD.real(3.9))
    3
    >>> to_list(to_llsd([1, "x"]), to_int)
    Traceback (most recent call last):
        ...
    TypeMismatchError: Cannot convert string 'x' to int (at [1])
"""

import math
from datetime import date, datetime, time, timezone
from typing import Any, Callable, Iterable, Mapping, Optional, TypeVar
from uuid import UUID

import numpy as np

from .context import DEFAULT_MAX_DEPTH
from .errors import (
    DepthExceededError, EncodingError, LLSDError, MalformedError, RangeError,
    TypeMismatchError,
)
from .value import LLSD, URI, Kind, parse_date

T = TypeVar("T")
Extractor = Callable[[LLSD], T]


# ============================================================================
# Native -> LLSD
# ============================================================================

def to_llsd(obj: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> LLSD:
    """
    Convert native Python data to an LLSD value.

    Args:
        obj: Data to convert (see module docstring for supported types).
        max_depth: Maximum container nesting accepted.

    Returns:
        LLSD: The equivalent value. LLSD inputs are returned unchanged.

    Raises:
        TypeMismatchError: If the data has no LLSD equivalent.
        RangeError: If an integer does not fit signed 32-bit.
        DepthExceededError: If containers nest deeper than ``max_depth``.
    """
    return _to_llsd(obj, 0, max_depth)


def _to_llsd(obj: Any, depth: int, max_depth: int) -> LLSD:
    if isinstance(obj, LLSD):
        return obj
    if obj is None:
        return LLSD.undefined()
    if isinstance(obj, (bool, np.bool_)):
        return LLSD.boolean(bool(obj))
    if isinstance(obj, (int, np.integer)):
        return LLSD.integer(int(obj))
    if isinstance(obj, (float, np.floating)):
        return LLSD.real(float(obj))
    if isinstance(obj, URI):
        return LLSD.uri(obj)
    if isinstance(obj, str):
        return LLSD.string(obj)
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return LLSD.binary(obj)
    if isinstance(obj, UUID):
        return LLSD.uuid(obj)
    if isinstance(obj, datetime):
        return LLSD.date(obj)
    if isinstance(obj, date):
        return LLSD.date(datetime.combine(obj, time(), tzinfo=timezone.utc))
    if getattr(type(obj), "__is_llsd_class__", False):
        return obj.to_llsd()

    if depth >= max_depth:
        raise DepthExceededError(f"Nesting deeper than {max_depth} levels")
    if isinstance(obj, Mapping):
        builder = LLSD.map_builder()
        for key, item in obj.items():
            if not isinstance(key, str):
                raise TypeMismatchError(f"Map keys must be str, got {type(key).__name__}")
            try:
                converted = _to_llsd(item, depth + 1, max_depth)
            except LLSDError as err:
                raise err.with_path(f"key {key!r}")
            builder.insert(key, converted)
        return builder.build()
    if isinstance(obj, np.ndarray):
        if obj.ndim == 0:
            return _to_llsd(obj.item(), depth, max_depth)
        return _array(obj.tolist(), depth, max_depth)
    if isinstance(obj, Iterable) and not isinstance(obj, (set, frozenset)):
        return _array(obj, depth, max_depth)

    raise TypeMismatchError(f"Unsupported data type: {type(obj).__name__}")


def _array(items: Iterable[Any], depth: int, max_depth: int) -> LLSD:
    builder = LLSD.array_builder()
    for index, item in enumerate(items):
        try:
            builder.push(_to_llsd(item, depth + 1, max_depth))
        except LLSDError as err:
            raise err.with_path(f"[{index}]")
    return builder.build()


# ============================================================================
# LLSD -> Native
# ============================================================================

def from_llsd(value: LLSD) -> Any:
    """
    Convert an LLSD value to plain Python data.

    Undefined becomes None, arrays become lists and maps become dicts;
    scalars become their payload type.
    """
    kind = value.kind
    if kind is Kind.UNDEFINED:
        return None
    if kind is Kind.ARRAY:
        return [from_llsd(item) for item in value.as_array()]
    if kind is Kind.MAP:
        return {key: from_llsd(item) for key, item in value.as_map().items()}
    return value.payload


# ============================================================================
# Scalar Extractors
# ============================================================================

def _mismatch(value: LLSD, target: str) -> TypeMismatchError:
    if value.kind is Kind.STRING:
        return TypeMismatchError(f"Cannot convert string {value.as_string()!r} to {target}")
    return TypeMismatchError(f"Cannot convert {value.kind.name.lower()} to {target}")


def _check_llsd(value: Any) -> LLSD:
    if not isinstance(value, LLSD):
        raise TypeMismatchError(f"Expected an LLSD value, got {type(value).__name__}")
    return value


def to_bool(value: LLSD) -> bool:
    """Boolean, or a nonzero Integer/Real, or a "true"/"false"/"1"/"0" String."""
    kind = _check_llsd(value).kind
    if kind is Kind.BOOLEAN:
        return value.as_boolean()
    if kind is Kind.INTEGER:
        return value.as_integer() != 0
    if kind is Kind.REAL:
        return value.as_real() != 0.0
    if kind is Kind.STRING:
        text = value.as_string().strip().lower()
        if text in ("true", "1"):
            return True
        if text in ("false", "0", ""):
            return False
    raise _mismatch(value, "bool")


def to_int(value: LLSD) -> int:
    """Integer, Boolean, finite Real (truncated) or decimal String."""
    kind = _check_llsd(value).kind
    if kind is Kind.INTEGER:
        return value.as_integer()
    if kind is Kind.BOOLEAN:
        return int(value.as_boolean())
    if kind is Kind.REAL:
        real = value.as_real()
        if not math.isfinite(real):
            raise RangeError(f"Cannot convert {real} to int")
        return int(real)
    if kind is Kind.STRING:
        try:
            return int(value.as_string().strip())
        except ValueError as exc:
            raise _mismatch(value, "int") from exc
    raise _mismatch(value, "int")


def to_float(value: LLSD) -> float:
    """Real, Integer, Boolean or numeric String."""
    kind = _check_llsd(value).kind
    if kind is Kind.REAL:
        return value.as_real()
    if kind is Kind.INTEGER:
        return float(value.as_integer())
    if kind is Kind.BOOLEAN:
        return 1.0 if value.as_boolean() else 0.0
    if kind is Kind.STRING:
        try:
            return float(value.as_string().strip())
        except ValueError as exc:
            raise _mismatch(value, "float") from exc
    raise _mismatch(value, "float")


def to_str(value: LLSD) -> str:
    kind = _check_llsd(value).kind
    if kind is Kind.STRING or kind is Kind.URI:
        return str(value.payload)
    if kind is Kind.UUID:
        return str(value.as_uuid())
    if kind is Kind.BINARY:
        try:
            return value.as_binary().decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodingError(f"Binary value is not valid UTF-8: {exc.reason}",
                                offset=exc.start) from exc
    raise _mismatch(value, "str")


def to_bytes(value: LLSD) -> bytes:
    kind = _check_llsd(value).kind
    if kind is Kind.BINARY:
        return value.as_binary()
    if kind is Kind.STRING:
        return value.as_string().encode("utf-8")
    raise _mismatch(value, "bytes")


def to_uuid(value: LLSD) -> UUID:
    kind = _check_llsd(value).kind
    if kind is Kind.UUID:
        return value.as_uuid()
    if kind is Kind.STRING:
        try:
            return UUID(value.as_string())
        except ValueError as exc:
            raise MalformedError(f"Invalid UUID text: {value.as_string()!r}") from exc
    raise _mismatch(value, "UUID")


def to_uri(value: LLSD) -> URI:
    kind = _check_llsd(value).kind
    if kind is Kind.URI:
        return value.as_uri()
    if kind is Kind.STRING:
        return URI(value.as_string())
    raise _mismatch(value, "URI")


def to_datetime(value: LLSD) -> datetime:
    kind = _check_llsd(value).kind
    if kind is Kind.DATE:
        return value.as_date()
    if kind is Kind.STRING:
        try:
            return parse_date(value.as_string())
        except (ValueError, OverflowError) as exc:
            raise MalformedError(str(exc)) from exc
    raise _mismatch(value, "datetime")


# ============================================================================
# Ranged Numeric Extractors
# ============================================================================

def _ranged(dtype) -> Extractor[int]:
    info = np.iinfo(dtype)
    name = np.dtype(dtype).name

    def extract(value: LLSD) -> int:
        number = to_int(value)
        if not info.min <= number <= info.max:
            raise RangeError(f"{number} out of range for {name} [{info.min}, {info.max}]")
        return number

    extract.__name__ = f"to_{name}"
    extract.__doc__ = f"Integer extractor checked against the {name} range."
    return extract


to_int8 = _ranged(np.int8)
to_int16 = _ranged(np.int16)
to_int32 = _ranged(np.int32)
to_int64 = _ranged(np.int64)
to_uint8 = _ranged(np.uint8)
to_uint16 = _ranged(np.uint16)
to_uint32 = _ranged(np.uint32)
to_uint64 = _ranged(np.uint64)


def to_float32(value: LLSD) -> float:
    """Real extractor checked against the float32 finite range."""
    number = to_float(value)
    limit = float(np.finfo(np.float32).max)
    if math.isfinite(number) and abs(number) > limit:
        raise RangeError(f"{number} out of range for float32")
    return float(np.float32(number))


# ============================================================================
# Optional and Collection Extractors
# ============================================================================

def to_optional(value: LLSD, extract: Extractor[T]) -> Optional[T]:
    """None for Undefined, otherwise ``extract(value)``."""
    if _check_llsd(value).is_undefined():
        return None
    return extract(value)


def to_list(value: LLSD, extract: Extractor[T]) -> list[T]:
    """
    Apply ``extract`` to every array element.

    Raises:
        TypeMismatchError: If ``value`` is not an array.
        LLSDError: The first element failure, with ``"[index]"`` prepended
            to its path.
    """
    result = []
    for index, item in enumerate(_check_llsd(value).as_array()):
        try:
            result.append(extract(item))
        except LLSDError as err:
            raise err.with_path(f"[{index}]")
    return result


def to_dict(value: LLSD, extract: Extractor[T]) -> dict[str, T]:
    """Apply ``extract`` to every map value, reporting the failing key."""
    result = {}
    for key, item in _check_llsd(value).as_map().items():
        try:
            result[key] = extract(item)
        except LLSDError as err:
            raise err.with_path(f"key {key!r}")
    return result


def to_tuple(value: LLSD, *extracts: Extractor[Any]) -> tuple:
    """Extract a fixed-arity array, one extractor per position."""
    items = _check_llsd(value).as_array()
    if len(items) != len(extracts):
        raise TypeMismatchError(
            f"Expected an array of {len(extracts)} elements, found {len(items)}"
        )
    result = []
    for index, (item, extract) in enumerate(zip(items, extracts)):
        try:
            result.append(extract(item))
        except LLSDError as err:
            raise err.with_path(f"[{index}]")
    return tuple(result)
