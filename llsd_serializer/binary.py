"""
LLSD Binary Codec using the Construct Library.

Every value is a single tag byte followed by a payload. Lengths, counts,
integers and reals are big-endian; the date payload keeps the little-endian
layout that every LLSD peer uses on the wire.

Format:
    - Undefined: ``!``
    - Boolean: ``1`` (true) or ``0`` (false), no payload
    - Integer: ``i`` + Int32sb
    - Real: ``r`` + Float64b
    - UUID: ``u`` + 16 raw bytes
    - Date: ``d`` + Float64l seconds since the Unix epoch
    - String / URI / Binary: ``s`` / ``l`` / ``b`` + Int32ub length + bytes
    - Array: ``[`` + Int32ub count + values + ``]``
    - Map: ``{`` + Int32ub count + (``k`` + Int32ub length + key + value)... + ``}``

The decoder also accepts quoted, backslash-escaped strings (``'...'`` or
``"..."``) as strings and map keys, and skips a leading
``<? LLSD/Binary ?>`` header.

Examples:
    >>> encode(LLSD.integer(42)).hex()
    '690000002a'
    >>> encode(to_llsd({"a": [True, None]})).hex()
    '7b000000016b00000001615b0000000231215d7d'
"""

import io
from datetime import timedelta

import structlog
from construct import (
    Bytes,
    Construct,
    ConstructError,
    Float64b,
    Float64l,
    GreedyBytes,
    Int32sb,
    Int32ub,
    PascalString,
    Prefixed,
    SizeofError,
)

from .context import SerializationContext, resolve_context
from .errors import (
    DepthExceededError, DuplicateKeyError, EncodingError, MalformedError,
    TruncatedError, TypeMismatchError, UnknownTagError, UnterminatedLiteralError,
)
from .escapes import read_quoted
from .value import EPOCH, LLSD, Kind

logger = structlog.get_logger(__name__)


# ============================================================================
# Tag Alphabet and Field Layouts
# ============================================================================

TAG_UNDEFINED = b"!"
TAG_TRUE = b"1"
TAG_FALSE = b"0"
TAG_INTEGER = b"i"
TAG_REAL = b"r"
TAG_UUID = b"u"
TAG_DATE = b"d"
TAG_STRING = b"s"
TAG_URI = b"l"
TAG_BINARY = b"b"
TAG_ARRAY_BEGIN = b"["
TAG_ARRAY_END = b"]"
TAG_MAP_BEGIN = b"{"
TAG_MAP_END = b"}"
TAG_KEY = b"k"
QUOTES = (b"'", b'"')

BINARY_HEADER = b"<? LLSD/Binary ?>\n"

LLSDLength = Int32ub
"""Length and count prefix: unsigned 32-bit, big-endian."""

LLSDInteger = Int32sb
LLSDReal = Float64b
LLSDDate = Float64l
LLSDUUID = Bytes(16)
LLSDText = PascalString(Int32ub, "utf-8")
LLSDBytes = Prefixed(Int32ub, GreedyBytes)

MAX_LENGTH = 2 ** 31 - 1
"""Largest length or count accepted on decode."""

_MIN_MAP_ENTRY = 3  # empty quoted key plus a one-byte value


# ============================================================================
# Tagged Value Construct
# ============================================================================

class LLSDBinary(Construct):
    """
    Construct for one binary LLSD value, including nested containers.

    Parsing reads exactly one value from the stream. Every fixed-width and
    length-prefixed read is checked against the bytes left in the stream
    before anything is read or allocated, so a tiny input declaring a huge
    length fails with TruncatedError instead of allocating.

    Args:
        max_depth: Deepest array/map nesting accepted while parsing.
    """

    def __init__(self, max_depth: int = 128):
        super().__init__()
        self.max_depth = max_depth

    def _parse(self, stream, context, path) -> LLSD:
        start = stream.tell()
        stream.seek(0, 2)
        end = stream.tell()
        stream.seek(start)
        return self._read_value(stream, end, 0)

    def _build(self, obj: LLSD, stream, context, path):
        self._write_value(obj, stream)
        return obj

    def _sizeof(self, context, path):
        """Size cannot be determined statically."""
        raise SizeofError("LLSDBinary size is variable")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @staticmethod
    def _require(stream, end: int, size: int, what: str) -> int:
        offset = stream.tell()
        if end - offset < size:
            raise TruncatedError(
                f"Need {size} bytes for {what}, only {end - offset} remain", offset=offset
            )
        return offset

    def _read_length(self, stream, end: int, what: str) -> int:
        offset = self._require(stream, end, 4, f"{what} length")
        length = LLSDLength.parse_stream(stream)
        if length > MAX_LENGTH:
            raise MalformedError(f"Absurd {what} length {length}", offset=offset)
        return length

    def _read_sized(self, stream, end: int, what: str) -> bytes:
        length = self._read_length(stream, end, what)
        self._require(stream, end, length, what)
        return stream.read(length)

    @staticmethod
    def _decode_text(raw: bytes, offset: int, what: str) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodingError(f"Invalid UTF-8 in {what}: {exc.reason}",
                                offset=offset + exc.start) from exc

    def _read_text(self, stream, end: int, what: str) -> str:
        offset = stream.tell() + 4
        return self._decode_text(self._read_sized(stream, end, what), offset, what)

    def _read_quoted(self, stream, end: int) -> str:
        offset = stream.tell() - 1
        data = stream.getvalue()[:end]
        try:
            raw, stop = read_quoted(data, offset)
        except UnterminatedLiteralError as exc:
            raise TruncatedError("Quoted string ended before its closing quote",
                                 offset=offset) from exc
        stream.seek(stop)
        return self._decode_text(raw, offset + 1, "quoted string")

    def _read_value(self, stream, end: int, depth: int) -> LLSD:
        offset = self._require(stream, end, 1, "value tag")
        tag = stream.read(1)

        if tag == TAG_UNDEFINED:
            return LLSD.undefined()
        if tag == TAG_TRUE:
            return LLSD.boolean(True)
        if tag == TAG_FALSE:
            return LLSD.boolean(False)
        if tag == TAG_INTEGER:
            self._require(stream, end, 4, "integer")
            return LLSD.integer(LLSDInteger.parse_stream(stream))
        if tag == TAG_REAL:
            self._require(stream, end, 8, "real")
            return LLSD.real(LLSDReal.parse_stream(stream))
        if tag == TAG_UUID:
            self._require(stream, end, 16, "uuid")
            return LLSD.uuid(LLSDUUID.parse_stream(stream))
        if tag == TAG_DATE:
            self._require(stream, end, 8, "date")
            seconds = LLSDDate.parse_stream(stream)
            try:
                return LLSD.date(EPOCH + timedelta(seconds=seconds))
            except (OverflowError, ValueError) as exc:
                raise MalformedError(f"Date {seconds!r} out of range", offset=offset) from exc
        if tag == TAG_STRING:
            return LLSD.string(self._read_text(stream, end, "string"))
        if tag == TAG_URI:
            return LLSD.uri(self._read_text(stream, end, "uri"))
        if tag == TAG_BINARY:
            return LLSD.binary(self._read_sized(stream, end, "binary"))
        if tag in QUOTES:
            return LLSD.string(self._read_quoted(stream, end))
        if tag == TAG_ARRAY_BEGIN:
            return self._read_array(stream, end, depth + 1, offset)
        if tag == TAG_MAP_BEGIN:
            return self._read_map(stream, end, depth + 1, offset)

        raise UnknownTagError(f"Unknown binary tag {tag!r}", offset=offset)

    def _check_depth(self, depth: int, offset: int):
        if depth > self.max_depth:
            raise DepthExceededError(f"Nesting deeper than {self.max_depth} levels",
                                     offset=offset)

    def _expect_closer(self, stream, end: int, closer: bytes):
        offset = self._require(stream, end, 1, f"closing {closer.decode()!r}")
        found = stream.read(1)
        if found != closer:
            raise MalformedError(f"Expected {closer!r}, found {found!r}", offset=offset)

    def _read_array(self, stream, end: int, depth: int, offset: int) -> LLSD:
        self._check_depth(depth, offset)
        count = self._read_length(stream, end, "array")
        if count + 1 > end - stream.tell():
            raise TruncatedError(f"Array declares {count} elements but input is shorter",
                                 offset=offset)
        items = [self._read_value(stream, end, depth) for _ in range(count)]
        self._expect_closer(stream, end, TAG_ARRAY_END)
        return LLSD.array(items)

    def _read_key(self, stream, end: int) -> str:
        offset = self._require(stream, end, 1, "map key")
        marker = stream.read(1)
        if marker == TAG_KEY:
            return self._read_text(stream, end, "map key")
        if marker in QUOTES:
            return self._read_quoted(stream, end)
        raise MalformedError(f"Expected map key marker, found {marker!r}", offset=offset)

    def _read_map(self, stream, end: int, depth: int, offset: int) -> LLSD:
        self._check_depth(depth, offset)
        count = self._read_length(stream, end, "map")
        if count * _MIN_MAP_ENTRY + 1 > end - stream.tell():
            raise TruncatedError(f"Map declares {count} entries but input is shorter",
                                 offset=offset)
        builder = LLSD.map_builder()
        for _ in range(count):
            key_offset = stream.tell()
            key = self._read_key(stream, end)
            if key in builder:
                raise DuplicateKeyError(f"Duplicate map key {key!r}", offset=key_offset)
            builder.insert(key, self._read_value(stream, end, depth))
        self._expect_closer(stream, end, TAG_MAP_END)
        return builder.build()

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def _write_value(self, value: LLSD, stream):
        kind = value.kind
        if kind is Kind.UNDEFINED:
            stream.write(TAG_UNDEFINED)
        elif kind is Kind.BOOLEAN:
            stream.write(TAG_TRUE if value.as_boolean() else TAG_FALSE)
        elif kind is Kind.INTEGER:
            stream.write(TAG_INTEGER)
            LLSDInteger.build_stream(value.as_integer(), stream)
        elif kind is Kind.REAL:
            stream.write(TAG_REAL)
            LLSDReal.build_stream(value.as_real(), stream)
        elif kind is Kind.UUID:
            stream.write(TAG_UUID)
            LLSDUUID.build_stream(value.as_uuid().bytes, stream)
        elif kind is Kind.DATE:
            stream.write(TAG_DATE)
            LLSDDate.build_stream((value.as_date() - EPOCH).total_seconds(), stream)
        elif kind is Kind.STRING:
            stream.write(TAG_STRING)
            LLSDText.build_stream(value.as_string(), stream)
        elif kind is Kind.URI:
            stream.write(TAG_URI)
            LLSDText.build_stream(str(value.as_uri()), stream)
        elif kind is Kind.BINARY:
            stream.write(TAG_BINARY)
            LLSDBytes.build_stream(value.as_binary(), stream)
        elif kind is Kind.ARRAY:
            items = value.as_array()
            stream.write(TAG_ARRAY_BEGIN)
            LLSDLength.build_stream(len(items), stream)
            for item in items:
                self._write_value(item, stream)
            stream.write(TAG_ARRAY_END)
        else:
            items = value.as_map()
            stream.write(TAG_MAP_BEGIN)
            LLSDLength.build_stream(len(items), stream)
            for key, item in items.items():
                stream.write(TAG_KEY)
                LLSDText.build_stream(key, stream)
                self._write_value(item, stream)
            stream.write(TAG_MAP_END)


# ============================================================================
# Encode / Decode
# ============================================================================

def encode(value: LLSD, context: SerializationContext = None) -> bytes:
    """
    Serialize an LLSD value to binary LLSD.

    Args:
        value: Value to serialize.
        context: Codec options; ``binary_header`` prepends the
            ``<? LLSD/Binary ?>`` header.

    Returns:
        bytes: The encoded value.
    """
    if not isinstance(value, LLSD):
        raise TypeMismatchError(f"Expected an LLSD value, got {type(value).__name__}")
    context = resolve_context(context)
    stream = io.BytesIO()
    if context.binary_header:
        stream.write(BINARY_HEADER)
    LLSDBinary(context.max_depth).build_stream(value, stream)
    return stream.getvalue()


def _skip_header(data: bytes) -> int:
    if not data.startswith(b"<?"):
        return 0
    close = data.find(b"?>")
    if close < 0 or b"llsd/binary" not in data[2:close].lower():
        raise MalformedError("Input starts with '<?' but is not a binary LLSD header",
                             offset=0)
    pos = close + 2
    while pos < len(data) and data[pos] in b" \t\r\n":
        pos += 1
    logger.debug("binary_header_skipped", length=pos)
    return pos


def decode(data: bytes, context: SerializationContext = None) -> LLSD:
    """
    Parse one binary LLSD value occupying the whole buffer.

    Args:
        data: Encoded bytes, optionally starting with a binary LLSD header.
        context: Codec options; ``max_depth`` bounds container nesting.

    Returns:
        LLSD: The decoded value.

    Raises:
        TruncatedError: If the buffer ends before the value is complete.
        UnknownTagError: If a tag byte is outside the tag alphabet.
        MalformedError: If lengths, closers or key markers are invalid, or
            bytes remain after the value.
        EncodingError: If a string or key is not valid UTF-8.
        DepthExceededError: If containers nest deeper than ``max_depth``.
        DuplicateKeyError: If a map repeats a key.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeMismatchError(f"Expected bytes, got {type(data).__name__}")
    context = resolve_context(context)
    data = bytes(data)
    stream = io.BytesIO(data)
    stream.seek(_skip_header(data))
    try:
        value = LLSDBinary(context.max_depth).parse_stream(stream)
    except ConstructError as exc:
        raise MalformedError(f"Invalid binary LLSD: {exc}", offset=stream.tell()) from exc
    if stream.tell() != len(data):
        raise MalformedError(f"{len(data) - stream.tell()} trailing bytes after value",
                             offset=stream.tell())
    return value
