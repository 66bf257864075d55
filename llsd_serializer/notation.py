"""
LLSD Notation Codec.

A compact, human-typeable text form. The printer writes pure ASCII, so
notation is safe to embed in logs and line-oriented config files.

Grammar (printed form, then extra forms the parser accepts):
    - Undefined: ``!``
    - Boolean: ``true`` / ``false``; also ``1``, ``0``, ``t``, ``f``,
      ``T``, ``F``, ``TRUE``, ``FALSE``
    - Integer: ``i42``
    - Real: ``r3.25``, ``rnan``, ``rinf``, ``r-inf``
    - UUID: ``u`` + canonical 36-character text
    - String: ``'text'`` with backslash escapes; also ``"text"`` and the
      raw sized form ``s(4)"text"``
    - URI: ``l"http://example.com/"``
    - Date: ``d"2024-01-02T03:04:05Z"``
    - Binary: ``b64"AAEC"``; also ``b16"000102"`` and raw ``b(3)"..."``
    - Array: ``[v,v,...]``
    - Map: ``{'key':v,...}``

Parsing is recursive descent. Each production consumes exactly one value
and stops at the first byte past it; ``NotationParser.parse_prefix``
exposes that for callers embedding notation in a larger text.

Examples:
    >>> encode(to_llsd({"a": 1, "b": [True, None]}))
    b"{'a':i1,'b':[true,!]}"
    >>> decode(b"[i1, r2.5, 'three']")
    LLSD.array([LLSD.integer(1), LLSD.real(2.5), LLSD.string('three')])
"""

import base64
import binascii
import math
import re
from typing import Union
from uuid import UUID

import structlog

from .context import SerializationContext, resolve_context
from .errors import (
    DepthExceededError, DuplicateKeyError, EncodingError, MalformedError,
    TypeMismatchError, UnexpectedTokenError, UnterminatedLiteralError,
)
from .escapes import quote_bytes, read_quoted
from .value import INT32_MAX, INT32_MIN, LLSD, Kind, format_date, format_real, parse_date

logger = structlog.get_logger(__name__)

_WHITESPACE = b" \t\r\n"

_INTEGER_RE = re.compile(rb"[+-]?\d+")
_REAL_RE = re.compile(
    rb"[+-]?(?:nan|inf(?:inity)?|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)", re.IGNORECASE
)
_UUID_RE = re.compile(rb"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}")
_SIZE_RE = re.compile(rb"\((\d+)\)")
_WORD_RE = re.compile(rb"[A-Za-z]+")

_TRUE_WORDS = frozenset((b"t", b"T", b"true", b"TRUE", b"True"))
_FALSE_WORDS = frozenset((b"f", b"F", b"false", b"FALSE", b"False"))


# ============================================================================
# Printer
# ============================================================================

class NotationFormatter:
    """Writes LLSD values in notation, compact or indented."""

    def __init__(self, context: SerializationContext):
        self.context = context

    def format(self, value: LLSD) -> bytes:
        parts = []
        self._write(value, parts, 0)
        return b"".join(parts)

    def _newline(self, level: int) -> bytes:
        return b"\n" + self.context.indent.encode("ascii") * level

    def _write(self, value: LLSD, parts: list, level: int):
        kind = value.kind
        pretty = self.context.pretty
        if kind is Kind.ARRAY:
            items = value.as_array()
            parts.append(b"[")
            for index, item in enumerate(items):
                if index:
                    parts.append(b",")
                if pretty:
                    parts.append(self._newline(level + 1))
                self._write(item, parts, level + 1)
            if pretty and items:
                parts.append(self._newline(level))
            parts.append(b"]")
        elif kind is Kind.MAP:
            items = value.as_map()
            parts.append(b"{")
            for index, (key, item) in enumerate(items.items()):
                if index:
                    parts.append(b",")
                if pretty:
                    parts.append(self._newline(level + 1))
                parts.append(quote_bytes(key.encode("utf-8")))
                parts.append(b": " if pretty else b":")
                self._write(item, parts, level + 1)
            if pretty and items:
                parts.append(self._newline(level))
            parts.append(b"}")
        else:
            parts.append(self._scalar(value))

    def _scalar(self, value: LLSD) -> bytes:
        kind = value.kind
        if kind is Kind.UNDEFINED:
            return b"!"
        if kind is Kind.BOOLEAN:
            if self.context.boolean_digits:
                return b"1" if value.as_boolean() else b"0"
            return b"true" if value.as_boolean() else b"false"
        if kind is Kind.INTEGER:
            return b"i%d" % value.as_integer()
        if kind is Kind.REAL:
            return b"r" + format_real(value.as_real()).encode("ascii")
        if kind is Kind.UUID:
            return b"u" + str(value.as_uuid()).encode("ascii")
        if kind is Kind.STRING:
            return quote_bytes(value.as_string().encode("utf-8"))
        if kind is Kind.URI:
            return b"l" + quote_bytes(str(value.as_uri()).encode("utf-8"), b'"')
        if kind is Kind.DATE:
            return b'd"' + format_date(value.as_date()).encode("ascii") + b'"'
        return self._binary(value.as_binary())

    def _binary(self, data: bytes) -> bytes:
        encoding = self.context.binary_encoding
        if encoding == "base16":
            return b'b16"' + base64.b16encode(data) + b'"'
        if encoding == "raw":
            return b'b(%d)"' % len(data) + data + b'"'
        return b'b64"' + base64.b64encode(data) + b'"'


# ============================================================================
# Parser
# ============================================================================

class NotationParser:
    """
    Recursive-descent notation parser.

    One ``_parse_*`` method per production; ``_parse_value`` dispatches on
    the first significant byte.

    Args:
        data: Notation text. ``str`` input is encoded as UTF-8.
        context: Codec options; ``max_depth`` bounds array/map nesting.
    """

    def __init__(self, data: Union[bytes, str], context: SerializationContext = None):
        if isinstance(data, str):
            data = data.encode("utf-8")
        elif isinstance(data, (bytes, bytearray, memoryview)):
            data = bytes(data)
        else:
            raise TypeMismatchError(f"Expected bytes or str, got {type(data).__name__}")
        self.data = data
        self.max_depth = resolve_context(context).max_depth
        self._dispatch = {}
        for chars, production in (
            (b"!", self._parse_undefined),
            (b"10tTfF", self._parse_boolean),
            (b"iI", self._parse_integer),
            (b"rR", self._parse_real),
            (b"uU", self._parse_uuid),
            (b"'\"", self._parse_string),
            (b"sS", self._parse_sized_string),
            (b"lL", self._parse_uri),
            (b"dD", self._parse_date),
            (b"bB", self._parse_binary),
            (b"[", self._parse_array),
            (b"{", self._parse_map),
        ):
            for char in chars:
                self._dispatch[char] = production

    def parse(self) -> LLSD:
        """Parse the whole input as one value; only whitespace may follow it."""
        pos = self._skip_whitespace(self._skip_header(self._skip_whitespace(0)))
        if pos >= len(self.data):
            return LLSD.undefined()
        value, pos = self._parse_value(pos, 0)
        pos = self._skip_whitespace(pos)
        if pos < len(self.data):
            raise UnexpectedTokenError(
                f"Unexpected {self.data[pos:pos + 1]!r} after value", offset=pos
            )
        return value

    def parse_prefix(self, pos: int = 0) -> tuple[LLSD, int]:
        """
        Parse one value starting at ``pos``, leading whitespace allowed.

        Returns:
            Tuple of (value, offset of the first byte past the value).
        """
        return self._parse_value(self._skip_whitespace(pos), 0)

    # ------------------------------------------------------------------
    # Lexical helpers
    # ------------------------------------------------------------------

    def _skip_header(self, pos: int) -> int:
        if not self.data.startswith(b"<?", pos):
            return pos
        close = self.data.find(b"?>", pos)
        if close < 0 or b"llsd/notation" not in self.data[pos + 2:close].lower():
            raise UnexpectedTokenError("Input starts with '<?' but is not a notation header",
                                       offset=pos)
        logger.debug("notation_header_skipped", length=close + 2 - pos)
        return close + 2

    def _skip_whitespace(self, pos: int) -> int:
        data = self.data
        while pos < len(data) and data[pos] in _WHITESPACE:
            pos += 1
        return pos

    def _expect_quote(self, pos: int, what: str) -> int:
        if pos >= len(self.data):
            raise UnterminatedLiteralError(f"Input ended before {what} literal", offset=pos)
        if self.data[pos] not in b"'\"":
            raise UnexpectedTokenError(f"Expected quote to open {what} literal", offset=pos)
        return pos

    def _quoted(self, pos: int) -> tuple[bytes, int]:
        return read_quoted(self.data, pos)

    def _text(self, raw: bytes, offset: int) -> str:
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EncodingError(f"Invalid UTF-8 in string literal: {exc.reason}",
                                offset=offset) from exc

    def _raw_sized(self, pos: int, what: str) -> tuple[bytes, int]:
        """Read ``(n)"<n raw bytes>"`` starting at ``pos``."""
        match = _SIZE_RE.match(self.data, pos)
        if match is None:
            raise MalformedError(f"Invalid length prefix for {what}", offset=pos)
        size = int(match.group(1))
        start = self._expect_quote(match.end(), what)
        quote = self.data[start]
        body = start + 1
        close = body + size
        if close >= len(self.data):
            raise UnterminatedLiteralError(f"Input ended inside sized {what}", offset=start)
        if self.data[close] != quote:
            raise MalformedError(f"Sized {what} does not end with its quote", offset=close)
        return self.data[body:close], close + 1

    # ------------------------------------------------------------------
    # Productions
    # ------------------------------------------------------------------

    def _parse_value(self, pos: int, depth: int) -> tuple[LLSD, int]:
        if pos >= len(self.data):
            raise UnexpectedTokenError("Expected a value, input ended", offset=pos)
        production = self._dispatch.get(self.data[pos])
        if production is None:
            raise UnexpectedTokenError(
                f"{self.data[pos:pos + 1]!r} does not start a value", offset=pos
            )
        return production(pos, depth)

    def _parse_undefined(self, pos: int, depth: int) -> tuple[LLSD, int]:
        return LLSD.undefined(), pos + 1

    def _parse_boolean(self, pos: int, depth: int) -> tuple[LLSD, int]:
        first = self.data[pos:pos + 1]
        if first in (b"1", b"0"):
            return LLSD.boolean(first == b"1"), pos + 1
        word = _WORD_RE.match(self.data, pos).group()
        if word in _TRUE_WORDS:
            return LLSD.boolean(True), pos + len(word)
        if word in _FALSE_WORDS:
            return LLSD.boolean(False), pos + len(word)
        raise UnexpectedTokenError(f"Invalid boolean literal {word!r}", offset=pos)

    def _parse_integer(self, pos: int, depth: int) -> tuple[LLSD, int]:
        match = _INTEGER_RE.match(self.data, pos + 1)
        if match is None:
            raise MalformedError("Invalid integer literal", offset=pos)
        number = int(match.group())
        if not INT32_MIN <= number <= INT32_MAX:
            raise MalformedError(f"Integer {number} out of signed 32-bit range", offset=pos)
        return LLSD.integer(number), match.end()

    def _parse_real(self, pos: int, depth: int) -> tuple[LLSD, int]:
        match = _REAL_RE.match(self.data, pos + 1)
        if match is None:
            raise MalformedError("Invalid real literal", offset=pos)
        text = match.group().lower()
        if text.lstrip(b"+-").startswith(b"nan"):
            number = math.nan
        else:
            number = float(text)
        return LLSD.real(number), match.end()

    def _parse_uuid(self, pos: int, depth: int) -> tuple[LLSD, int]:
        match = _UUID_RE.match(self.data, pos + 1)
        if match is None:
            raise MalformedError("Invalid uuid literal", offset=pos)
        return LLSD.uuid(UUID(match.group().decode("ascii"))), match.end()

    def _parse_string(self, pos: int, depth: int) -> tuple[LLSD, int]:
        raw, end = self._quoted(pos)
        return LLSD.string(self._text(raw, pos)), end

    def _parse_sized_string(self, pos: int, depth: int) -> tuple[LLSD, int]:
        raw, end = self._raw_sized(pos + 1, "string")
        return LLSD.string(self._text(raw, pos)), end

    def _parse_uri(self, pos: int, depth: int) -> tuple[LLSD, int]:
        start = self._expect_quote(pos + 1, "uri")
        raw, end = self._quoted(start)
        return LLSD.uri(self._text(raw, start)), end

    def _parse_date(self, pos: int, depth: int) -> tuple[LLSD, int]:
        start = self._expect_quote(pos + 1, "date")
        raw, end = self._quoted(start)
        try:
            stamp = parse_date(raw.decode("ascii"))
        except (UnicodeDecodeError, ValueError, OverflowError) as exc:
            raise MalformedError(f"Invalid date literal {raw!r}", offset=pos) from exc
        return LLSD.date(stamp), end

    def _parse_binary(self, pos: int, depth: int) -> tuple[LLSD, int]:
        data = self.data
        if data.startswith(b"(", pos + 1):
            raw, end = self._raw_sized(pos + 1, "binary")
            return LLSD.binary(raw), end
        base = data[pos + 1:pos + 3]
        if base not in (b"64", b"16"):
            raise MalformedError("Binary literal must be b64, b16 or b(n)", offset=pos)
        start = self._expect_quote(pos + 3, "binary")
        payload, end = self._quoted(start)
        payload = b"".join(payload.split())
        try:
            if base == b"64":
                decoded = base64.b64decode(payload, validate=True)
            else:
                decoded = base64.b16decode(payload, casefold=True)
        except (binascii.Error, ValueError) as exc:
            raise EncodingError(f"Invalid base{base.decode()} payload", offset=start) from exc
        return LLSD.binary(decoded), end

    def _check_depth(self, depth: int, pos: int):
        if depth > self.max_depth:
            raise DepthExceededError(f"Nesting deeper than {self.max_depth} levels", offset=pos)

    def _parse_array(self, pos: int, depth: int) -> tuple[LLSD, int]:
        depth += 1
        self._check_depth(depth, pos)
        items = []
        cursor = self._skip_whitespace(pos + 1)
        while True:
            if cursor >= len(self.data):
                raise UnterminatedLiteralError("Array is missing its closing ']'", offset=pos)
            if self.data[cursor] == ord("]"):
                return LLSD.array(items), cursor + 1
            item, cursor = self._parse_value(cursor, depth)
            items.append(item)
            cursor = self._skip_separator(cursor, b"]")

    def _skip_separator(self, pos: int, closer: bytes) -> int:
        """Skip a ',' or whitespace between items; the next item parser validates what follows."""
        start = pos
        pos = self._skip_whitespace(pos)
        if pos >= len(self.data):
            return pos
        if self.data[pos] == ord(","):
            pos = self._skip_whitespace(pos + 1)
            if pos < len(self.data) and self.data[pos] == closer[0]:
                raise UnexpectedTokenError(f"Trailing ',' before {closer!r}", offset=pos)
        elif pos == start and self.data[pos] != closer[0]:
            raise UnexpectedTokenError(f"Expected ',', whitespace or {closer!r}", offset=pos)
        return pos

    def _parse_key(self, pos: int) -> tuple[str, int]:
        if self.data[pos] in b"sS" and self.data.startswith(b"(", pos + 1):
            raw, end = self._raw_sized(pos + 1, "key")
        elif self.data[pos] in b"'\"":
            raw, end = self._quoted(pos)
        else:
            raise UnexpectedTokenError("Expected a quoted map key", offset=pos)
        return self._text(raw, pos), end

    def _parse_map(self, pos: int, depth: int) -> tuple[LLSD, int]:
        depth += 1
        self._check_depth(depth, pos)
        builder = LLSD.map_builder()
        cursor = self._skip_whitespace(pos + 1)
        while True:
            if cursor >= len(self.data):
                raise UnterminatedLiteralError("Map is missing its closing '}'", offset=pos)
            if self.data[cursor] == ord("}"):
                return builder.build(), cursor + 1
            key_offset = cursor
            key, cursor = self._parse_key(cursor)
            cursor = self._skip_whitespace(cursor)
            if cursor >= len(self.data):
                raise UnterminatedLiteralError("Map is missing its closing '}'", offset=pos)
            if self.data[cursor] != ord(":"):
                raise UnexpectedTokenError(f"Expected ':' after key {key!r}", offset=cursor)
            if key in builder:
                raise DuplicateKeyError(f"Duplicate map key {key!r}", offset=key_offset)
            item, cursor = self._parse_value(self._skip_whitespace(cursor + 1), depth)
            builder.insert(key, item)
            cursor = self._skip_separator(cursor, b"}")


# ============================================================================
# Encode / Decode
# ============================================================================

def encode(value: LLSD, context: SerializationContext = None) -> bytes:
    """
    Serialize an LLSD value to notation.

    Args:
        value: Value to serialize.
        context: Codec options; ``pretty``/``indent`` control layout,
            ``boolean_digits`` writes booleans as ``1``/``0`` and
            ``binary_encoding`` picks ``b64``, ``b16`` or raw ``b(n)``.

    Returns:
        bytes: ASCII notation text (unless raw binary was requested).
    """
    if not isinstance(value, LLSD):
        raise TypeMismatchError(f"Expected an LLSD value, got {type(value).__name__}")
    return NotationFormatter(resolve_context(context)).format(value)


def decode(data: Union[bytes, str], context: SerializationContext = None) -> LLSD:
    """
    Parse notation text holding exactly one value.

    Empty or whitespace-only input is Undefined.

    Raises:
        UnexpectedTokenError: If a token starts no production, or text
            follows the value.
        UnterminatedLiteralError: If a literal or container is not closed.
        MalformedError: If a numeric, uuid, date or length literal is invalid.
        EncodingError: If a string is not UTF-8 or a binary payload is not
            valid base64/base16.
        DepthExceededError: If containers nest deeper than ``max_depth``.
        DuplicateKeyError: If a map repeats a key.
    """
    return NotationParser(data, context).parse()
