"""
LLSD XML Codec.

Each value is one element whose name identifies the variant, wrapped in a
single ``<llsd>`` root.

Element Vocabulary:
    - undef, boolean, integer, real, string, uuid, date, uri, binary
    - array: child value elements, in order
    - map: ``<key>`` element followed by one value element, per entry

Text Rules:
    - Booleans are written ``true`` / ``false``; ``1`` / ``0`` are read too
    - Reals use ``nan``, ``inf`` and ``-inf`` for non-finite values
    - Binary is base64 inline; an ``encoding="base16"`` attribute is read
    - Dates are ISO-8601 with a ``Z`` suffix
    - Empty scalar elements decode to the variant's default value
    - The five reserved characters are escaped, and carriage return is
      written as ``&#13;`` so it survives XML line-end normalization

Decoding parses the document with ElementTree first and then walks the
tree; every error carries the element path where it was found.

Examples:
    >>> encode(to_llsd({"a": 1}))
    b'<?xml version="1.0" ?><llsd><map><key>a</key><integer>1</integer></map></llsd>'
"""

import base64
import binascii
import math
import re
import warnings
import xml.etree.ElementTree as ET
from typing import Union
from uuid import UUID

from .context import SerializationContext, resolve_context
from .errors import (
    DepthExceededError, DuplicateKeyError, EncodingError, MalformedError,
    TypeMismatchError, UnknownTagError,
)
from .value import (
    EPOCH, INT32_MAX, INT32_MIN, LLSD, NIL_UUID, Kind, format_date, format_real,
    parse_date,
)

XML_DECLARATION = '<?xml version="1.0" ?>'


# ============================================================================
# Escaping
# ============================================================================

_XML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&apos;",
    "\r": "&#13;",
}

_ESCAPE_RE = re.compile("[&<>\"'\r]")

_INVALID_XML_RE = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")


def xml_escape(text: str) -> str:
    """
    Escape text for XML element content.

    Characters that XML 1.0 cannot represent at all are removed, with a
    warning, since no escape exists for them.
    """
    if _INVALID_XML_RE.search(text):
        warnings.warn(f"Removed characters not representable in XML from {text[:32]!r}")
        text = _INVALID_XML_RE.sub("", text)
    return _ESCAPE_RE.sub(lambda match: _XML_ESCAPES[match.group()], text)


# ============================================================================
# Formatter
# ============================================================================

class XMLFormatter:
    """Writes LLSD values as XML, compact or indented."""

    def __init__(self, context: SerializationContext):
        self.context = context
        self.newline = "\n" if context.pretty else ""

    def format(self, value: LLSD) -> bytes:
        parts = []
        if self.context.xml_declaration:
            parts.append(XML_DECLARATION + self.newline)
        parts.append("<llsd>" + self.newline)
        self._write(value, parts, 1)
        parts.append("</llsd>" + self.newline)
        return "".join(parts).encode("utf-8")

    def _line(self, level: int, text: str) -> str:
        if self.context.pretty:
            return self.context.indent * level + text + "\n"
        return text

    def _write(self, value: LLSD, parts: list, level: int):
        kind = value.kind
        tag = kind.value
        if kind is Kind.ARRAY or kind is Kind.MAP:
            if not len(value):
                parts.append(self._line(level, f"<{tag} />"))
                return
            parts.append(self._line(level, f"<{tag}>"))
            if kind is Kind.ARRAY:
                for item in value.as_array():
                    self._write(item, parts, level + 1)
            else:
                for key, item in value.as_map().items():
                    parts.append(self._line(level + 1, f"<key>{xml_escape(key)}</key>"))
                    self._write(item, parts, level + 1)
            parts.append(self._line(level, f"</{tag}>"))
            return

        text = self._scalar_text(value)
        if text:
            parts.append(self._line(level, f"<{tag}>{text}</{tag}>"))
        else:
            parts.append(self._line(level, f"<{tag} />"))

    @staticmethod
    def _scalar_text(value: LLSD) -> str:
        kind = value.kind
        if kind is Kind.UNDEFINED:
            return ""
        if kind is Kind.BOOLEAN:
            return "true" if value.as_boolean() else "false"
        if kind is Kind.INTEGER:
            return str(value.as_integer())
        if kind is Kind.REAL:
            return format_real(value.as_real())
        if kind is Kind.STRING:
            return xml_escape(value.as_string())
        if kind is Kind.UUID:
            return str(value.as_uuid())
        if kind is Kind.DATE:
            return format_date(value.as_date())
        if kind is Kind.URI:
            return xml_escape(str(value.as_uri()))
        return base64.b64encode(value.as_binary()).decode("ascii")


# ============================================================================
# Parser
# ============================================================================

_INTEGER_RE = re.compile(r"[+-]?\d+")
_REAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_SPECIAL_REALS = {
    "nan": math.nan,
    "+nan": math.nan,
    "-nan": math.nan,
    "inf": math.inf,
    "+inf": math.inf,
    "infinity": math.inf,
    "+infinity": math.inf,
    "-inf": -math.inf,
    "-infinity": -math.inf,
}
_BOOLEANS = {"true": True, "1": True, "false": False, "0": False, "": False}

_ENCODING_DECL_RE = re.compile(rb"\s*<\?xml[^>]*?encoding\s*=\s*[\"']([A-Za-z0-9._-]+)[\"']")

Path = tuple[str, ...]


class XMLDecoder:
    """
    Walks an ElementTree document and rebuilds the LLSD value.

    Args:
        context: Codec options; ``max_depth`` bounds array/map nesting.
    """

    def __init__(self, context: SerializationContext):
        self.max_depth = context.max_depth
        self._scalars = {
            "undef": self._decode_undef,
            "boolean": self._decode_boolean,
            "integer": self._decode_integer,
            "real": self._decode_real,
            "string": self._decode_string,
            "uuid": self._decode_uuid,
            "date": self._decode_date,
            "uri": self._decode_uri,
            "binary": self._decode_binary,
        }

    def decode(self, data: Union[bytes, str]) -> LLSD:
        if isinstance(data, (bytes, bytearray, memoryview)):
            data = bytes(data)
            _check_utf8(data)
        elif not isinstance(data, str):
            raise TypeMismatchError(f"Expected bytes or str, got {type(data).__name__}")
        try:
            root = ET.fromstring(data)
        except ET.ParseError as exc:
            line, column = exc.position
            raise MalformedError(f"Malformed XML at line {line}, column {column}: {exc}") from exc
        return self._decode_root(root)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @staticmethod
    def _check_no_text(text, path: Path):
        if text and text.strip():
            raise MalformedError(f"Unexpected text {text.strip()[:32]!r}", path=path)

    def _children(self, elem, path: Path) -> list:
        self._check_no_text(elem.text, path)
        children = list(elem)
        for child in children:
            self._check_no_text(child.tail, path)
        return children

    def _decode_root(self, root) -> LLSD:
        if root.tag != "llsd":
            raise UnknownTagError(f"Root element must be <llsd>, found <{root.tag}>",
                                  path=(str(root.tag),))
        path = ("llsd",)
        children = self._children(root, path)
        if not children:
            return LLSD.undefined()
        if len(children) > 1:
            raise MalformedError(f"<llsd> holds {len(children)} values, expected one",
                                 path=path)
        return self._decode(children[0], 0, path)

    def _decode(self, elem, depth: int, path: Path) -> LLSD:
        tag = elem.tag
        here = path + (str(tag),)
        if tag == "array":
            return self._decode_array(elem, depth + 1, here)
        if tag == "map":
            return self._decode_map(elem, depth + 1, here)
        decoder = self._scalars.get(tag)
        if decoder is None:
            if tag == "key":
                raise MalformedError("<key> outside of a map", path=here)
            raise UnknownTagError(f"Unknown element <{tag}>", path=here)
        if len(elem):
            raise MalformedError(f"Mixed content inside <{tag}>", path=here)
        return decoder(elem.text or "", elem, here)

    def _check_depth(self, depth: int, path: Path):
        if depth > self.max_depth:
            raise DepthExceededError(f"Nesting deeper than {self.max_depth} levels", path=path)

    def _decode_array(self, elem, depth: int, path: Path) -> LLSD:
        self._check_depth(depth, path)
        children = self._children(elem, path)
        return LLSD.array(
            self._decode(child, depth, path + (f"[{index}]",))
            for index, child in enumerate(children)
        )

    def _decode_map(self, elem, depth: int, path: Path) -> LLSD:
        self._check_depth(depth, path)
        children = self._children(elem, path)
        builder = LLSD.map_builder()
        for index in range(0, len(children), 2):
            key_elem = children[index]
            if key_elem.tag != "key":
                raise MalformedError(f"Expected <key>, found <{key_elem.tag}>",
                                     path=path + (f"[{index}]",))
            if len(key_elem):
                raise MalformedError("Mixed content inside <key>", path=path + ("key",))
            key = key_elem.text or ""
            entry = path + (f"key {key!r}",)
            if index + 1 >= len(children):
                raise MalformedError(f"Key {key!r} has no value", path=entry)
            value_elem = children[index + 1]
            if value_elem.tag == "key":
                raise MalformedError(f"Key {key!r} is followed by another <key>", path=entry)
            if key in builder:
                raise DuplicateKeyError(f"Duplicate map key {key!r}", path=entry)
            builder.insert(key, self._decode(value_elem, depth, entry))
        return builder.build()

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    def _decode_undef(self, text: str, elem, path: Path) -> LLSD:
        self._check_no_text(text, path)
        return LLSD.undefined()

    @staticmethod
    def _decode_boolean(text: str, elem, path: Path) -> LLSD:
        flag = _BOOLEANS.get(text.strip().lower())
        if flag is None:
            raise TypeMismatchError(f"Invalid boolean {text!r}", path=path)
        return LLSD.boolean(flag)

    @staticmethod
    def _decode_integer(text: str, elem, path: Path) -> LLSD:
        text = text.strip()
        if not text:
            return LLSD.integer(0)
        if not _INTEGER_RE.fullmatch(text):
            raise TypeMismatchError(f"Invalid integer {text!r}", path=path)
        number = int(text)
        if not INT32_MIN <= number <= INT32_MAX:
            raise TypeMismatchError(f"Integer {number} out of signed 32-bit range", path=path)
        return LLSD.integer(number)

    @staticmethod
    def _decode_real(text: str, elem, path: Path) -> LLSD:
        text = text.strip()
        if not text:
            return LLSD.real(0.0)
        special = _SPECIAL_REALS.get(text.lower())
        if special is not None:
            return LLSD.real(special)
        if not _REAL_RE.fullmatch(text):
            raise TypeMismatchError(f"Invalid real {text!r}", path=path)
        return LLSD.real(float(text))

    @staticmethod
    def _decode_string(text: str, elem, path: Path) -> LLSD:
        return LLSD.string(text)

    @staticmethod
    def _decode_uuid(text: str, elem, path: Path) -> LLSD:
        text = text.strip()
        if not text:
            return LLSD.uuid(NIL_UUID)
        try:
            return LLSD.uuid(UUID(text))
        except ValueError as exc:
            raise TypeMismatchError(f"Invalid uuid {text!r}", path=path) from exc

    @staticmethod
    def _decode_date(text: str, elem, path: Path) -> LLSD:
        text = text.strip()
        if not text:
            return LLSD.date(EPOCH)
        try:
            return LLSD.date(parse_date(text))
        except (ValueError, OverflowError) as exc:
            raise TypeMismatchError(f"Invalid date {text!r}", path=path) from exc

    @staticmethod
    def _decode_uri(text: str, elem, path: Path) -> LLSD:
        return LLSD.uri(text)

    @staticmethod
    def _decode_binary(text: str, elem, path: Path) -> LLSD:
        encoding = elem.get("encoding", "base64").lower()
        payload = "".join(text.split())
        try:
            if encoding == "base64":
                return LLSD.binary(base64.b64decode(payload, validate=True))
            if encoding == "base16":
                return LLSD.binary(bytes.fromhex(payload))
        except (binascii.Error, ValueError) as exc:
            raise EncodingError(f"Invalid {encoding} payload", path=path) from exc
        raise EncodingError(f"Unsupported binary encoding {encoding!r}", path=path)


def _check_utf8(data: bytes):
    if data.startswith((b"\xff\xfe", b"\xfe\xff")):
        return
    match = _ENCODING_DECL_RE.match(data)
    if match is not None and match.group(1).lower() not in (b"utf-8", b"utf8"):
        return
    try:
        data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise EncodingError(f"Input is not valid UTF-8: {exc.reason}",
                            offset=exc.start) from exc


# ============================================================================
# Encode / Decode
# ============================================================================

def encode(value: LLSD, context: SerializationContext = None) -> bytes:
    """
    Serialize an LLSD value to an XML document.

    Args:
        value: Value to serialize.
        context: Codec options; ``pretty`` and ``indent`` control layout,
            ``xml_declaration`` the leading ``<?xml ?>`` line.

    Returns:
        bytes: UTF-8 encoded document.
    """
    if not isinstance(value, LLSD):
        raise TypeMismatchError(f"Expected an LLSD value, got {type(value).__name__}")
    return XMLFormatter(resolve_context(context)).format(value)


def decode(data: Union[bytes, str], context: SerializationContext = None) -> LLSD:
    """
    Parse an XML LLSD document.

    Raises:
        MalformedError: If the XML is not well-formed or breaks the
            structure rules (root, map pairs, mixed content).
        UnknownTagError: If an element name is outside the vocabulary.
        TypeMismatchError: If scalar text does not fit its element type.
        EncodingError: If the input or a binary payload cannot be decoded.
        DuplicateKeyError: If a map repeats a key.
        DepthExceededError: If containers nest deeper than ``max_depth``.
    """
    return XMLDecoder(resolve_context(context)).decode(data)
