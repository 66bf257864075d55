"""
XML-RPC Bridge.

Maps LLSD values onto the narrower XML-RPC vocabulary and back. The
mapping is lossy in documented ways:

    - UUID and URI values are written as ``<string>`` and read back as
      String values
    - Undefined has no XML-RPC form: encoding it raises
      UnsupportedConversionError unless ``allow_nil`` is set, in which case
      the common ``<nil/>`` extension is written; ``<nil/>`` is always read
    - NaN and infinite reals cannot be written as ``<double>`` and raise
      UnsupportedConversionError
    - Struct member order is kept when present but is not part of the
      XML-RPC contract

Messages:
    - MethodCall(method, params): ``<methodCall>`` request
    - MethodResponse(value): successful ``<methodResponse>``
    - Fault(code, string): ``<methodResponse><fault>`` response

Examples:
    >>> format_method_call("echo", [to_llsd({"n": 1})])
    b'<?xml version="1.0" ?><methodCall><methodName>echo</methodName><params><param><value><struct><member><name>n</name><value><int>1</int></value></member></struct></value></param></params></methodCall>'
"""

import base64
import binascii
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Union

import structlog

from .context import SerializationContext, resolve_context
from .errors import (
    DepthExceededError, DuplicateKeyError, EncodingError, MalformedError,
    TypeMismatchError, UnknownTagError, UnsupportedConversionError,
)
from .value import INT32_MAX, INT32_MIN, LLSD, Kind, format_date, format_real, parse_date
from .xml_codec import XML_DECLARATION, _check_utf8, xml_escape

logger = structlog.get_logger(__name__)


# ============================================================================
# Messages
# ============================================================================

@dataclass(frozen=True)
class MethodCall:
    """An XML-RPC request: method name plus positional parameters."""
    method: str
    params: tuple[LLSD, ...] = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "params", tuple(self.params))


@dataclass(frozen=True)
class MethodResponse:
    """A successful XML-RPC response carrying one value."""
    value: LLSD = field(default_factory=LLSD)


@dataclass(frozen=True)
class Fault:
    """An XML-RPC fault response."""
    code: int
    string: str

    def to_llsd(self) -> LLSD:
        return LLSD.map({"faultCode": self.code, "faultString": self.string})


XmlRpcMessage = Union[MethodCall, MethodResponse, Fault]


# ============================================================================
# Encoder
# ============================================================================

class XmlRpcFormatter:
    """Writes LLSD values using XML-RPC ``<value>`` elements."""

    def __init__(self, context: SerializationContext):
        self.context = context

    def value(self, value: LLSD) -> str:
        parts = []
        self._write(value, parts)
        return "".join(parts)

    def document(self, body: str) -> bytes:
        prefix = XML_DECLARATION if self.context.xml_declaration else ""
        return (prefix + body).encode("utf-8")

    def _write(self, value: LLSD, parts: list):
        kind = value.kind
        parts.append("<value>")
        if kind is Kind.UNDEFINED:
            if not self.context.allow_nil:
                raise UnsupportedConversionError(
                    "XML-RPC has no undefined value; enable allow_nil to write <nil/>"
                )
            parts.append("<nil/>")
        elif kind is Kind.BOOLEAN:
            parts.append(f"<boolean>{1 if value.as_boolean() else 0}</boolean>")
        elif kind is Kind.INTEGER:
            parts.append(f"<int>{value.as_integer()}</int>")
        elif kind is Kind.REAL:
            real = value.as_real()
            if not math.isfinite(real):
                raise UnsupportedConversionError(
                    f"XML-RPC <double> cannot hold {format_real(real)}"
                )
            parts.append(f"<double>{format_real(real)}</double>")
        elif kind is Kind.STRING or kind is Kind.URI or kind is Kind.UUID:
            parts.append(f"<string>{xml_escape(str(value.payload))}</string>")
        elif kind is Kind.DATE:
            parts.append(f"<dateTime.iso8601>{format_date(value.as_date())}</dateTime.iso8601>")
        elif kind is Kind.BINARY:
            encoded = base64.b64encode(value.as_binary()).decode("ascii")
            parts.append(f"<base64>{encoded}</base64>")
        elif kind is Kind.ARRAY:
            parts.append("<array><data>")
            for index, item in enumerate(value.as_array()):
                try:
                    self._write(item, parts)
                except UnsupportedConversionError as err:
                    raise err.with_path(f"[{index}]")
            parts.append("</data></array>")
        else:
            parts.append("<struct>")
            for key, item in value.as_map().items():
                parts.append(f"<member><name>{xml_escape(key)}</name>")
                try:
                    self._write(item, parts)
                except UnsupportedConversionError as err:
                    raise err.with_path(f"key {key!r}")
                parts.append("</member>")
            parts.append("</struct>")
        parts.append("</value>")

    def params(self, params: Iterable[LLSD]) -> str:
        body = "".join(f"<param>{self.value(param)}</param>" for param in params)
        return f"<params>{body}</params>"


def _check_value(value) -> LLSD:
    if not isinstance(value, LLSD):
        raise TypeMismatchError(f"Expected an LLSD value, got {type(value).__name__}")
    return value


def encode_value(value: LLSD, context: SerializationContext = None) -> bytes:
    """Serialize a single value as an XML-RPC ``<value>`` fragment."""
    return XmlRpcFormatter(resolve_context(context)).value(_check_value(value)).encode("utf-8")


def format_method_call(method: str, params: Iterable[LLSD] = (),
                       context: SerializationContext = None) -> bytes:
    """Serialize a ``<methodCall>`` document."""
    formatter = XmlRpcFormatter(resolve_context(context))
    params = [_check_value(param) for param in params]
    return formatter.document(
        f"<methodCall><methodName>{xml_escape(method)}</methodName>"
        f"{formatter.params(params)}</methodCall>"
    )


def format_method_response(value: LLSD, context: SerializationContext = None) -> bytes:
    """Serialize a successful ``<methodResponse>`` document."""
    formatter = XmlRpcFormatter(resolve_context(context))
    return formatter.document(
        f"<methodResponse>{formatter.params([_check_value(value)])}</methodResponse>"
    )


def format_fault(code: int, string: str, context: SerializationContext = None) -> bytes:
    """Serialize a ``<methodResponse><fault>`` document."""
    formatter = XmlRpcFormatter(resolve_context(context))
    fault = Fault(code, string).to_llsd()
    return formatter.document(
        f"<methodResponse><fault>{formatter.value(fault)}</fault></methodResponse>"
    )


def format_message(message: XmlRpcMessage, context: SerializationContext = None) -> bytes:
    """Serialize a MethodCall, MethodResponse or Fault."""
    if isinstance(message, MethodCall):
        return format_method_call(message.method, message.params, context)
    if isinstance(message, MethodResponse):
        return format_method_response(message.value, context)
    if isinstance(message, Fault):
        return format_fault(message.code, message.string, context)
    raise TypeMismatchError(f"Expected an XML-RPC message, got {type(message).__name__}")


# ============================================================================
# Decoder
# ============================================================================

_INTEGER_RE = re.compile(r"[+-]?\d+")
_DOUBLE_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_LENIENT_DOUBLES = {"nan": math.nan, "inf": math.inf, "+inf": math.inf, "-inf": -math.inf}
_BASIC_DATETIME_RE = re.compile(r"(\d{4})(\d{2})(\d{2})T(\d{2}):(\d{2}):(\d{2})")
_BOOLEANS = {"1": True, "true": True, "0": False, "false": False}

Path = tuple[str, ...]


def _parse_datetime(text: str) -> datetime:
    match = _BASIC_DATETIME_RE.fullmatch(text)
    if match is not None:
        return datetime(*map(int, match.groups()), tzinfo=timezone.utc)
    return parse_date(text)


class XmlRpcDecoder:
    """
    Walks an XML-RPC document and rebuilds LLSD values.

    Args:
        context: Codec options; ``max_depth`` bounds array/struct nesting.
    """

    def __init__(self, context: SerializationContext):
        self.max_depth = context.max_depth
        self._scalars = {
            "int": self._decode_int,
            "i4": self._decode_int,
            "i8": self._decode_int,
            "boolean": self._decode_boolean,
            "double": self._decode_double,
            "string": self._decode_string,
            "base64": self._decode_base64,
            "dateTime.iso8601": self._decode_datetime,
            "nil": self._decode_nil,
        }

    @staticmethod
    def parse_document(data: Union[bytes, str]):
        if not isinstance(data, (bytes, bytearray, memoryview, str)):
            raise TypeMismatchError(f"Expected bytes or str, got {type(data).__name__}")
        if not isinstance(data, str):
            data = bytes(data)
            _check_utf8(data)
        try:
            return ET.fromstring(data)
        except ET.ParseError as exc:
            line, column = exc.position
            raise MalformedError(f"Malformed XML at line {line}, column {column}: {exc}") from exc

    # ------------------------------------------------------------------
    # Structure helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _children(elem, path: Path, allow_text: bool = False) -> list:
        if not allow_text and elem.text and elem.text.strip():
            raise MalformedError(f"Unexpected text inside <{elem.tag}>", path=path)
        children = list(elem)
        for child in children:
            if child.tail and child.tail.strip():
                raise MalformedError(f"Unexpected text after <{child.tag}>", path=path)
        return children

    def _only_child(self, elem, tag: str, path: Path):
        children = self._children(elem, path)
        if len(children) != 1 or children[0].tag != tag:
            raise MalformedError(f"<{elem.tag}> must hold exactly one <{tag}>", path=path)
        return children[0]

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def decode_message(self, root) -> XmlRpcMessage:
        path = (str(root.tag),)
        if root.tag == "methodCall":
            children = self._children(root, path)
            names = [child for child in children if child.tag == "methodName"]
            if len(names) != 1 or len(names[0]):
                raise MalformedError("<methodCall> needs one <methodName>", path=path)
            method = (names[0].text or "").strip()
            params = [child for child in children if child.tag == "params"]
            if len(params) > 1 or len(children) != len(names) + len(params):
                raise MalformedError("Unexpected elements inside <methodCall>", path=path)
            values = self._decode_params(params[0], path) if params else ()
            return MethodCall(method, values)
        if root.tag == "methodResponse":
            child = self._children(root, path)
            if len(child) != 1:
                raise MalformedError("<methodResponse> needs one <params> or <fault>",
                                     path=path)
            if child[0].tag == "fault":
                return self._decode_fault(child[0], path + ("fault",))
            if child[0].tag != "params":
                raise MalformedError(f"Unexpected <{child[0].tag}> in <methodResponse>",
                                     path=path)
            values = self._decode_params(child[0], path)
            if len(values) > 1:
                raise MalformedError("<methodResponse> holds more than one param", path=path)
            return MethodResponse(values[0] if values else LLSD.undefined())
        raise MalformedError(f"Unknown XML-RPC document <{root.tag}>", path=path)

    def _decode_params(self, elem, path: Path) -> tuple[LLSD, ...]:
        path = path + ("params",)
        values = []
        for index, param in enumerate(self._children(elem, path)):
            here = path + (f"[{index}]",)
            if param.tag != "param":
                raise MalformedError(f"Expected <param>, found <{param.tag}>", path=here)
            values.append(self.decode_value(self._only_child(param, "value", here), 0, here))
        return tuple(values)

    def _decode_fault(self, elem, path: Path) -> Fault:
        value = self.decode_value(self._only_child(elem, "value", path), 0, path)
        if not value.is_map():
            raise MalformedError("Fault value must be a struct", path=path)
        code, string = value["faultCode"], value["faultString"]
        if not code.is_integer() or not string.is_string():
            raise MalformedError("Fault needs an int faultCode and a string faultString",
                                 path=path)
        logger.debug("xmlrpc_fault_decoded", code=code.as_integer())
        return Fault(code.as_integer(), string.as_string())

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def decode_value(self, elem, depth: int, path: Path) -> LLSD:
        if elem.tag != "value":
            raise MalformedError(f"Expected <value>, found <{elem.tag}>", path=path)
        children = self._children(elem, path, allow_text=True)
        if not children:
            return LLSD.string(elem.text or "")
        if len(children) > 1 or (elem.text and elem.text.strip()):
            raise MalformedError("<value> must hold one typed element", path=path)
        typed = children[0]
        tag = typed.tag
        here = path + (str(tag),)
        if tag == "array":
            return self._decode_array(typed, depth + 1, here)
        if tag == "struct":
            return self._decode_struct(typed, depth + 1, here)
        decoder = self._scalars.get(tag)
        if decoder is None:
            raise UnknownTagError(f"Unknown XML-RPC element <{tag}>", path=here)
        if len(typed):
            raise MalformedError(f"Mixed content inside <{tag}>", path=here)
        return decoder(typed.text or "", here)

    def _check_depth(self, depth: int, path: Path):
        if depth > self.max_depth:
            raise DepthExceededError(f"Nesting deeper than {self.max_depth} levels", path=path)

    def _decode_array(self, elem, depth: int, path: Path) -> LLSD:
        self._check_depth(depth, path)
        data = self._only_child(elem, "data", path)
        path = path + ("data",)
        return LLSD.array(
            self.decode_value(child, depth, path + (f"[{index}]",))
            for index, child in enumerate(self._children(data, path))
        )

    def _decode_struct(self, elem, depth: int, path: Path) -> LLSD:
        self._check_depth(depth, path)
        builder = LLSD.map_builder()
        for index, member in enumerate(self._children(elem, path)):
            here = path + (f"[{index}]",)
            if member.tag != "member":
                raise MalformedError(f"Expected <member>, found <{member.tag}>", path=here)
            parts = {child.tag: child for child in self._children(member, here)}
            if set(parts) != {"name", "value"} or len(member) != 2:
                raise MalformedError("<member> needs one <name> and one <value>", path=here)
            name = parts["name"].text or ""
            entry = path + (f"key {name!r}",)
            if name in builder:
                raise DuplicateKeyError(f"Duplicate struct member {name!r}", path=entry)
            builder.insert(name, self.decode_value(parts["value"], depth, entry))
        return builder.build()

    # ------------------------------------------------------------------
    # Scalars
    # ------------------------------------------------------------------

    @staticmethod
    def _decode_int(text: str, path: Path) -> LLSD:
        text = text.strip()
        if not _INTEGER_RE.fullmatch(text):
            raise TypeMismatchError(f"Invalid int {text!r}", path=path)
        number = int(text)
        if not INT32_MIN <= number <= INT32_MAX:
            raise TypeMismatchError(f"Integer {number} out of signed 32-bit range", path=path)
        return LLSD.integer(number)

    @staticmethod
    def _decode_boolean(text: str, path: Path) -> LLSD:
        flag = _BOOLEANS.get(text.strip().lower())
        if flag is None:
            raise TypeMismatchError(f"Invalid boolean {text!r}", path=path)
        return LLSD.boolean(flag)

    @staticmethod
    def _decode_double(text: str, path: Path) -> LLSD:
        text = text.strip()
        special = _LENIENT_DOUBLES.get(text.lower())
        if special is not None:
            return LLSD.real(special)
        if not _DOUBLE_RE.fullmatch(text):
            raise TypeMismatchError(f"Invalid double {text!r}", path=path)
        return LLSD.real(float(text))

    @staticmethod
    def _decode_string(text: str, path: Path) -> LLSD:
        return LLSD.string(text)

    @staticmethod
    def _decode_base64(text: str, path: Path) -> LLSD:
        try:
            return LLSD.binary(base64.b64decode("".join(text.split()), validate=True))
        except (binascii.Error, ValueError) as exc:
            raise EncodingError("Invalid base64 payload", path=path) from exc

    @staticmethod
    def _decode_datetime(text: str, path: Path) -> LLSD:
        try:
            return LLSD.date(_parse_datetime(text.strip()))
        except (ValueError, OverflowError) as exc:
            raise TypeMismatchError(f"Invalid dateTime.iso8601 {text!r}", path=path) from exc

    @staticmethod
    def _decode_nil(text: str, path: Path) -> LLSD:
        return LLSD.undefined()


def parse_xmlrpc(data: Union[bytes, str], context: SerializationContext = None) -> XmlRpcMessage:
    """
    Parse a ``<methodCall>`` or ``<methodResponse>`` document.

    Returns:
        MethodCall, MethodResponse or Fault.

    Raises:
        MalformedError: If the document structure is not XML-RPC.
        UnknownTagError: If a value element is outside the vocabulary.
        TypeMismatchError: If scalar text does not fit its element type.
        EncodingError: If a base64 payload is invalid.
        DepthExceededError: If arrays/structs nest deeper than ``max_depth``.
    """
    decoder = XmlRpcDecoder(resolve_context(context))
    return decoder.decode_message(decoder.parse_document(data))


def decode_value(data: Union[bytes, str], context: SerializationContext = None) -> LLSD:
    """Parse a single XML-RPC ``<value>`` fragment."""
    decoder = XmlRpcDecoder(resolve_context(context))
    root = decoder.parse_document(data)
    return decoder.decode_value(root, 0, ())
