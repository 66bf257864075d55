"""
Public API for LLSD Serialization.

This module provides the format-level entry points. Every ``format_*``
function accepts an ``LLSD`` value or any native Python value accepted by
``to_llsd`` (including @llsdclass instances) and returns ``bytes``. Every
``parse_*`` function returns an ``LLSD`` value.

Functions:
    format_binary / parse_binary: Binary LLSD
    format_xml / format_pretty_xml / parse_xml: XML LLSD
    format_notation / parse_notation: Notation LLSD
    format_xmlrpc_value / parse_xmlrpc_value: XML-RPC ``<value>`` fragments
    parse: Auto-detecting dispatcher
"""

from enum import Enum
from typing import Any, Optional, Union

import structlog

from . import binary, notation, xml_codec, xmlrpc
from .context import SerializationContext, resolve_context
from .conversion import to_llsd
from .value import LLSD

logger = structlog.get_logger(__name__)


class Format(Enum):
    """Wire formats understood by ``parse``."""
    BINARY = "binary"
    XML = "xml"
    NOTATION = "notation"
    XMLRPC = "xmlrpc"


CONTENT_TYPES = {
    Format.BINARY: "application/llsd+binary",
    Format.XML: "application/llsd+xml",
    Format.NOTATION: "application/llsd+notation",
    Format.XMLRPC: "text/xml",
}

_BY_CONTENT_TYPE = {mime: fmt for fmt, mime in CONTENT_TYPES.items()}


def _as_llsd(value: Any, context: SerializationContext) -> LLSD:
    if isinstance(value, LLSD):
        return value
    return to_llsd(value, max_depth=context.max_depth)


# ============================================================================
# Formatting
# ============================================================================

def format_binary(value: Any, context: Optional[SerializationContext] = None) -> bytes:
    """
    Serialize a value to binary LLSD.

    Examples:
        >>> format_binary(42).hex()
        '690000002a'
        >>> format_binary({"a": [True, None]}).hex()
        '7b000000016b00000001615b0000000231215d7d'
    """
    context = resolve_context(context)
    return binary.encode(_as_llsd(value, context), context)


def format_xml(value: Any, context: Optional[SerializationContext] = None) -> bytes:
    """
    Serialize a value to compact XML LLSD.

    Examples:
        >>> format_xml("a<b")
        b'<?xml version="1.0" ?><llsd><string>a&lt;b</string></llsd>'
    """
    context = resolve_context(context)
    return xml_codec.encode(_as_llsd(value, context), context)


def format_pretty_xml(value: Any, context: Optional[SerializationContext] = None) -> bytes:
    """Serialize a value to indented XML LLSD."""
    context = resolve_context(context).replace(pretty=True)
    return xml_codec.encode(_as_llsd(value, context), context)


def format_notation(value: Any, context: Optional[SerializationContext] = None) -> bytes:
    """
    Serialize a value to notation LLSD.

    Examples:
        >>> format_notation({"n": 1.5})
        b"{'n':r1.5}"
    """
    context = resolve_context(context)
    return notation.encode(_as_llsd(value, context), context)


def format_xmlrpc_value(value: Any, context: Optional[SerializationContext] = None) -> bytes:
    """Serialize a value as an XML-RPC ``<value>`` fragment."""
    context = resolve_context(context)
    return xmlrpc.encode_value(_as_llsd(value, context), context)


# ============================================================================
# Parsing
# ============================================================================

def parse_binary(data: bytes, context: Optional[SerializationContext] = None) -> LLSD:
    """Parse binary LLSD, with or without the ``<? LLSD/Binary ?>`` header."""
    return binary.decode(data, context)


def parse_xml(data: Union[bytes, str], context: Optional[SerializationContext] = None) -> LLSD:
    """Parse an XML LLSD document."""
    return xml_codec.decode(data, context)


def parse_notation(data: Union[bytes, str], context: Optional[SerializationContext] = None) -> LLSD:
    """Parse notation LLSD. Empty input is Undefined."""
    return notation.decode(data, context)


def parse_xmlrpc_value(data: Union[bytes, str],
                       context: Optional[SerializationContext] = None) -> LLSD:
    """Parse a standalone XML-RPC ``<value>`` fragment."""
    return xmlrpc.decode_value(data, context)


_PARSERS = {
    Format.BINARY: parse_binary,
    Format.XML: parse_xml,
    Format.NOTATION: parse_notation,
    Format.XMLRPC: parse_xmlrpc_value,
}


def _resolve_format(format: Union[Format, str]) -> Format:
    if isinstance(format, Format):
        return format
    if format in _BY_CONTENT_TYPE:
        return _BY_CONTENT_TYPE[format]
    try:
        return Format(format)
    except ValueError:
        raise ValueError(
            f"Unknown LLSD format {format!r}. "
            f"Supported formats: {', '.join(f.value for f in Format)}"
        ) from None


def detect_format(data: Union[bytes, str]) -> Format:
    """
    Guess the wire format of ``data`` from its first bytes.

    A binary header selects binary, a notation header selects notation,
    any other leading ``<`` selects XML and everything else is notation.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    head = bytes(data[:64]).lstrip()
    if head.startswith(b"<?"):
        header = head[2:head.find(b"?>")].strip().lower()
        if header == b"llsd/binary":
            return Format.BINARY
        if header == b"llsd/notation":
            return Format.NOTATION
        return Format.XML
    if head.startswith(b"<"):
        return Format.XML
    return Format.NOTATION


def parse(data: Union[bytes, str], format: Union[Format, str, None] = None,
          context: Optional[SerializationContext] = None) -> LLSD:
    """
    Parse LLSD in any supported format.

    Args:
        data: Encoded document.
        format: A ``Format``, its name (``"binary"``, ``"xml"``,
            ``"notation"``, ``"xmlrpc"``) or its content type. Detected
            from the data when omitted.
        context: Codec options passed to the selected parser.

    Returns:
        LLSD: The decoded value.

    Raises:
        ValueError: If ``format`` is not a known format.
        LLSDError: Any decode error of the selected parser.

    Examples:
        >>> parse(b"[i1, i2]")
        LLSD.array([LLSD.integer(1), LLSD.integer(2)])
    """
    if format is None:
        fmt = detect_format(data)
        logger.debug("llsd_format_detected", format=fmt.value)
    else:
        fmt = _resolve_format(format)
    if fmt is Format.BINARY and isinstance(data, str):
        data = data.encode("utf-8")
    return _PARSERS[fmt](data, context)
