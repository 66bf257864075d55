"""
LLSD Serialization.

This package implements the LLSD structured data model and its wire
encodings: binary, XML and notation, plus a bridge to XML-RPC documents.
Binary layouts are declared with the Construct library.

Key Features:
    - One immutable ``LLSD`` value type with structural equality
    - Binary, XML and notation codecs that round-trip every value
    - XML-RPC bridge for ``methodCall``/``methodResponse``/fault documents
    - Typed errors carrying a byte offset or element path
    - Depth-bounded decoding (``SerializationContext.max_depth``)
    - ``@llsdclass`` record mapping driven by type hints

Public API:
    - format_binary / format_xml / format_pretty_xml / format_notation
    - parse_binary / parse_xml / parse_notation / parse
    - format_xmlrpc_value / parse_xmlrpc_value / parse_xmlrpc
    - to_llsd / from_llsd and the ``to_*`` extractors

Usage:
    >>> from llsd_serializer import LLSD, format_binary, parse
    >>>
    >>> value = LLSD.map({"a": LLSD.integer(1), "b": [True, None]})
    >>> data = format_binary(value)
    >>> parse(data, "binary") == value
    True

Record Mapping:
    >>> from llsd_serializer import llsdclass, format_notation
    >>>
    >>> @llsdclass(rename_all="camelCase")
    ... class Region:
    ...     region_name: str
    ...     agent_count: int = 0
    >>>
    >>> format_notation(Region("Ahern", 3))
    b"{'regionName':'Ahern','agentCount':i3}"
"""

from .api import (
    Format,
    CONTENT_TYPES,
    detect_format,
    format_binary,
    format_xml,
    format_pretty_xml,
    format_notation,
    format_xmlrpc_value,
    parse,
    parse_binary,
    parse_xml,
    parse_notation,
    parse_xmlrpc_value,
)

from .context import (
    DEFAULT_MAX_DEPTH,
    SerializationContext,
)

from .errors import (
    ErrorKind,
    LLSDError,
    TypeMismatchError,
    TruncatedError,
    MalformedError,
    EncodingError,
    UnknownTagError,
    UnterminatedLiteralError,
    DepthExceededError,
    UnsupportedConversionError,
    DuplicateKeyError,
    RangeError,
    UnexpectedTokenError,
    MissingFieldError,
    UnknownFieldError,
)

from .value import (
    LLSD,
    Kind,
    URI,
    UNDEFINED,
    MapBuilder,
    ArrayBuilder,
)

from .conversion import (
    to_llsd,
    from_llsd,
    # Extractors
    to_bool,
    to_int,
    to_float,
    to_str,
    to_bytes,
    to_uuid,
    to_uri,
    to_datetime,
    # Width-checked extractors
    to_int8, to_int16, to_int32, to_int64,
    to_uint8, to_uint16, to_uint32, to_uint64,
    to_float32,
    # Collection extractors
    to_optional,
    to_list,
    to_dict,
    to_tuple,
)

from .xmlrpc import (
    MethodCall,
    MethodResponse,
    Fault,
    format_method_call,
    format_method_response,
    format_fault,
    format_message,
    parse_xmlrpc,
)

from .decorators import (
    # Decorators
    llsdclass,
    llsdfield,
    # Helper functions
    is_llsdclass,
    get_llsdclass_by_name,
    # Registry (for testing/debugging)
    _LLSDCLASS_REGISTRY,
)

__all__ = [
    # Main API
    "Format",
    "CONTENT_TYPES",
    "detect_format",
    "format_binary",
    "format_xml",
    "format_pretty_xml",
    "format_notation",
    "format_xmlrpc_value",
    "parse",
    "parse_binary",
    "parse_xml",
    "parse_notation",
    "parse_xmlrpc_value",
    # Configuration
    "DEFAULT_MAX_DEPTH",
    "SerializationContext",
    # Errors
    "ErrorKind",
    "LLSDError",
    "TypeMismatchError",
    "TruncatedError",
    "MalformedError",
    "EncodingError",
    "UnknownTagError",
    "UnterminatedLiteralError",
    "DepthExceededError",
    "UnsupportedConversionError",
    "DuplicateKeyError",
    "RangeError",
    "UnexpectedTokenError",
    "MissingFieldError",
    "UnknownFieldError",
    # Values
    "LLSD",
    "Kind",
    "URI",
    "UNDEFINED",
    "MapBuilder",
    "ArrayBuilder",
    # Conversion
    "to_llsd",
    "from_llsd",
    "to_bool",
    "to_int",
    "to_float",
    "to_str",
    "to_bytes",
    "to_uuid",
    "to_uri",
    "to_datetime",
    "to_int8", "to_int16", "to_int32", "to_int64",
    "to_uint8", "to_uint16", "to_uint32", "to_uint64",
    "to_float32",
    "to_optional",
    "to_list",
    "to_dict",
    "to_tuple",
    # XML-RPC
    "MethodCall",
    "MethodResponse",
    "Fault",
    "format_method_call",
    "format_method_response",
    "format_fault",
    "format_message",
    "parse_xmlrpc",
    # Decorators and helpers
    "llsdclass",
    "llsdfield",
    "is_llsdclass",
    "get_llsdclass_by_name",
    "_LLSDCLASS_REGISTRY",
]

__version__ = "0.1.0"
