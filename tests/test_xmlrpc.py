"""
Unit tests for the XML-RPC bridge.

These tests validate the value mapping in both directions, the documented
lossy cases, message documents (calls, responses, faults) and the
structural errors of the decoder.
"""

import math
from datetime import datetime, timezone
from uuid import UUID

import pytest

from llsd_serializer import (
    LLSD, SerializationContext, to_llsd,
    MethodCall, MethodResponse, Fault,
    format_method_call, format_method_response, format_fault, format_message,
    format_xmlrpc_value, parse_xmlrpc, parse_xmlrpc_value,
    DepthExceededError, DuplicateKeyError, EncodingError, MalformedError,
    TypeMismatchError, UnknownTagError, UnsupportedConversionError, ErrorKind,
)


# ============================================================================
# Value Encoding Tests
# ============================================================================

@pytest.mark.parametrize("value,expected", [
    (LLSD.boolean(True), "<value><boolean>1</boolean></value>"),
    (LLSD.boolean(False), "<value><boolean>0</boolean></value>"),
    (LLSD.integer(-4), "<value><int>-4</int></value>"),
    (LLSD.real(0.25), "<value><double>0.25</double></value>"),
    (LLSD.string("a<b"), "<value><string>a&lt;b</string></value>"),
    (LLSD.uuid(UUID(int=1)),
     "<value><string>00000000-0000-0000-0000-000000000001</string></value>"),
    (LLSD.uri("http://a/"), "<value><string>http://a/</string></value>"),
    (LLSD.date(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)),
     "<value><dateTime.iso8601>2024-01-02T03:04:05Z</dateTime.iso8601></value>"),
    (LLSD.binary(b"\x00\x01\x02"), "<value><base64>AAEC</base64></value>"),
    (LLSD.array([1]), "<value><array><data><value><int>1</int></value></data></array></value>"),
    (LLSD.map({"k": "v"}),
     "<value><struct><member><name>k</name><value><string>v</string></value>"
     "</member></struct></value>"),
])
def test_value_mapping(value, expected):
    """Each LLSD variant maps to its XML-RPC element."""
    assert format_xmlrpc_value(value) == expected.encode("utf-8")


def test_undefined_is_unsupported_by_default():
    """Undefined has no XML-RPC form unless allow_nil is set."""
    with pytest.raises(UnsupportedConversionError) as excinfo:
        format_xmlrpc_value(to_llsd({"a": [1, None]}))

    assert excinfo.value.kind is ErrorKind.UNSUPPORTED_CONVERSION
    assert excinfo.value.path == ("key 'a'", "[1]")


def test_undefined_with_allow_nil():
    """allow_nil writes the <nil/> extension."""
    result = format_xmlrpc_value(LLSD(), SerializationContext(allow_nil=True))

    assert result == b"<value><nil/></value>"
    assert parse_xmlrpc_value(result) == LLSD()


@pytest.mark.parametrize("real", [math.nan, math.inf, -math.inf])
def test_non_finite_reals_are_unsupported(real):
    """<double> cannot carry NaN or infinities."""
    with pytest.raises(UnsupportedConversionError):
        format_xmlrpc_value(LLSD.real(real))


# ============================================================================
# Value Decoding Tests
# ============================================================================

@pytest.mark.parametrize("text,expected", [
    ("<value><i4>7</i4></value>", LLSD.integer(7)),
    ("<value><i8>-7</i8></value>", LLSD.integer(-7)),
    ("<value><boolean>true</boolean></value>", LLSD.boolean(True)),
    ("<value>bare text</value>", LLSD.string("bare text")),
    ("<value></value>", LLSD.string("")),
    ("<value><double>nan</double></value>", LLSD.real(math.nan)),
    ("<value><dateTime.iso8601>20240102T03:04:05</dateTime.iso8601></value>",
     LLSD.date(datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc))),
    ("<value><base64>\n  AAEC\n</base64></value>", LLSD.binary(b"\x00\x01\x02")),
    ("<value>\n  <array>\n    <data/>\n  </array>\n</value>", LLSD.array()),
    ("<value><struct/></value>", LLSD.map()),
])
def test_value_decoding(text, expected):
    """XML-RPC elements decode to their LLSD variants."""
    assert parse_xmlrpc_value(text) == expected


@pytest.mark.parametrize("value", [
    LLSD.boolean(True),
    LLSD.integer(-2147483648),
    LLSD.real(-0.0),
    LLSD.real(1.7976931348623157e308),
    LLSD.real(5e-324),
    LLSD.string("  spaced \r\n & <tagged> "),
    LLSD.binary(b"\x00\xff" * 8),
    LLSD.date(datetime(1999, 12, 31, 23, 59, 59, 125000, tzinfo=timezone.utc)),
    to_llsd({"": [], " k ": {"n": [1, 2.5, False, b""]}, "s": ""}),
])
def test_lossless_variants_roundtrip(value):
    """Test encode → decode → compare for the variants XML-RPC can carry."""
    decoded = parse_xmlrpc_value(format_xmlrpc_value(value))

    assert decoded == value


def test_decoded_dates_are_utc_aware():
    """Dates decode as aware UTC datetimes."""
    stamp = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)

    decoded = parse_xmlrpc_value(format_xmlrpc_value(LLSD.date(stamp))).as_date()

    assert decoded == stamp
    assert decoded.utcoffset().total_seconds() == 0


@pytest.mark.parametrize("value", [
    to_llsd({"id": UUID(int=9), "uri": LLSD.uri("http://a/"), "n": [1, 2.5, True]}),
    LLSD.string("& < > \" '"),
    LLSD.date(datetime(2001, 2, 3, 4, 5, 6, tzinfo=timezone.utc)),
])
def test_lossy_mapping_reaches_a_fixpoint(value):
    """Encoding the decoded value reproduces the first encoding."""
    first = format_xmlrpc_value(value)

    second = format_xmlrpc_value(parse_xmlrpc_value(first))

    assert second == first


def test_uuid_and_uri_come_back_as_strings():
    """UUID and URI are lossy: they decode as String."""
    value = to_llsd([UUID(int=1), LLSD.uri("http://a/")])

    decoded = parse_xmlrpc_value(format_xmlrpc_value(value))

    assert decoded == LLSD.array(["00000000-0000-0000-0000-000000000001", "http://a/"])


# ============================================================================
# Message Tests
# ============================================================================

def test_method_call_document():
    """methodCall carries the method name and positional params."""
    expected = (
        '<?xml version="1.0" ?><methodCall><methodName>login_to_simulator</methodName>'
        "<params><param><value><int>1</int></value></param>"
        "<param><value><string>x</string></value></param></params></methodCall>"
    ).encode("utf-8")

    result = format_method_call("login_to_simulator", [LLSD.integer(1), LLSD.string("x")])

    assert result == expected
    assert parse_xmlrpc(result) == MethodCall("login_to_simulator",
                                              (LLSD.integer(1), LLSD.string("x")))


def test_method_call_without_params():
    """A call may omit <params>."""
    message = parse_xmlrpc(b"<methodCall><methodName>ping</methodName></methodCall>")

    assert message == MethodCall("ping")
    assert message.params == ()


def test_method_response_roundtrip():
    """methodResponse carries exactly one value."""
    value = to_llsd({"login": "true", "seconds": 30})

    message = parse_xmlrpc(format_method_response(value))

    assert isinstance(message, MethodResponse)
    assert message.value == value


def test_fault_roundtrip():
    """Faults decode to Fault with code and string."""
    data = format_fault(4, "Too many params")

    message = parse_xmlrpc(data)

    assert message == Fault(4, "Too many params")
    assert b"<fault>" in data


def test_format_message_dispatches_on_type():
    """format_message accepts any message object."""
    call = MethodCall("echo", [LLSD.string("hi")])

    assert format_message(call) == format_method_call("echo", [LLSD.string("hi")])
    assert format_message(Fault(1, "x")) == format_fault(1, "x")
    with pytest.raises(TypeMismatchError):
        format_message("echo")


def test_params_must_be_llsd_values():
    """Message params are LLSD values."""
    with pytest.raises(TypeMismatchError):
        format_method_call("echo", [1])


# ============================================================================
# Error Tests
# ============================================================================

def test_unknown_value_element():
    """Unknown typed elements raise UnknownTagError with a path."""
    with pytest.raises(UnknownTagError) as excinfo:
        parse_xmlrpc_value("<value><array><data><value><float>1</float></value></data></array></value>")

    assert excinfo.value.path == ("array", "data", "[0]", "float")


@pytest.mark.parametrize("text", [
    "<value><int>abc</int></value>",
    "<value><int>2147483648</int></value>",
    "<value><boolean>maybe</boolean></value>",
    "<value><double>1.2.3</double></value>",
    "<value><dateTime.iso8601>soon</dateTime.iso8601></value>",
])
def test_invalid_scalar_text(text):
    """Scalar text outside its grammar raises TypeMismatchError."""
    with pytest.raises(TypeMismatchError):
        parse_xmlrpc_value(text)


def test_invalid_base64():
    """A bad base64 payload raises EncodingError."""
    with pytest.raises(EncodingError):
        parse_xmlrpc_value("<value><base64>@@</base64></value>")


def test_invalid_utf8_is_encoding_error():
    """A UTF-8 document must be valid UTF-8."""
    with pytest.raises(EncodingError) as excinfo:
        parse_xmlrpc_value(b"<value><string>\xff</string></value>")
    assert excinfo.value.offset == 15

    with pytest.raises(EncodingError):
        parse_xmlrpc(b"<methodResponse><params><param><value>\xc3\x28</value>"
                     b"</param></params></methodResponse>")


@pytest.mark.parametrize("data", [
    b"<methodCall><params/></methodCall>",
    b"<methodResponse/>",
    b"<methodResponse><params><param><value><int>1</int></value></param>"
    b"<param><value><int>2</int></value></param></params></methodResponse>",
    b"<methodResponse><fault><value><int>1</int></value></fault></methodResponse>",
    b"<somethingElse/>",
    b"<methodCall><methodName>x</methodName>",
    b"<methodResponse><params><param><int>1</int></param></params></methodResponse>",
])
def test_structure_violations_are_malformed(data):
    """Broken document structure raises MalformedError."""
    with pytest.raises(MalformedError):
        parse_xmlrpc(data)


def test_duplicate_struct_member():
    """A struct repeating a member name raises DuplicateKeyError."""
    member = "<member><name>a</name><value><int>1</int></value></member>"

    with pytest.raises(DuplicateKeyError):
        parse_xmlrpc_value(f"<value><struct>{member}{member}</struct></value>")


def test_depth_limit():
    """Arrays nested beyond max_depth raise DepthExceededError."""
    def nested(levels):
        return ("<value><array><data>" * levels + "</data></array></value>" * levels)

    assert parse_xmlrpc_value(nested(128)).is_array()
    with pytest.raises(DepthExceededError):
        parse_xmlrpc_value(nested(129))
