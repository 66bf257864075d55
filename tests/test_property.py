"""Property-based tests using Hypothesis."""
from __future__ import annotations

from datetime import datetime, timezone

from hypothesis import given, settings
from hypothesis import strategies as st

from llsd_serializer import (
    LLSD,
    format_binary, format_notation, format_xml, format_pretty_xml, format_xmlrpc_value,
    parse, parse_binary, parse_notation, parse_xml, parse_xmlrpc_value,
)

# Text XML 1.0 can carry: no surrogates, control characters or noncharacters.
xml_text = st.text(alphabet=st.characters(blacklist_categories=("Cs", "Cc", "Cn")), max_size=20)
any_text = st.text(alphabet=st.characters(blacklist_categories=("Cs",)), max_size=20)

dates = st.datetimes(
    min_value=datetime(1900, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=st.just(timezone.utc),
).map(lambda d: d.replace(microsecond=d.microsecond // 1000 * 1000))


def llsd_values(text, finite=False, undefined=True):
    """Recursive strategy over every LLSD variant."""
    scalars = [
        st.booleans().map(LLSD.boolean),
        st.integers(min_value=-2**31, max_value=2**31 - 1).map(LLSD.integer),
        st.floats(allow_nan=not finite, allow_infinity=not finite).map(LLSD.real),
        text.map(LLSD.string),
        text.map(LLSD.uri),
        st.uuids().map(LLSD.uuid),
        dates.map(LLSD.date),
        st.binary(max_size=32).map(LLSD.binary),
    ]
    if undefined:
        scalars.append(st.just(LLSD.undefined()))
    return st.recursive(
        st.one_of(scalars),
        lambda children: st.one_of(
            st.lists(children, max_size=4).map(LLSD.array),
            st.dictionaries(text, children, max_size=4).map(LLSD.map),
        ),
        max_leaves=20,
    )


class TestRoundTripProperties:
    """Every LLSD value survives each lossless format."""

    @given(value=llsd_values(any_text))
    def test_binary_roundtrip(self, value: LLSD) -> None:
        """Binary encode → decode returns an equal value."""
        assert parse_binary(format_binary(value)) == value

    @given(value=llsd_values(xml_text))
    def test_xml_roundtrip(self, value: LLSD) -> None:
        """XML encode → decode returns an equal value."""
        assert parse_xml(format_xml(value)) == value

    @given(value=llsd_values(xml_text))
    @settings(max_examples=50)
    def test_pretty_xml_roundtrip(self, value: LLSD) -> None:
        """Indentation does not change the decoded value."""
        assert parse_xml(format_pretty_xml(value)) == value

    @given(value=llsd_values(any_text))
    def test_notation_roundtrip(self, value: LLSD) -> None:
        """Notation encode → decode returns an equal value."""
        assert parse_notation(format_notation(value)) == value

    @given(value=llsd_values(any_text))
    def test_notation_is_ascii(self, value: LLSD) -> None:
        """Notation output never contains non-ASCII bytes."""
        assert format_notation(value).isascii()

    @given(value=llsd_values(xml_text))
    @settings(max_examples=50)
    def test_detection_picks_the_right_parser(self, value: LLSD) -> None:
        """parse() without a format decodes XML and notation output."""
        assert parse(format_xml(value)) == value
        assert parse(format_notation(value)) == value


class TestXmlRpcProperties:
    """XML-RPC keeps what it can carry and is stable after one pass."""

    @given(value=llsd_values(xml_text, finite=True, undefined=False))
    def test_encoding_reaches_a_fixpoint(self, value: LLSD) -> None:
        """encode(decode(encode(v))) == encode(v)."""
        first = format_xmlrpc_value(value)

        assert format_xmlrpc_value(parse_xmlrpc_value(first)) == first

    @given(value=st.recursive(
        st.one_of(
            st.booleans().map(LLSD.boolean),
            st.integers(min_value=-2**31, max_value=2**31 - 1).map(LLSD.integer),
            st.floats(allow_nan=False, allow_infinity=False).map(LLSD.real),
            xml_text.map(LLSD.string),
            dates.map(LLSD.date),
            st.binary(max_size=32).map(LLSD.binary),
        ),
        lambda children: st.one_of(
            st.lists(children, max_size=4).map(LLSD.array),
            st.dictionaries(xml_text, children, max_size=4).map(LLSD.map),
        ),
        max_leaves=20,
    ))
    def test_lossless_variants_roundtrip(self, value: LLSD) -> None:
        """Variants XML-RPC can carry decode back to an equal value."""
        assert parse_xmlrpc_value(format_xmlrpc_value(value)) == value
