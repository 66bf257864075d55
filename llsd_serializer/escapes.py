"""
Backslash escape tables for quoted LLSD string literals.

Quoted strings appear in notation input and, from some producers, inside
binary LLSD. Both codecs read them with ``read_quoted``; the notation
printer writes them with ``quote_bytes``.
"""

import re

from .errors import MalformedError, UnterminatedLiteralError

_UNESCAPES = {
    ord("a"): 0x07,
    ord("b"): 0x08,
    ord("f"): 0x0C,
    ord("n"): 0x0A,
    ord("r"): 0x0D,
    ord("t"): 0x09,
    ord("v"): 0x0B,
}

_NAMED_ESCAPES = {value: b"\\" + bytes([key]) for key, value in _UNESCAPES.items()}

_SPECIALS = {
    ord("'"): re.compile(rb"[\\']"),
    ord('"'): re.compile(rb'[\\"]'),
}

_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


def _escape_table(quote: int) -> tuple[bytes, ...]:
    table = []
    for byte in range(256):
        if byte == quote or byte == 0x5C:
            table.append(b"\\" + bytes([byte]))
        elif byte in _NAMED_ESCAPES:
            table.append(_NAMED_ESCAPES[byte])
        elif byte < 0x20 or byte >= 0x7F:
            table.append(b"\\x%02x" % byte)
        else:
            table.append(bytes([byte]))
    return tuple(table)


_ESCAPE_TABLES = {quote: _escape_table(quote) for quote in _SPECIALS}


def quote_bytes(data: bytes, quote: bytes = b"'") -> bytes:
    """Wrap ``data`` in ``quote`` characters, escaping to printable ASCII."""
    table = _ESCAPE_TABLES[quote[0]]
    return quote + b"".join(table[byte] for byte in data) + quote


def read_quoted(data: bytes, pos: int) -> tuple[bytes, int]:
    """
    Read the quoted literal starting at ``data[pos]``.

    Args:
        data: Input buffer.
        pos: Offset of the opening quote (``'`` or ``"``).

    Returns:
        Tuple of (unescaped bytes, offset just past the closing quote).

    Raises:
        UnterminatedLiteralError: If the input ends before the closing quote.
        MalformedError: If a ``\\x`` escape is not followed by two hex digits.
    """
    quote = data[pos]
    special = _SPECIALS[quote]
    out = bytearray()
    i = pos + 1
    end = len(data)
    while True:
        match = special.search(data, i)
        if match is None:
            raise UnterminatedLiteralError("Unterminated string literal", offset=pos)
        j = match.start()
        out += data[i:j]
        if data[j] == quote:
            return bytes(out), j + 1
        if j + 1 >= end:
            raise UnterminatedLiteralError("Unterminated string literal", offset=pos)
        escaped = data[j + 1]
        if escaped == ord("x"):
            digits = data[j + 2:j + 4]
            if len(digits) != 2 or not all(d in _HEX_DIGITS for d in digits):
                raise MalformedError("Invalid \\x escape in string literal", offset=j)
            out.append(int(digits, 16))
            i = j + 4
        else:
            out.append(_UNESCAPES.get(escaped, escaped))
            i = j + 2
