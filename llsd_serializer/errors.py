"""
LLSD Error Taxonomy.

Every failure raised by the codecs, the conversion layer and the record
mapping layer is an ``LLSDError`` subclass. Each exception carries a
machine-readable ``kind`` plus location context, so callers can match on
the kind instead of parsing messages.

Location context:
    - ``offset``: byte offset into binary or notation input
    - ``path``: tuple of segments inside a tree, e.g.
      ``("llsd", "map", "key 'a'", "[1]")`` for XML input, or
      ``("field 'pos'", "[2]")`` for a record conversion

Examples:
    >>> try:
    ...     parse_binary(b"i\\x00\\x00")
    ... except LLSDError as err:
    ...     err.kind, err.offset
    (<ErrorKind.TRUNCATED: 2>, 1)
"""

from enum import IntEnum
from typing import Iterable, Optional


class ErrorKind(IntEnum):
    """Discriminant shared by all LLSD exceptions."""

    TYPE_MISMATCH = 1
    TRUNCATED = 2
    MALFORMED = 3
    ENCODING_ERROR = 4
    UNKNOWN_TAG = 5
    UNTERMINATED_LITERAL = 6
    DEPTH_EXCEEDED = 7
    UNSUPPORTED_CONVERSION = 8
    DUPLICATE_KEY = 9
    RANGE_ERROR = 10
    UNEXPECTED_TOKEN = 11
    MISSING_FIELD = 12
    UNKNOWN_FIELD = 13


# ============================================================================
# Base Exception
# ============================================================================

class LLSDError(Exception):
    """
    Base class of every LLSD failure.

    Args:
        message: Human readable description of the fault.
        offset: Byte offset into the input, when the input is a flat buffer.
        path: Segments locating the fault inside a tree.
    """

    kind: ErrorKind = ErrorKind.MALFORMED

    def __init__(self, message: str, *, offset: Optional[int] = None,
                 path: Iterable[str] = ()):
        super().__init__(message)
        self.message = message
        self.offset = offset
        self.path: tuple[str, ...] = tuple(path)

    def with_path(self, segment: str) -> "LLSDError":
        """Prepend a path segment and return the same exception for re-raising."""
        self.path = (segment,) + self.path
        return self

    @property
    def location(self) -> str:
        """Printable location of the fault, empty when none is known."""
        parts = []
        if self.path:
            parts.append("/".join(self.path))
        if self.offset is not None:
            parts.append(f"offset {self.offset}")
        return ", ".join(parts)

    def __str__(self) -> str:
        location = self.location
        return f"{self.message} (at {location})" if location else self.message

    def __repr__(self) -> str:
        return (f"{type(self).__name__}({self.message!r}, offset={self.offset!r}, "
                f"path={self.path!r})")


# ============================================================================
# Concrete Kinds
# ============================================================================

class TypeMismatchError(LLSDError, TypeError):
    """A value had a different variant than the operation required."""
    kind = ErrorKind.TYPE_MISMATCH


class TruncatedError(LLSDError):
    """Input ended before a declared or implied payload was complete."""
    kind = ErrorKind.TRUNCATED


class MalformedError(LLSDError, ValueError):
    """Tokens were recognised but their content is inconsistent."""
    kind = ErrorKind.MALFORMED


class EncodingError(LLSDError, ValueError):
    """Invalid UTF-8 or invalid base64/base16 payload."""
    kind = ErrorKind.ENCODING_ERROR


class UnknownTagError(LLSDError):
    """Binary tag byte or element name outside the closed vocabulary."""
    kind = ErrorKind.UNKNOWN_TAG


class UnterminatedLiteralError(LLSDError):
    """Notation literal or container missing its closing delimiter."""
    kind = ErrorKind.UNTERMINATED_LITERAL


class DepthExceededError(LLSDError):
    """Nesting went deeper than the configured maximum depth."""
    kind = ErrorKind.DEPTH_EXCEEDED


class UnsupportedConversionError(LLSDError):
    """The target vocabulary has no safe mapping for this value."""
    kind = ErrorKind.UNSUPPORTED_CONVERSION


class DuplicateKeyError(LLSDError, ValueError):
    """A map key was inserted or decoded twice."""
    kind = ErrorKind.DUPLICATE_KEY


class RangeError(LLSDError, OverflowError):
    """A number does not fit the target numeric width."""
    kind = ErrorKind.RANGE_ERROR


class UnexpectedTokenError(LLSDError):
    """Notation input has a token that starts no known production."""
    kind = ErrorKind.UNEXPECTED_TOKEN


class MissingFieldError(LLSDError):
    """A required record field is absent from the map."""
    kind = ErrorKind.MISSING_FIELD


class UnknownFieldError(LLSDError):
    """A map carries a key that the record does not declare."""
    kind = ErrorKind.UNKNOWN_FIELD
