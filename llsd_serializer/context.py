"""
Serialization Context - options shared by every LLSD codec.
"""
from typing import Optional

DEFAULT_MAX_DEPTH = 128
"""Default nesting limit for arrays and maps on decode."""

BINARY_ENCODINGS = ("base64", "base16", "raw")


class SerializationContext:
    """Codec configuration"""

    def __init__(self,
                 max_depth: int = DEFAULT_MAX_DEPTH,
                 pretty: bool = False,
                 indent: str = "  ",
                 boolean_digits: bool = False,  # notation: 1/0 instead of true/false
                 binary_encoding: str = "base64",  # notation: b64, b16 or b(n) raw
                 binary_header: bool = False,  # binary: emit <? LLSD/Binary ?>
                 allow_nil: bool = False,  # xml-rpc: emit <nil/> for undefined
                 xml_declaration: bool = True):
        if max_depth < 1:
            raise ValueError(f"max_depth must be positive, got {max_depth}")
        if binary_encoding not in BINARY_ENCODINGS:
            raise ValueError(
                f"Unsupported binary encoding: {binary_encoding!r}. "
                f"Supported encodings: {', '.join(BINARY_ENCODINGS)}"
            )
        self.max_depth = max_depth
        self.pretty = pretty
        self.indent = indent
        self.boolean_digits = boolean_digits
        self.binary_encoding = binary_encoding
        self.binary_header = binary_header
        self.allow_nil = allow_nil
        self.xml_declaration = xml_declaration

    def replace(self, **changes) -> "SerializationContext":
        """Copy of this context with some options changed."""
        options = dict(vars(self))
        options.update(changes)
        return SerializationContext(**options)

    def __repr__(self) -> str:
        options = ", ".join(f"{name}={value!r}" for name, value in vars(self).items())
        return f"SerializationContext({options})"


def resolve_context(context: Optional[SerializationContext]) -> SerializationContext:
    """Return ``context`` or the default context when ``None``."""
    return context if context is not None else SerializationContext()
