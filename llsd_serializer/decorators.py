"""
Decorators for LLSD Record Mapping.

This module provides the ``@llsdclass`` decorator, which turns a Python
class into a dataclass that converts to and from an LLSD map. Field
conversion is driven by the type hints, so a record definition is all
that is needed.

Field Options (``llsdfield``):
    - rename: map key used instead of the field name
    - default / default_factory: value used when the key is absent
    - skip: never written, never read (the default is used)
    - skip_serializing / skip_deserializing: one-way skip
    - flatten: the nested record's keys are merged into this map
    - with_: object with ``serialize(value) -> LLSD`` and
      ``deserialize(LLSD) -> value`` used instead of the type hint

Class Options (``@llsdclass``):
    - rename_all: ``snake_case``, ``kebab-case``, ``camelCase``,
      ``PascalCase``, ``SCREAMING_SNAKE_CASE``, ``lowercase``, ``UPPERCASE``
    - deny_unknown_fields: reject map keys that no field declares
    - name: registry name (defaults to the class name)

Examples:
    >>> @llsdclass(rename_all="camelCase")
    ... class Agent:
    ...     agent_id: UUID
    ...     display_name: str = ""
    ...     tags: list[str] = llsdfield(default_factory=list)
    >>>
    >>> value = Agent(UUID(int=1), "Ruth").to_llsd()
    >>> sorted(value.as_map())
    ['agentId', 'displayName', 'tags']
    >>> Agent.from_llsd(value).display_name
    'Ruth'
"""

import dataclasses
import types
from datetime import datetime
from typing import Any, Optional, Type, Union, get_args, get_origin, get_type_hints
from uuid import UUID

from .conversion import (
    from_llsd, to_bool, to_bytes, to_datetime, to_dict, to_float, to_int, to_list,
    to_llsd, to_str, to_tuple, to_uri, to_uuid,
)
from .errors import (
    LLSDError, MissingFieldError, TypeMismatchError, UnknownFieldError,
)
from .value import LLSD, URI


# ============================================================================
# Class Registry
# ============================================================================

_LLSDCLASS_REGISTRY: dict[str, Type] = {}
"""Global registry mapping record names to Python classes."""


def get_llsdclass_by_name(name: str) -> Optional[Type]:
    """
    Lookup an @llsdclass decorated class by registry name.

    Args:
        name: The name given to ``@llsdclass`` (or the class name).

    Returns:
        The Python class if found, None otherwise
    """
    return _LLSDCLASS_REGISTRY.get(name)


def is_llsdclass(obj: Any) -> bool:
    """True if ``obj`` is an @llsdclass class or an instance of one."""
    cls = obj if isinstance(obj, type) else type(obj)
    return getattr(cls, "__is_llsd_class__", False)


# ============================================================================
# Field Options
# ============================================================================

_METADATA_KEY = "llsd"


@dataclasses.dataclass(frozen=True)
class FieldOptions:
    rename: Optional[str] = None
    skip_serializing: bool = False
    skip_deserializing: bool = False
    flatten: bool = False
    with_: Any = None


def llsdfield(*, rename: Optional[str] = None,
              default: Any = dataclasses.MISSING,
              default_factory: Any = dataclasses.MISSING,
              skip: bool = False,
              skip_serializing: bool = False,
              skip_deserializing: bool = False,
              flatten: bool = False,
              with_: Any = None):
    """
    Declare a record field with LLSD mapping options.

    Wraps ``dataclasses.field``; see the module docstring for the options.

    Examples:
        >>> @llsdclass
        ... class Region:
        ...     handle: int = llsdfield(rename="RegionHandle")
        ...     cache: dict = llsdfield(skip=True, default_factory=dict)
    """
    options = FieldOptions(
        rename=rename,
        skip_serializing=skip or skip_serializing,
        skip_deserializing=skip or skip_deserializing,
        flatten=flatten,
        with_=with_,
    )
    return dataclasses.field(default=default, default_factory=default_factory,
                             metadata={_METADATA_KEY: options})


# ============================================================================
# Case Policies
# ============================================================================

def _words(name: str) -> list[str]:
    return [word for word in name.split("_") if word]


RENAME_POLICIES = {
    "snake_case": lambda name: "_".join(w.lower() for w in _words(name)),
    "kebab-case": lambda name: "-".join(w.lower() for w in _words(name)),
    "camelCase": lambda name: "".join(
        w.lower() if i == 0 else w.capitalize() for i, w in enumerate(_words(name))
    ),
    "PascalCase": lambda name: "".join(w.capitalize() for w in _words(name)),
    "SCREAMING_SNAKE_CASE": lambda name: "_".join(w.upper() for w in _words(name)),
    "lowercase": lambda name: "".join(_words(name)).lower(),
    "UPPERCASE": lambda name: "".join(_words(name)).upper(),
}


# ============================================================================
# Type-Hint Driven Conversion
# ============================================================================

_EXTRACTORS = {
    bool: to_bool,
    int: to_int,
    float: to_float,
    str: to_str,
    bytes: to_bytes,
    UUID: to_uuid,
    datetime: to_datetime,
    URI: to_uri,
}


def _from_llsd(value: LLSD, hint: Any) -> Any:
    """Extract ``value`` as the Python type described by ``hint``."""
    if hint is Any or hint is LLSD:
        return value
    origin = get_origin(hint)
    args = get_args(hint)

    if origin is Union or origin is types.UnionType:
        inner = [arg for arg in args if arg is not type(None)]
        if len(inner) != len(args) and value.is_undefined():
            return None
        if len(inner) != 1:
            raise TypeMismatchError(f"Unsupported union type hint: {hint}")
        return _from_llsd(value, inner[0])
    if origin is not None and hasattr(hint, "__metadata__"):
        return _from_llsd(value, args[0])
    if origin is list:
        item = args[0] if args else Any
        return to_list(value, lambda v: _from_llsd(v, item))
    if origin is tuple:
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(to_list(value, lambda v: _from_llsd(v, args[0])))
        return to_tuple(value, *(lambda v, a=a: _from_llsd(v, a) for a in args))
    if origin is dict:
        item = args[1] if len(args) == 2 else Any
        return to_dict(value, lambda v: _from_llsd(v, item))
    if hint is list or hint is tuple:
        return hint(to_list(value, from_llsd))
    if hint is dict:
        return to_dict(value, from_llsd)
    if is_llsdclass(hint):
        return hint.from_llsd(value)

    extractor = _EXTRACTORS.get(hint)
    if extractor is None:
        raise TypeMismatchError(f"No LLSD conversion for type hint {hint!r}")
    return extractor(value)


def _is_optional(hint: Any) -> bool:
    origin = get_origin(hint)
    return (origin is Union or origin is types.UnionType) and type(None) in get_args(hint)


@dataclasses.dataclass(frozen=True)
class _FieldPlan:
    name: str
    key: str
    hint: Any
    options: FieldOptions
    field: dataclasses.Field

    def default(self) -> Any:
        if self.field.default is not dataclasses.MISSING:
            return self.field.default
        if self.field.default_factory is not dataclasses.MISSING:
            return self.field.default_factory()
        return dataclasses.MISSING


def _plan(cls) -> list[_FieldPlan]:
    """Resolve type hints and map keys for every field of ``cls``."""
    hints = get_type_hints(cls, include_extras=True)
    policy = RENAME_POLICIES[cls.__llsd_rename_all__] if cls.__llsd_rename_all__ else None
    plans = []
    for fld in dataclasses.fields(cls):
        options = fld.metadata.get(_METADATA_KEY, FieldOptions())
        key = options.rename or (policy(fld.name) if policy else fld.name)
        plan = _FieldPlan(fld.name, key, hints.get(fld.name, Any), options, fld)
        if options.flatten and not is_llsdclass(plan.hint):
            raise TypeError(f"Field {fld.name!r} is flattened but is not an @llsdclass")
        plans.append(plan)
    return plans


def _fields_of(cls) -> list[_FieldPlan]:
    # Planned on first use so forward references can resolve.
    plans = cls.__dict__.get("__llsd_fields__")
    if plans is None:
        plans = _plan(cls)
        cls.__llsd_fields__ = plans
    return plans


def _known_keys(cls) -> set[str]:
    keys = set()
    for plan in _fields_of(cls):
        if plan.options.flatten:
            keys |= _known_keys(plan.hint)
        else:
            keys.add(plan.key)
    return keys


# ============================================================================
# Generated Methods
# ============================================================================

def _record_to_llsd(self) -> LLSD:
    """Convert this record to an LLSD map."""
    builder = LLSD.map_builder()
    for plan in _fields_of(type(self)):
        if plan.options.skip_serializing:
            continue
        attr = getattr(self, plan.name)
        try:
            if plan.options.with_ is not None:
                value = plan.options.with_.serialize(attr)
            else:
                value = to_llsd(attr)
            if plan.options.flatten:
                if not value.is_map():
                    raise TypeMismatchError("Flattened fields must convert to a map")
                for key, item in value.as_map().items():
                    builder.insert(key, item)
            else:
                builder.insert(plan.key, value)
        except LLSDError as err:
            raise err.with_path(f"field {plan.name!r}")
    return builder.build()


def _record_from_llsd(cls, value: LLSD):
    """Build a record from an LLSD map."""
    if not isinstance(value, LLSD) or not value.is_map():
        found = value.kind.name.lower() if isinstance(value, LLSD) else type(value).__name__
        raise TypeMismatchError(f"Expected a map for {cls.__name__}, found {found}")
    entries = value.as_map()
    if cls.__llsd_deny_unknown_fields__:
        unknown = [key for key in entries if key not in _known_keys(cls)]
        if unknown:
            raise UnknownFieldError(
                f"Unknown field {unknown[0]!r} for {cls.__name__}", path=(f"key {unknown[0]!r}",)
            )

    kwargs = {}
    for plan in _fields_of(cls):
        if not plan.field.init:
            continue
        try:
            if plan.options.skip_deserializing:
                result = plan.default()
            elif plan.options.flatten:
                result = plan.hint.from_llsd(value)
            elif plan.key in entries:
                item = entries[plan.key]
                if plan.options.with_ is not None:
                    result = plan.options.with_.deserialize(item)
                else:
                    result = _from_llsd(item, plan.hint)
            else:
                result = plan.default()
                if result is dataclasses.MISSING:
                    if not _is_optional(plan.hint):
                        raise MissingFieldError(f"Missing field {plan.key!r} for {cls.__name__}")
                    result = None
        except LLSDError as err:
            raise err.with_path(f"field {plan.name!r}")
        kwargs[plan.name] = result
    return cls(**kwargs)


# ============================================================================
# Decorator
# ============================================================================

def llsdclass(cls=None, *, name: Optional[str] = None, rename_all: Optional[str] = None,
              deny_unknown_fields: bool = False):
    """
    Decorator to map a Python class to an LLSD map.

    Works bare (``@llsdclass``) or with options (``@llsdclass(...)``).
    Classes that are not yet dataclasses are turned into dataclasses.

    Args:
        name: Registry name; defaults to the class name.
        rename_all: Case policy applied to field names without ``rename``.
        deny_unknown_fields: Raise UnknownFieldError on undeclared keys.

    The decorator:
    - Registers the class in the global _LLSDCLASS_REGISTRY
    - Adds ``to_llsd()`` and the class method ``from_llsd(value)``
    - Makes instances accepted by ``to_llsd`` and every ``format_*`` function

    Raises:
        ValueError: If ``rename_all`` names an unknown policy.
        TypeError: If a skipped field has no default.
    """
    if rename_all is not None and rename_all not in RENAME_POLICIES:
        raise ValueError(
            f"Unknown rename_all policy {rename_all!r}. "
            f"Supported policies: {', '.join(RENAME_POLICIES)}"
        )

    def decorator(cls):
        if "__dataclass_fields__" not in cls.__dict__:
            cls = dataclasses.dataclass(cls)

        cls.__llsd_rename_all__ = rename_all
        cls.__llsd_deny_unknown_fields__ = deny_unknown_fields
        for fld in dataclasses.fields(cls):
            options = fld.metadata.get(_METADATA_KEY, FieldOptions())
            if options.skip_deserializing and fld.init and fld.default is dataclasses.MISSING \
                    and fld.default_factory is dataclasses.MISSING:
                raise TypeError(f"Field {fld.name!r} is skipped on input but has no default")

        cls.to_llsd = _record_to_llsd
        cls.from_llsd = classmethod(_record_from_llsd)
        cls.__is_llsd_class__ = True
        cls.__llsd_name__ = name or cls.__name__
        _LLSDCLASS_REGISTRY[cls.__llsd_name__] = cls
        return cls

    if cls is not None:
        return decorator(cls)
    return decorator
