"""Shared validation helpers for frozen dataclass models.

Private module, not part of the public API. Used by ``__post_init__`` and
``from_dict`` methods in sibling model modules to enforce runtime type
constraints and null-byte safety on data received from relays.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


_HEX_RE = re.compile(r"^[0-9a-f]+$")


def validate_instance(value: Any, expected: type, name: str) -> None:
    """Raise ``TypeError`` if *value* is not an instance of *expected*."""
    if not isinstance(value, expected):
        article = "an" if expected.__name__[0] in "AEIOUaeiou" else "a"
        raise TypeError(f"{name} must be {article} {expected.__name__}, got {type(value).__name__}")


def validate_timestamp(value: Any, name: str) -> None:
    """Raise if *value* is not a non-negative ``int`` (``bool`` excluded)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative")


def validate_str_no_null(value: Any, name: str) -> None:
    """Raise if *value* is not a ``str`` or contains null bytes."""
    if not isinstance(value, str):
        raise TypeError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name} contains null bytes")


def validate_str_not_empty(value: Any, name: str) -> None:
    """Raise if *value* is not a non-empty ``str`` without null bytes."""
    validate_str_no_null(value, name)
    if not value:
        raise ValueError(f"{name} must not be empty")


def validate_hex(value: Any, name: str, length: int) -> None:
    """Raise if *value* is not a lowercase hex string of exactly *length* chars."""
    validate_str_no_null(value, name)
    if len(value) != length or not _HEX_RE.match(value):
        raise ValueError(f"{name} must be {length} lowercase hex characters")


def validate_mapping(value: Any, name: str) -> None:
    """Raise ``TypeError`` if *value* is not a ``Mapping``."""
    if not isinstance(value, Mapping):
        raise TypeError(f"{name} must be a Mapping, got {type(value).__name__}")


def freeze_tags(value: Any, name: str) -> tuple[tuple[str, ...], ...]:
    """Convert a list of string lists into a tuple of string tuples.

    Raises:
        TypeError: If *value* is not a sequence of sequences of ``str``.
    """
    if isinstance(value, str | bytes) or not isinstance(value, list | tuple):
        raise TypeError(f"{name} must be a list, got {type(value).__name__}")
    frozen: list[tuple[str, ...]] = []
    for i, tag in enumerate(value):
        if isinstance(tag, str | bytes) or not isinstance(tag, list | tuple):
            raise TypeError(f"{name}[{i}] must be a list, got {type(tag).__name__}")
        for item in tag:
            validate_str_no_null(item, f"{name}[{i}] item")
        frozen.append(tuple(tag))
    return tuple(frozen)


def deep_freeze(obj: Any) -> Any:
    """Recursively wrap dicts with ``MappingProxyType`` to prevent mutation."""
    if isinstance(obj, dict):
        return MappingProxyType({k: deep_freeze(v) for k, v in obj.items()})
    if isinstance(obj, list):
        return tuple(deep_freeze(item) for item in obj)
    return obj
