"""
Attribute access on container nodes.

Backends hand attributes back in one of two shapes: the legacy wrapped
shape (byte strings, numpy byte scalars, one-element arrays, numpy scalars)
or plain typed Python values. `normalize_attribute_value` is the only place
that knows about the difference.
"""

from __future__ import annotations

from typing import Any, Callable

import numpy as np

from mcsh5.core.exceptions import AttributeNotFound
from mcsh5.io.backend import NodeInfo


def _decode(value: bytes) -> str:
    return value.decode("utf-8", errors="replace").rstrip("\x00")


def normalize_attribute_value(value: Any) -> Any:
    """Unwrap a raw attribute value into one logical Python value."""
    if isinstance(value, (bytes, np.bytes_)):
        return _decode(bytes(value))
    if isinstance(value, np.ndarray):
        if value.size == 1:
            return normalize_attribute_value(value.reshape(-1)[0])
        if value.dtype.kind in ("S", "O"):
            return [normalize_attribute_value(v) for v in value.reshape(-1)]
        return value
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, (list, tuple)) and len(value) == 1:
        return normalize_attribute_value(value[0])
    return value


def get_attribute(node: NodeInfo, name: str, default: Any = None) -> Any:
    """Optional lookup: the normalized attribute value or `default`."""
    if name not in node.attrs:
        return default
    return normalize_attribute_value(node.attrs[name])


def require_attribute(node: NodeInfo, name: str) -> Any:
    if name not in node.attrs:
        raise AttributeNotFound(name, node.path)
    return normalize_attribute_value(node.attrs[name])


def _same(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.strip().lower() == expected.strip().lower()
    try:
        return bool(actual == expected)
    except (TypeError, ValueError):
        return False


def attribute_equals(
    node: NodeInfo,
    name: str,
    predicate: Any | Callable[[Any], bool],
) -> bool:
    """
    True if attribute `name` exists and satisfies `predicate`.

    `predicate` is either a callable taking the normalized value or a value
    to compare with; strings compare case-insensitively.
    """
    if name not in node.attrs:
        return False
    value = normalize_attribute_value(node.attrs[name])
    if callable(predicate):
        try:
            return bool(predicate(value))
        except (TypeError, ValueError):
            return False
    return _same(value, predicate)


def read_attributes(node: NodeInfo) -> dict[str, Any]:
    """All attributes of `node` as name -> normalized value (enumeration order)."""
    return {name: normalize_attribute_value(value) for name, value in node.attrs.items()}


def type_id(node: NodeInfo) -> str | None:
    """The CMOS-MEA type identifier (`ID.TypeID`) of a node, lower-cased."""
    value = get_attribute(node, "ID.TypeID")
    return value.strip().lower() if isinstance(value, str) else None
