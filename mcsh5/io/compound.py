"""
Reading of compound ("record") datasets.

Field names in MCS files may carry escaped punctuation (`0x2E` for `.`);
they are decoded and reduced to plain identifiers. Field values go through
a fixed widening rule so that every value can be used by the numeric code:

    float16            -> float32   (always)
    int64 / uint64     -> float64   (only with widen_int64, legacy runtimes)
    void / complex     -> UnsupportedFieldWidth
"""

from __future__ import annotations

import re
from typing import Any

import numpy as np

from mcsh5.core.exceptions import UnsupportedFieldWidth
from mcsh5.core.metadata import rows_to_columns
from mcsh5.io.backend import StorageBackend

_ESCAPES = {"0x2E": ".", "0x20": " ", "0x2D": "-"}
_NON_IDENTIFIER = re.compile(r"[^0-9A-Za-z_]")


def sanitize_field_name(name: str) -> str:
    """Decode escaped punctuation, then strip what is not valid in an identifier."""
    if isinstance(name, bytes):
        name = name.decode("utf-8")
    for escaped, plain in _ESCAPES.items():
        name = name.replace(escaped, plain)
    return _NON_IDENTIFIER.sub("", name)


def widen_dtype(dtype: np.dtype, field: str, *, widen_int64: bool = False) -> np.dtype:
    """Target dtype of a field per the widening rule (may return `dtype` itself)."""
    dtype = np.dtype(dtype)
    if dtype.kind in ("V", "c"):
        raise UnsupportedFieldWidth(field, dtype)
    if dtype.kind == "f" and dtype.itemsize < 4:
        return np.dtype(np.float32)
    if widen_int64 and dtype.kind in ("i", "u") and dtype.itemsize == 8:
        return np.dtype(np.float64)
    return dtype


def _decode(value: bytes) -> str:
    return bytes(value).decode("utf-8", errors="replace").rstrip("\x00")


def normalize_field_value(value: Any, field: str, *, widen_int64: bool = False) -> Any:
    if isinstance(value, (bytes, np.bytes_)):
        return _decode(value)
    if isinstance(value, np.ndarray):
        if value.dtype.kind in ("S", "O"):
            return np.array(
                [_decode(v) if isinstance(v, (bytes, np.bytes_)) else v for v in value.reshape(-1)],
                dtype=object,
            ).reshape(value.shape)
        target = widen_dtype(value.dtype, field, widen_int64=widen_int64)
        return value if target == value.dtype else value.astype(target)
    if isinstance(value, np.generic):
        target = widen_dtype(value.dtype, field, widen_int64=widen_int64)
        return value if target == value.dtype else value.astype(target)
    return value


def read_compound(
    backend: StorageBackend,
    path: str,
    *,
    widen_int64: bool = False,
) -> list[dict[str, Any]]:
    """Read a compound dataset as an ordered list of {field: value} rows."""
    rows = backend.read_compound_dataset(path)
    out: list[dict[str, Any]] = []
    for row in rows:
        out.append(
            {
                sanitize_field_name(key): normalize_field_value(value, key, widen_int64=widen_int64)
                for key, value in row.items()
            }
        )
    return out


def read_compound_columns(
    backend: StorageBackend,
    path: str,
    *,
    widen_int64: bool = False,
) -> dict[str, np.ndarray]:
    """Read a compound dataset as a mapping field -> column."""
    return rows_to_columns(read_compound(backend, path, widen_int64=widen_int64))


def structured_to_columns(data: np.ndarray, *, widen_int64: bool = False) -> dict[str, Any]:
    """Columns of an already loaded structured array, with sanitized field names."""
    data = np.atleast_1d(data)
    return {
        sanitize_field_name(name): normalize_field_value(data[name], name, widen_int64=widen_int64)
        for name in data.dtype.names or ()
    }
