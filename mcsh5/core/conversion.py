# mcsh5/core/conversion.py
from __future__ import annotations

import numpy as np

from .config import DataType


def _per_channel(values, ndim: int, axis: int) -> np.ndarray:
    """Shape per-channel values so they broadcast along `axis` of an ndim array."""
    v = np.asarray(values, dtype=np.float64)
    if v.ndim == 0 or ndim == 0:
        return v
    shape = [1] * ndim
    shape[axis] = v.size
    return v.reshape(shape)


def to_physical(
    raw: np.ndarray,
    ad_zero,
    conversion_factor,
    *,
    axis: int = 0,
    dtype: np.dtype | type = np.float64,
) -> np.ndarray:
    """
    Convert raw ADC codes to physical units: (raw - ad_zero) * conversion_factor.

    `ad_zero` and `conversion_factor` are scalars or one value per channel
    along `axis`. The result is a new floating point array; `raw` is untouched.
    """
    raw = np.asarray(raw)
    zero = _per_channel(ad_zero, raw.ndim, axis)
    factor = _per_channel(conversion_factor, raw.ndim, axis)

    out = raw.astype(np.float64, copy=True)
    out -= zero
    out *= factor
    return out if np.dtype(dtype) == out.dtype else out.astype(dtype)


def to_raw(
    physical: np.ndarray,
    ad_zero,
    conversion_factor,
    *,
    axis: int = 0,
    dtype: np.dtype | type | None = None,
) -> np.ndarray:
    """Inverse of `to_physical`: round(physical / conversion_factor + ad_zero)."""
    physical = np.asarray(physical, dtype=np.float64)
    zero = _per_channel(ad_zero, physical.ndim, axis)
    factor = _per_channel(conversion_factor, physical.ndim, axis)

    out = np.rint(physical / factor + zero)
    return out if dtype is None else out.astype(dtype)


def convert_for(
    raw: np.ndarray,
    ad_zero,
    conversion_factor,
    data_type: DataType,
    *,
    axis: int = 0,
) -> np.ndarray:
    """Apply the conversion selected by `data_type`; raw mode returns `raw` itself."""
    data_type = DataType(data_type)
    if data_type is DataType.RAW:
        return raw
    return to_physical(raw, ad_zero, conversion_factor, axis=axis, dtype=data_type.float_dtype)


def apply_exponent(values: np.ndarray, exponent, *, axis: int = 0) -> np.ndarray:
    """Scale values given in units of 10**exponent to the base unit."""
    values = np.asarray(values, dtype=np.float64)
    exp = _per_channel(exponent, values.ndim, axis)
    return values * np.power(10.0, exp)
