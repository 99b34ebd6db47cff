# mcsh5/core/config.py
from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Mapping

import numpy as np

from .exceptions import ConfigurationError


class DataType(str, Enum):
    """Representation of bulk sample payloads after loading."""

    DOUBLE = "double"
    SINGLE = "single"
    RAW = "raw"

    @property
    def float_dtype(self) -> np.dtype | None:
        if self is DataType.DOUBLE:
            return np.dtype(np.float64)
        if self is DataType.SINGLE:
            return np.dtype(np.float32)
        return None


class TimestampType(str, Enum):
    """Representation of reconstructed timestamps (microseconds)."""

    INT64 = "int64"
    DOUBLE = "double"

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(np.int64) if self is TimestampType.INT64 else np.dtype(np.float64)


# camelCase option names accepted for compatibility
_ALIASES = {
    "dataType": "data_type",
    "timestampType": "timestamp_type",
    "timeStampDataType": "timestamp_type",
    "readUnknownCmosSources": "read_unknown_cmos_sources",
    "readUnknown": "read_unknown_cmos_sources",
    "widenInt64Fields": "widen_int64_fields",
    "correctConversionFactorOrientation": "correct_conversion_factor_orientation",
}


@dataclass(frozen=True, slots=True)
class ReadConfig:
    """
    Options controlling how a file is read.

    - data_type: double (default) / single convert samples to physical units,
      raw keeps the stored ADC codes
    - timestamp_type: int64 (default) or double microsecond timestamps
    - read_unknown_cmos_sources: keep CMOS-MEA sources of unknown type
    - widen_int64_fields: convert 64-bit integer compound fields to float64
      (output compatibility with legacy runtimes)
    - correct_conversion_factor_orientation: transpose frame conversion
      factors written by DataManager 1.9.2 and earlier
    """
    data_type: DataType = DataType.DOUBLE
    timestamp_type: TimestampType = TimestampType.INT64
    read_unknown_cmos_sources: bool = False
    widen_int64_fields: bool = False
    correct_conversion_factor_orientation: bool = False

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "data_type", DataType(self.data_type))
        except ValueError as e:
            raise ConfigurationError(
                f"data_type must be one of double, single, raw; got {self.data_type!r}"
            ) from e
        try:
            object.__setattr__(self, "timestamp_type", TimestampType(self.timestamp_type))
        except ValueError as e:
            raise ConfigurationError(
                f"timestamp_type must be int64 or double; got {self.timestamp_type!r}"
            ) from e

        for name in (
            "read_unknown_cmos_sources",
            "widen_int64_fields",
            "correct_conversion_factor_orientation",
        ):
            if not isinstance(getattr(self, name), bool):
                raise ConfigurationError(f"ReadConfig.{name} must be a bool.")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> "ReadConfig":
        """Build a config from snake_case or camelCase keys."""
        if mapping is None:
            return cls()
        if not isinstance(mapping, Mapping):
            raise ConfigurationError("config must be a mapping or a ReadConfig.")

        known = {f.name for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in mapping.items():
            name = _ALIASES.get(key, key)
            if name not in known:
                raise ConfigurationError(f"Unknown config option '{key}'.")
            kwargs[name] = value
        return cls(**kwargs)

    @classmethod
    def coerce(cls, config: "ReadConfig | Mapping[str, Any] | None") -> "ReadConfig":
        if isinstance(config, ReadConfig):
            return config
        return cls.from_mapping(config)
