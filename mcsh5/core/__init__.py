# mcsh5/core/__init__.py
"""
Core domain objects for mcsh5.

This module defines the in-memory model of an MCS HDF5 file:
- McsData: validated file with its recordings
- Recording: DataManager recording with analog/frame/event/segment streams
- AnalogStream, FrameStream, EventStream, SegmentStream: stream variants
- CmosRecording and its filter / spike sorter sources
- LazyPayload: deferred-load cell for bulk sample data

The core layer is independent from the container I/O.
"""

from .config import DataType, TimestampType, ReadConfig
from .lazy import LazyPayload, PayloadState
from .metadata import InfoTable
from .timestamps import expand_timestamp_segments, validate_segment_tiling
from .conversion import to_physical, to_raw
from .streams import (
    StreamKind,
    StreamLike,
    Stream,
    AnalogStream,
    EventStream,
    SegmentStream,
    FrameStream,
    FrameEntity,
    PartialFrame,
    classify_group,
)
from .recording import Recording
from .cmos import (
    CmosRecording,
    CmosFilterSource,
    CmosSpikeSorterSource,
    CmosSpikeSorterUnit,
    CmosGenericSource,
    FilterRecord,
)
from .data import McsData, ProtocolType
from .exceptions import (
    McsError,
    InvalidFormat,
    ConfigurationError,
    AttributeNotFound,
    MalformedTimestampIndex,
    UnsupportedFieldWidth,
    InvalidPayload,
    StreamNotFound,
    DatasetNotFound,
)


__all__ = [
    # configuration
    "DataType",
    "TimestampType",
    "ReadConfig",

    # building blocks
    "LazyPayload",
    "PayloadState",
    "InfoTable",
    "expand_timestamp_segments",
    "validate_segment_tiling",
    "to_physical",
    "to_raw",

    # streams
    "StreamKind",
    "StreamLike",
    "Stream",
    "AnalogStream",
    "EventStream",
    "SegmentStream",
    "FrameStream",
    "FrameEntity",
    "PartialFrame",
    "classify_group",

    # containers
    "Recording",
    "CmosRecording",
    "CmosFilterSource",
    "CmosSpikeSorterSource",
    "CmosSpikeSorterUnit",
    "CmosGenericSource",
    "FilterRecord",
    "McsData",
    "ProtocolType",

    # exceptions
    "McsError",
    "InvalidFormat",
    "ConfigurationError",
    "AttributeNotFound",
    "MalformedTimestampIndex",
    "UnsupportedFieldWidth",
    "InvalidPayload",
    "StreamNotFound",
    "DatasetNotFound",
]
