# mcsh5/core/streams.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol, Union, runtime_checkable

import numpy as np

from .config import DataType
from .conversion import to_physical, to_raw
from .exceptions import InvalidPayload, StreamNotFound
from .lazy import LazyPayload
from .metadata import InfoTable
from .timestamps import timestamps_to_indices


class StreamKind(str, Enum):
    """The four stream variants of a DataManager recording."""

    ANALOG = "AnalogStream"
    FRAME = "FrameStream"
    EVENT = "EventStream"
    SEGMENT = "SegmentStream"


def classify_group(name: str) -> StreamKind | None:
    """Kind of a recording child group, by name; None for unrelated groups."""
    matches = [kind for kind in StreamKind if kind.value in name]
    return matches[0] if len(matches) == 1 else None


@runtime_checkable
class StreamLike(Protocol):
    """Capabilities shared by all stream variants."""

    label: str | None
    path: str
    attrs: dict[str, Any]

    @property
    def kind(self) -> StreamKind: ...

    def metadata(self) -> InfoTable: ...

    def data(self) -> Any: ...

    def timestamps(self) -> Any: ...


def _recast(values: np.ndarray, current: DataType, target: DataType, ad_zero, factor, axis: int = 0):
    """Change the representation of already loaded sample values."""
    current, target = DataType(current), DataType(target)
    if current is target:
        return values
    if current is DataType.RAW:
        return to_physical(values, ad_zero, factor, axis=axis, dtype=target.float_dtype)
    if target is DataType.RAW:
        return to_raw(values, ad_zero, factor, axis=axis, dtype=np.int64)
    return values.astype(target.float_dtype)


# ----------------------------------------------------------------------
# Analog
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AnalogStream:
    """
    Continuously sampled channels.

    `data()` is a (channels, samples) array in units of 10**Exponent Unit
    (or ADC codes with DataType.RAW); `timestamps()` holds one microsecond
    timestamp per sample.
    """
    path: str
    info: InfoTable = field(repr=False)
    payload: LazyPayload[np.ndarray] = field(repr=False)
    sample_timestamps: np.ndarray = field(repr=False)
    label: str | None = None
    data_type: DataType = DataType.DOUBLE
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def kind(self) -> StreamKind:
        return StreamKind.ANALOG

    def metadata(self) -> InfoTable:
        return self.info

    def data(self) -> np.ndarray:
        return self.payload.get()

    def timestamps(self) -> np.ndarray:
        return self.sample_timestamps

    @property
    def is_loaded(self) -> bool:
        return self.payload.is_loaded

    @property
    def n_channels(self) -> int:
        return len(self.info)

    @property
    def n_samples(self) -> int:
        return int(self.sample_timestamps.size)

    def channel(self, key: int | str) -> np.ndarray:
        """Samples of one channel, by row index or label."""
        if isinstance(key, str):
            try:
                key = self.info.labels.index(key)
            except ValueError as e:
                raise StreamNotFound(key) from e
        return self.data()[key]

    def converted_data(self, data_type: DataType | str = DataType.DOUBLE) -> np.ndarray:
        """The samples in another representation, leaving the cached payload untouched."""
        return _recast(
            self.data(), self.data_type, DataType(data_type),
            self.info.ad_zero, self.info.conversion_factor,
        )


# ----------------------------------------------------------------------
# Event
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class EventStream:
    """
    Discrete events, one entity per row of the InfoEvent table.

    `data()` maps event id -> array whose row 0 holds the event timestamps
    and row 1 (when present) the event durations, both in microseconds.
    """
    path: str
    info: InfoTable = field(repr=False)
    payload: LazyPayload[dict[int, np.ndarray]] = field(repr=False)
    label: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def kind(self) -> StreamKind:
        return StreamKind.EVENT

    def metadata(self) -> InfoTable:
        return self.info

    def data(self) -> dict[int, np.ndarray]:
        return self.payload.get()

    def timestamps(self) -> dict[int, np.ndarray]:
        return {event_id: entity[0] for event_id, entity in self.data().items()}

    def durations(self) -> dict[int, np.ndarray | None]:
        return {
            event_id: (entity[1] if entity.shape[0] > 1 else None)
            for event_id, entity in self.data().items()
        }

    @property
    def event_ids(self) -> list[int]:
        col = self.info.column("EventID")
        return [] if col is None else [int(x) for x in col]


# ----------------------------------------------------------------------
# Segment
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class SegmentPayload:
    data: dict[int, np.ndarray]
    timestamps: dict[int, np.ndarray]


@dataclass(frozen=True, slots=True)
class SegmentStream:
    """
    Cut-outs ("segments", e.g. spikes) around trigger events.

    One entity per row of InfoSegment. Cut-out samples are converted with
    the source channel rows listed in that row's SourceChannelIDs.
    """
    path: str
    info: InfoTable = field(repr=False)
    source_info: InfoTable = field(repr=False)
    payload: LazyPayload[SegmentPayload] = field(repr=False)
    label: str | None = None
    data_type: DataType = DataType.DOUBLE
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def kind(self) -> StreamKind:
        return StreamKind.SEGMENT

    def metadata(self) -> InfoTable:
        return self.info

    def data(self) -> dict[int, np.ndarray]:
        return self.payload.get().data

    def timestamps(self) -> dict[int, np.ndarray]:
        return self.payload.get().timestamps

    @property
    def segment_ids(self) -> list[int]:
        col = self.info.column("SegmentID")
        return [] if col is None else [int(x) for x in col]

    def converted_data(self, data_type: DataType | str = DataType.DOUBLE) -> dict[int, np.ndarray]:
        target = DataType(data_type)
        out: dict[int, np.ndarray] = {}
        for segment_id, values in self.data().items():
            zero, factor, axis = segment_source_conversion(
                self.info, self.source_info, segment_id, values.ndim
            )
            out[segment_id] = _recast(values, self.data_type, target, zero, factor, axis)
        return out

    def sample_timestamps(self, segment_id: int) -> np.ndarray:
        """(cutouts, samples) timestamps of every sample of every cut-out."""
        values = self.data()[segment_id]
        trigger = np.asarray(self.timestamps()[segment_id]).reshape(-1, 1)
        row = self.info.row(self.info.find("SegmentID", segment_id))
        pre = row.get("PreInterval", 0) or 0
        tick = self.source_info.tick or 0
        offsets = np.arange(values.shape[1], dtype=trigger.dtype) * trigger.dtype.type(tick)
        return trigger - trigger.dtype.type(pre) + offsets


def segment_source_conversion(
    info: InfoTable, source_info: InfoTable, segment_id: int, ndim: int
) -> tuple[np.ndarray, np.ndarray, int]:
    """(ad_zero, conversion_factor, axis) for the source channels of a segment.

    Single-source cut-outs are stored as (cutouts, samples); multi-source
    cut-outs as (cutouts, samples, sources), where the per-source values
    broadcast along the last axis.
    """
    row = info.row(info.find("SegmentID", segment_id))
    rows = [source_info.find("ChannelID", cid) for cid in parse_id_list(row.get("SourceChannelIDs"))]
    if not rows and len(source_info):
        rows = [0]
    zero = source_info.ad_zero[rows] if rows else np.zeros(1)
    factor = source_info.conversion_factor[rows] if rows else np.ones(1)
    if len(rows) <= 1:
        return zero.reshape(()), factor.reshape(()), 0
    return zero, factor, ndim - 1


def parse_id_list(value: Any) -> list[int]:
    """Parse an id list attribute such as '1,2,5' or an integer array."""
    if value is None:
        return []
    if isinstance(value, str):
        return [int(part) for part in value.replace(";", ",").split(",") if part.strip()]
    return [int(v) for v in np.atleast_1d(value)]


# ----------------------------------------------------------------------
# Frame
# ----------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class FramePayload:
    data: np.ndarray
    conversion_factors: np.ndarray


# (x range, y range, time index range) -> raw (x, y, time) cube and (x, y) factors
RegionReader = Callable[[tuple[int, int], tuple[int, int], tuple[int, int]], FramePayload]


def convert_frame(raw: np.ndarray, ad_zero, conversion_factors: np.ndarray, data_type: DataType) -> np.ndarray:
    """(raw - ad_zero) * factor per pixel for an (x, y, time) cube."""
    data_type = DataType(data_type)
    if data_type is DataType.RAW:
        return raw
    out = to_physical(raw, ad_zero, 1.0, dtype=np.float64)
    out *= np.asarray(conversion_factors, dtype=np.float64)[:, :, np.newaxis]
    return out if data_type is DataType.DOUBLE else out.astype(data_type.float_dtype)


@dataclass(frozen=True, slots=True)
class PartialFrame:
    frame_data_id: int
    data: np.ndarray = field(repr=False)
    timestamps: np.ndarray = field(repr=False)
    channel_x: tuple[int, int] = (0, 0)
    channel_y: tuple[int, int] = (0, 0)


def _index_range(rng, extent: int, axis: str) -> tuple[int, int]:
    if rng is None or len(rng) == 0:
        return 0, extent - 1
    start, end = int(rng[0]), int(rng[1])
    if not 0 <= start <= end < extent:
        raise IndexError(f"{axis} range [{start}, {end}] outside [0, {extent - 1}]")
    return start, end


@dataclass(frozen=True, slots=True)
class FrameEntity:
    """
    One FrameDataEntity: a (x, y, time) cube of a 2-D sensor region.

    `data()` loads and converts the full cube; `read_partial()` reads just a
    hyperslab without materializing the rest.
    """
    frame_data_id: int
    path: str
    shape: tuple[int, int, int]
    payload: LazyPayload[FramePayload] = field(repr=False)
    region_reader: RegionReader = field(repr=False)
    frame_timestamps: np.ndarray = field(repr=False)
    ad_zero: float = 0.0
    data_type: DataType = DataType.DOUBLE
    info: dict[str, Any] = field(default_factory=dict, repr=False)

    def data(self) -> np.ndarray:
        return self.payload.get().data

    def conversion_factors(self) -> np.ndarray:
        return self.payload.get().conversion_factors

    def timestamps(self) -> np.ndarray:
        return self.frame_timestamps

    @property
    def is_loaded(self) -> bool:
        return self.payload.is_loaded

    def read_partial(
        self,
        time: tuple[float, float] | None = None,
        channel_x: tuple[int, int] | None = None,
        channel_y: tuple[int, int] | None = None,
    ) -> PartialFrame:
        """
        Read a sub-region of the cube.

        time:
            [start, end] in seconds against `timestamps()`; None = all frames.
        channel_x, channel_y:
            inclusive 0-based [start, end] channel indices; None = full axis.
        """
        nx, ny, _ = self.shape
        x = _index_range(channel_x, nx, "channel_x")
        y = _index_range(channel_y, ny, "channel_y")
        if time is None or len(time) == 0:
            t = (0, self.frame_timestamps.size - 1)
        else:
            t = timestamps_to_indices(self.frame_timestamps, float(time[0]) * 1e6, float(time[1]) * 1e6)
        if t[1] < t[0]:
            raise IndexError(f"time window {time} selects no frames")

        region = self.region_reader(x, y, t)
        data = convert_frame(region.data, self.ad_zero, region.conversion_factors, self.data_type)
        return PartialFrame(
            frame_data_id=self.frame_data_id,
            data=data,
            timestamps=self.frame_timestamps[t[0]:t[1] + 1],
            channel_x=x,
            channel_y=y,
        )


@dataclass(frozen=True, slots=True)
class FrameStream:
    """Imaging-style streams made of one or more FrameEntity children."""

    path: str
    info: InfoTable = field(repr=False)
    entities: tuple[FrameEntity, ...] = field(default=(), repr=False)
    label: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for entity in self.entities:
            if not isinstance(entity, FrameEntity):
                raise InvalidPayload("FrameStream.entities must be FrameEntity instances.")

    @property
    def kind(self) -> StreamKind:
        return StreamKind.FRAME

    def metadata(self) -> InfoTable:
        return self.info

    def data(self) -> dict[int, np.ndarray]:
        return {e.frame_data_id: e.data() for e in self.entities}

    def timestamps(self) -> dict[int, np.ndarray]:
        return {e.frame_data_id: e.timestamps() for e in self.entities}

    def entity(self, frame_data_id: int) -> FrameEntity:
        for e in self.entities:
            if e.frame_data_id == frame_data_id:
                return e
        raise StreamNotFound(frame_data_id)


Stream = Union[AnalogStream, FrameStream, EventStream, SegmentStream]
