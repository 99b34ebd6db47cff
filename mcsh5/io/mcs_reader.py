"""
Reader for MCS HDF5 files: root validation and the DataManager layout.

DataManager layout::

    /                       McsHdf5ProtocolType, McsHdf5ProtocolVersion, ...
    /Data                   file-level attributes
    /Data/Recording_0       RecordingID, Duration, Label, ...
        AnalogStream/Stream_0    InfoChannel, ChannelData, ChannelDataTimeStamps
        FrameStream/Stream_0     InfoFrame, FrameDataEntity_N/{FrameData, ...}
        EventStream/Stream_0     InfoEvent, EventEntity_N
        SegmentStream/Stream_0   InfoSegment, InfoSourceChannel, SegmentData_N, ...

Only metadata and timestamp descriptors are read here; sample payloads are
wrapped in LazyPayload loaders.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import numpy as np

from mcsh5.core.config import ReadConfig
from mcsh5.core.conversion import convert_for
from mcsh5.core.data import McsData, ProtocolType
from mcsh5.core.exceptions import (
    AttributeNotFound,
    DatasetNotFound,
    InvalidFormat,
    InvalidPayload,
    McsError,
)
from mcsh5.core.lazy import LazyPayload
from mcsh5.core.metadata import InfoTable
from mcsh5.core.recording import Recording
from mcsh5.core.streams import (
    AnalogStream,
    EventStream,
    FrameEntity,
    FramePayload,
    FrameStream,
    SegmentPayload,
    SegmentStream,
    Stream,
    StreamKind,
    classify_group,
    convert_frame,
    segment_source_conversion,
)
from mcsh5.core.timestamps import expand_timestamp_segments
from mcsh5.io.attributes import attribute_equals, get_attribute, read_attributes
from mcsh5.io.backend import NodeInfo, ReadContext, StorageBackend, join_path
from mcsh5.io.cmos_reader import build_cmos_recording
from mcsh5.io.compound import read_compound


logger = logging.getLogger(__name__)

MAX_PROTOCOL_VERSION = 3
LEGACY_APPLICATION_NAME = "Multi Channel DataManager"


# ----------------------------------------------------------------------
# Root validation
# ----------------------------------------------------------------------
def _version(root: NodeInfo, name: str, path: str | None) -> float:
    value = get_attribute(root, name, 0)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidFormat(f"{name} {value!r} is not a version number.", path) from e


def _is_version(expected: int) -> Callable[[Any], bool]:
    return lambda value: float(value) == expected


def validate_root(root: NodeInfo, path: str | None = None) -> tuple[ProtocolType, int]:
    """
    Determine protocol type and version from the root node attributes.

    Raises InvalidFormat with a human-readable cause when the file is not a
    supported MCS HDF5 file.
    """
    attrs = root.attrs
    if "McsHdf5ProtocolType" in attrs:
        if not attribute_equals(root, "McsHdf5ProtocolType", "RawData"):
            raise InvalidFormat("Only the RawData protocol type is supported!", path)
        version = _version(root, "McsHdf5ProtocolVersion", path)
        if version > MAX_PROTOCOL_VERSION:
            raise InvalidFormat(
                f"Only MCS HDF5 up to version {MAX_PROTOCOL_VERSION} is supported "
                f"(file has {version:g}).",
                path,
            )
        return ProtocolType.DATA_MANAGER, int(version)

    if "McsHdf5Version" in attrs:
        if not attribute_equals(root, "McsHdf5Version", _is_version(1)):
            raise InvalidFormat(
                f"Only MCS HDF5 up to version {MAX_PROTOCOL_VERSION} is supported!", path
            )
        return ProtocolType.DATA_MANAGER, 1

    if "ID.Type" in attrs or "FileVersion" in attrs:
        if "ID.Type" in attrs and not attribute_equals(root, "ID.Type", "McsData"):
            raise InvalidFormat("Only McsData is valid as type for CMOS-MEA files!", path)
        if "FileVersion" in attrs and not attribute_equals(root, "FileVersion", _is_version(1)):
            raise InvalidFormat(
                "Only MCS HDF5 up to version 1 is supported for CMOS-MEA files!", path
            )
        return ProtocolType.CMOS_MEA, int(_version(root, "FileVersion", path))

    raise InvalidFormat("This is not a valid MCS H5 file!", path)


def is_legacy_datamanager(app_name: str | None, app_version: str | None) -> bool:
    """True for files written by DataManager 1.9.2 and earlier.

    Those versions stored the ConversionFactors of frame entities in the
    wrong orientation.
    """
    if app_name != LEGACY_APPLICATION_NAME or not isinstance(app_version, str):
        return False
    parts = app_version.split(".")
    if len(parts) != 4:
        return False
    try:
        major, minor, patch = (int(p) for p in parts[:3])
    except ValueError:
        return False
    return major <= 1 and (minor < 9 or (minor == 9 and patch <= 2))


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _require_dataset(node: NodeInfo, name: str) -> NodeInfo:
    ds = node.dataset(name)
    if ds is None:
        raise DatasetNotFound(join_path(node.path, name))
    return ds


def _storage_shape(context: ReadContext, ds: NodeInfo) -> tuple[int, ...]:
    shape = tuple(ds.shape or ())
    return shape[::-1] if context.capabilities.reverses_axes else shape


def _read_info(context: ReadContext, node: NodeInfo, name: str) -> InfoTable:
    ds = _require_dataset(node, name)
    rows = read_compound(context.backend, ds.path, widen_int64=context.config.widen_int64_fields)
    return InfoTable.from_rows(rows, name=name)


def _read_timestamps(
    context: ReadContext, ds: NodeInfo, tick: int | None, n_samples: int | None
) -> np.ndarray:
    if tick is None:
        raise AttributeNotFound("Tick", ds.path)
    raw = context.storage_order(context.backend.read_dataset(ds.path))
    return expand_timestamp_segments(
        raw, tick, n_samples=n_samples, dtype=context.config.timestamp_type.dtype
    )


def _entity_id(name: str, prefix: str) -> int | None:
    if not name.startswith(prefix):
        return None
    try:
        return int(name[len(prefix):])
    except ValueError:
        return None


def _label(node: NodeInfo) -> str | None:
    label = get_attribute(node, "Label")
    return None if label is None else str(label)


# ----------------------------------------------------------------------
# Streams
# ----------------------------------------------------------------------
def build_analog_stream(context: ReadContext, node: NodeInfo) -> AnalogStream:
    info = _read_info(context, node, "InfoChannel")
    data_ds = _require_dataset(node, "ChannelData")
    shape = _storage_shape(context, data_ds)
    if len(shape) != 2 or shape[0] != len(info):
        raise InvalidPayload(
            f"{data_ds.path} has shape {shape}, expected ({len(info)}, samples)"
        )

    timestamps = _read_timestamps(
        context, _require_dataset(node, "ChannelDataTimeStamps"), info.tick, shape[1]
    )
    backend = context.backend
    data_type = context.config.data_type

    def _loader() -> np.ndarray:
        logger.debug(f"Reading analog data from {data_ds.path}")
        raw = context.storage_order(backend.read_dataset(data_ds.path))
        return convert_for(raw, info.ad_zero, info.conversion_factor, data_type, axis=0)

    return AnalogStream(
        path=node.path,
        info=info,
        payload=LazyPayload(_loader, name=data_ds.path),
        sample_timestamps=timestamps,
        label=_label(node),
        data_type=data_type,
        attrs=read_attributes(node),
    )


def build_event_stream(context: ReadContext, node: NodeInfo) -> EventStream:
    info = _read_info(context, node, "InfoEvent")
    entities: dict[int, str] = {}
    for event_id in info.column("EventID", -1):
        ds = node.dataset(f"EventEntity_{int(event_id)}")
        if ds is None:
            logger.debug(f"No entity dataset for event {int(event_id)} in {node.path}")
            continue
        entities[int(event_id)] = ds.path

    backend = context.backend
    ts_dtype = context.config.timestamp_type.dtype

    def _loader() -> dict[int, np.ndarray]:
        logger.debug(f"Reading {len(entities)} event entities from {node.path}")
        arrays = backend.read_datasets(list(entities.values()))
        return {
            event_id: np.atleast_2d(context.storage_order(arr)).astype(ts_dtype, copy=False)
            for event_id, arr in zip(entities, arrays)
        }

    return EventStream(
        path=node.path,
        info=info,
        payload=LazyPayload(_loader, name=node.path),
        label=_label(node),
        attrs=read_attributes(node),
    )


def build_segment_stream(context: ReadContext, node: NodeInfo) -> SegmentStream:
    info = _read_info(context, node, "InfoSegment")
    source_info = (
        _read_info(context, node, "InfoSourceChannel")
        if node.dataset("InfoSourceChannel") is not None
        else InfoTable(name="InfoSourceChannel")
    )

    entities: dict[int, tuple[str, str]] = {}
    for segment_id in info.column("SegmentID", -1):
        sid = int(segment_id)
        data_ds = node.dataset(f"SegmentData_{sid}")
        ts_ds = node.dataset(f"SegmentData_ts_{sid}")
        if data_ds is None or ts_ds is None:
            logger.debug(f"No data for segment {sid} in {node.path}")
            continue
        entities[sid] = (data_ds.path, ts_ds.path)

    backend = context.backend
    data_type = context.config.data_type
    ts_dtype = context.config.timestamp_type.dtype

    def _loader() -> SegmentPayload:
        logger.debug(f"Reading {len(entities)} segment entities from {node.path}")
        paths = [p for pair in entities.values() for p in pair]
        arrays = iter(backend.read_datasets(paths))
        data: dict[int, np.ndarray] = {}
        stamps: dict[int, np.ndarray] = {}
        for sid in entities:
            raw = context.storage_order(next(arrays))
            ts = np.asarray(next(arrays)).reshape(-1)
            if raw.ndim == 1:
                raw = raw.reshape(1, -1)
            zero, factor, axis = segment_source_conversion(info, source_info, sid, raw.ndim)
            data[sid] = convert_for(raw, zero, factor, data_type, axis=axis)
            stamps[sid] = ts.astype(ts_dtype, copy=False)
        return SegmentPayload(data=data, timestamps=stamps)

    return SegmentStream(
        path=node.path,
        info=info,
        source_info=source_info,
        payload=LazyPayload(_loader, name=node.path),
        label=_label(node),
        data_type=data_type,
        attrs=read_attributes(node),
    )


def _frame_logical(stored: np.ndarray) -> np.ndarray:
    """Stored (time, y, x) -> logical (x, y, time)."""
    return stored.transpose(2, 1, 0)


def build_frame_entity(
    context: ReadContext, node: NodeInfo, frame_data_id: int, row: dict[str, Any]
) -> FrameEntity:
    data_ds = _require_dataset(node, "FrameData")
    cf_ds = _require_dataset(node, "ConversionFactors")
    shape = _storage_shape(context, data_ds)
    if len(shape) != 3:
        raise InvalidPayload(f"{data_ds.path} must be 3-D, got shape {shape}")
    n_frames, ny, nx = shape

    tick = row.get("Tick")
    timestamps = _read_timestamps(
        context,
        _require_dataset(node, "FrameDataTimeStamps"),
        None if tick is None else int(tick),
        n_frames,
    )

    backend = context.backend
    data_type = context.config.data_type
    ad_zero = float(row.get("ADZero", 0) or 0)
    # legacy files store the factor matrix as (x, y) instead of (y, x)
    flipped = context.config.correct_conversion_factor_orientation

    def _factors(stored: np.ndarray) -> np.ndarray:
        cf = np.asarray(stored) if flipped else np.asarray(stored).T
        if cf.shape != (nx, ny):
            raise InvalidPayload(
                f"{cf_ds.path} has shape {cf.shape} after orientation, expected {(nx, ny)}; "
                "check correct_conversion_factor_orientation"
            )
        return cf

    def _loader() -> FramePayload:
        logger.debug(f"Reading frame data from {data_ds.path}")
        raw, cf = backend.read_datasets([data_ds.path, cf_ds.path])
        raw = _frame_logical(context.storage_order(raw))
        cf = _factors(context.storage_order(cf))
        return FramePayload(data=convert_frame(raw, ad_zero, cf, data_type), conversion_factors=cf)

    def _region(x: tuple[int, int], y: tuple[int, int], t: tuple[int, int]) -> FramePayload:
        logger.debug(f"Reading region x={x} y={y} t={t} from {data_ds.path}")
        raw = backend.read_dataset_region(data_ds.path, context.backend_ranges([t, y, x]))
        cf_ranges = [x, y] if flipped else [y, x]
        cf = backend.read_dataset_region(cf_ds.path, context.backend_ranges(cf_ranges))
        cf = np.asarray(context.storage_order(cf))
        cf = cf if flipped else cf.T
        return FramePayload(data=_frame_logical(context.storage_order(raw)), conversion_factors=cf)

    return FrameEntity(
        frame_data_id=frame_data_id,
        path=node.path,
        shape=(nx, ny, n_frames),
        payload=LazyPayload(_loader, name=data_ds.path),
        region_reader=_region,
        frame_timestamps=timestamps,
        ad_zero=ad_zero,
        data_type=data_type,
        info=row,
    )


def build_frame_stream(context: ReadContext, node: NodeInfo) -> FrameStream:
    info = _read_info(context, node, "InfoFrame")
    entities: list[FrameEntity] = []
    for group in node.groups:
        frame_data_id = _entity_id(group.name, "FrameDataEntity_")
        if frame_data_id is None:
            continue
        try:
            row = info.row(info.find("FrameDataID", frame_data_id))
        except KeyError:
            row = info.row(0) if len(info) else {}
        entities.append(build_frame_entity(context, group, frame_data_id, row))

    return FrameStream(
        path=node.path,
        info=info,
        entities=tuple(entities),
        label=_label(node),
        attrs=read_attributes(node),
    )


_STREAM_BUILDERS: dict[StreamKind, Callable[[ReadContext, NodeInfo], Stream]] = {
    StreamKind.ANALOG: build_analog_stream,
    StreamKind.FRAME: build_frame_stream,
    StreamKind.EVENT: build_event_stream,
    StreamKind.SEGMENT: build_segment_stream,
}


# ----------------------------------------------------------------------
# Recordings
# ----------------------------------------------------------------------
_RECORDING_FIELDS = {
    "RecordingID": "recording_id",
    "RecordingType": "recording_type",
    "TimeStamp": "timestamp",
    "Duration": "duration",
    "Label": "label",
    "Comment": "comment",
}


def build_recording(context: ReadContext, node: NodeInfo) -> Recording:
    """Build a Recording from its group, dispatching child groups by stream kind."""
    attrs = read_attributes(node)
    fields = {dst: attrs[src] for src, dst in _RECORDING_FIELDS.items() if src in attrs}

    streams: dict[StreamKind, list[Stream]] = {kind: [] for kind in StreamKind}
    failures: dict[str, McsError] = {}
    for group in node.groups:
        kind = classify_group(group.name)
        if kind is None:
            logger.debug(f"Ignoring group {group.path}: not a stream container")
            continue
        for stream_node in group.groups:
            try:
                streams[kind].append(_STREAM_BUILDERS[kind](context, stream_node))
            except McsError as e:
                logger.warning(f"Could not read {kind.value} {stream_node.path}: {e}")
                failures[stream_node.path] = e

    return Recording(
        path=node.path,
        attrs=attrs,
        analog_streams=tuple(streams[StreamKind.ANALOG]),
        frame_streams=tuple(streams[StreamKind.FRAME]),
        event_streams=tuple(streams[StreamKind.EVENT]),
        segment_streams=tuple(streams[StreamKind.SEGMENT]),
        failures=failures,
        **fields,
    )


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------
def read_data_manager(context: ReadContext, root: NodeInfo) -> tuple[list[Recording], dict[str, Any]]:
    data_node = root.group("Data")
    if data_node is None:
        raise InvalidFormat("DataManager file without a /Data group.", context.backend.path)

    root_attrs = read_attributes(root)
    app_name = root_attrs.get("GeneratingApplicationName")
    app_version = root_attrs.get("GeneratingApplicationVersion")
    if is_legacy_datamanager(app_name, app_version) and not context.config.correct_conversion_factor_orientation:
        logger.warning(
            f"{context.backend.path} was written by {app_name} {app_version}; frame "
            "conversion factors may be transposed (see correct_conversion_factor_orientation)"
        )

    recordings = [build_recording(context, group) for group in data_node.groups]
    return recordings, read_attributes(data_node)


def read_mcs(backend: StorageBackend, config: ReadConfig | None = None) -> McsData:
    """Validate the file behind `backend` and build its object graph."""
    config = ReadConfig.coerce(config)
    try:
        root = backend.describe("/")
    except FileNotFoundError:
        raise
    except OSError as e:
        raise InvalidFormat(f"{backend.path} is not an HDF5 file ({e}).", backend.path) from e
    root_attrs = read_attributes(root)
    protocol_type, version = validate_root(root, backend.path)
    logger.info(f"Reading {protocol_type.value} file {backend.path} (version {version})")

    context = ReadContext(backend=backend, config=config)
    if protocol_type is ProtocolType.DATA_MANAGER:
        recordings, attrs = read_data_manager(context, root)
    else:
        recordings, attrs = [build_cmos_recording(context, root)], root_attrs

    return McsData(
        path=backend.path,
        protocol_type=protocol_type,
        protocol_version=version,
        recordings=tuple(recordings),
        attrs=attrs,
        generating_application=(
            root_attrs.get("GeneratingApplicationName"),
            root_attrs.get("GeneratingApplicationVersion"),
        ),
        config=config,
    )
