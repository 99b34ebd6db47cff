# test/conftest.py
"""
Shared fixtures: an in-memory counting storage backend and builders for
synthetic MCS HDF5 trees.

A tree is a nested dict: a group is a dict (its attributes under the
"@attrs" key), a dataset is a numpy array or a `(array, attrs)` tuple.
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Iterable, Sequence

import numpy as np
import pytest

from mcsh5.io.backend import BackendCapabilities, NodeInfo, join_path


ATTRS = "@attrs"


def _split_dataset(value) -> tuple[np.ndarray, dict[str, Any]]:
    if isinstance(value, tuple):
        return np.asarray(value[0]), dict(value[1])
    return np.asarray(value), {}


class FakeBackend:
    """In-memory StorageBackend that counts every read call."""

    def __init__(self, tree: dict, *, path: str = "fake.h5", reverses_axes: bool = False):
        self.path = path
        self.tree = tree
        self.capabilities = BackendCapabilities(reverses_axes=reverses_axes)
        self.calls: Counter[str] = Counter()
        self.reads: Counter[str] = Counter()

    # ---- helpers ----
    def _lookup(self, path: str):
        node = self.tree
        for part in [p for p in path.split("/") if p]:
            node = node[part]
        return node

    def _present(self, arr: np.ndarray) -> np.ndarray:
        arr = np.asarray(arr)
        if self.capabilities.reverses_axes and arr.ndim > 1:
            return arr.T.copy()
        return arr.copy()

    def _describe(self, node, name: str, path: str) -> NodeInfo:
        if isinstance(node, dict):
            groups, datasets = [], []
            for key, child in node.items():
                if key == ATTRS:
                    continue
                child_path = join_path(path, key)
                if isinstance(child, dict):
                    groups.append(self._describe(child, key, child_path))
                else:
                    datasets.append(self._describe(child, key, child_path))
            return NodeInfo(
                name=name,
                path=path,
                attrs=dict(node.get(ATTRS, {})),
                groups=tuple(groups),
                datasets=tuple(datasets),
            )
        arr, attrs = _split_dataset(node)
        shape = arr.shape[::-1] if self.capabilities.reverses_axes else arr.shape
        return NodeInfo(name=name, path=path, attrs=attrs, shape=tuple(shape), dtype=arr.dtype)

    # ---- StorageBackend ----
    def describe(self, path: str = "/") -> NodeInfo:
        self.calls["describe"] += 1
        name = path.rstrip("/").rsplit("/", 1)[-1] or "/"
        return self._describe(self._lookup(path), name, path)

    def list_child_groups(self, path: str) -> list[NodeInfo]:
        return list(self.describe(path).groups)

    def read_attribute(self, path: str, name: str, default: Any = None) -> Any:
        self.calls["read_attribute"] += 1
        node = self._lookup(path)
        attrs = node.get(ATTRS, {}) if isinstance(node, dict) else _split_dataset(node)[1]
        return attrs.get(name, default)

    def read_dataset(self, path: str) -> np.ndarray:
        self.calls["read_dataset"] += 1
        self.reads[path] += 1
        return self._present(_split_dataset(self._lookup(path))[0])

    def read_datasets(self, paths: Iterable[str]) -> list[np.ndarray]:
        self.calls["read_datasets"] += 1
        out = []
        for p in paths:
            self.reads[p] += 1
            out.append(self._present(_split_dataset(self._lookup(p))[0]))
        return out

    def read_dataset_region(self, path: str, ranges: Sequence) -> np.ndarray:
        self.calls["read_dataset_region"] += 1
        self.reads[path] += 1
        arr = self._present(_split_dataset(self._lookup(path))[0])
        selection = tuple(
            slice(None) if r is None else slice(int(r[0]), int(r[1]) + 1) for r in ranges
        )
        return arr[selection]

    def read_compound_dataset(self, path: str) -> list[dict[str, Any]]:
        self.calls["read_compound_dataset"] += 1
        arr = np.atleast_1d(_split_dataset(self._lookup(path))[0])
        return [{name: rec[name] for name in arr.dtype.names} for rec in arr]

    @property
    def data_reads(self) -> int:
        """Number of bulk reads (compound info tables and attributes excluded)."""
        return self.calls["read_dataset"] + self.calls["read_datasets"] + self.calls["read_dataset_region"]


# ----------------------------------------------------------------------
# Synthetic DataManager content
# ----------------------------------------------------------------------
CHANNEL_DTYPE = np.dtype([
    ("ChannelID", "<i4"),
    ("RowIndex", "<i4"),
    ("Label", "S16"),
    ("Unit", "S8"),
    ("Exponent", "<i4"),
    ("ADZero", "<i4"),
    ("Tick", "<i8"),
    ("ConversionFactor", "<i8"),
])


def info_channel(labels, ad_zero, factors, tick=50, exponent=-9, unit="V") -> np.ndarray:
    rows = [
        (i, i, label.encode(), unit.encode(), exponent, zero, tick, factor)
        for i, (label, zero, factor) in enumerate(zip(labels, ad_zero, factors))
    ]
    return np.array(rows, dtype=CHANNEL_DTYPE)


def analog_stream_group(raw, ad_zero, factors, triples, *, tick=50, label="Filter Data") -> dict:
    raw = np.asarray(raw, dtype=np.int16)
    labels = [f"E{i + 1}" for i in range(raw.shape[0])]
    return {
        ATTRS: {"Label": label.encode(), "DataSubType": b"Electrode"},
        "InfoChannel": info_channel(labels, ad_zero, factors, tick=tick),
        "ChannelData": raw,
        "ChannelDataTimeStamps": np.asarray(triples, dtype=np.int64),
    }


EVENT_DTYPE = np.dtype([("EventID", "<i4"), ("Label", "S16"), ("RawDataBytes", "<i4")])


def event_stream_group() -> dict:
    return {
        ATTRS: {"Label": b"Digital Events"},
        "InfoEvent": np.array([(0, b"Rising", 4), (1, b"Falling", 4)], dtype=EVENT_DTYPE),
        "EventEntity_0": np.array([[100, 300, 500], [10, 10, 10]], dtype=np.int64),
        "EventEntity_1": np.array([[200, 400]], dtype=np.int64),
    }


SEGMENT_DTYPE = np.dtype([
    ("SegmentID", "<i4"),
    ("Label", "S16"),
    ("SourceChannelIDs", "S16"),
    ("PreInterval", "<i8"),
    ("PostInterval", "<i8"),
])

SOURCE_DTYPE = np.dtype([
    ("ChannelID", "<i4"),
    ("Label", "S16"),
    ("Unit", "S8"),
    ("Exponent", "<i4"),
    ("ADZero", "<i4"),
    ("Tick", "<i8"),
    ("ConversionFactor", "<i8"),
])


def segment_stream_group() -> dict:
    return {
        ATTRS: {"Label": b"Spike Detector"},
        "InfoSegment": np.array([(0, b"Spikes E1", b"1", 100, 200)], dtype=SEGMENT_DTYPE),
        "InfoSourceChannel": np.array(
            [(0, b"E0", b"V", -9, 0, 50, 1), (1, b"E1", b"V", -9, 10, 50, 4)],
            dtype=SOURCE_DTYPE,
        ),
        # two cut-outs of four samples each
        "SegmentData_0": np.array([[10, 11, 12, 13], [20, 21, 22, 23]], dtype=np.int16),
        "SegmentData_ts_0": np.array([1000, 5000], dtype=np.int64),
    }


FRAME_DTYPE = np.dtype([
    ("FrameID", "<i4"),
    ("FrameDataID", "<i4"),
    ("Label", "S16"),
    ("Unit", "S8"),
    ("Exponent", "<i4"),
    ("ADZero", "<i4"),
    ("Tick", "<i8"),
])


def frame_cube(nx=4, ny=3, nt=5) -> np.ndarray:
    """Stored (time, y, x) cube whose values encode their own coordinates."""
    t, y, x = np.meshgrid(np.arange(nt), np.arange(ny), np.arange(nx), indexing="ij")
    return (100 * t + 10 * y + x).astype(np.int16)


def frame_stream_group(nx=4, ny=3, nt=5, *, tick=100) -> dict:
    factors = np.arange(1, nx * ny + 1, dtype=np.float64).reshape(ny, nx)
    return {
        ATTRS: {"Label": b"Sensor Frames"},
        "InfoFrame": np.array([(0, 7, b"Frame", b"V", -6, 2, tick)], dtype=FRAME_DTYPE),
        "FrameDataEntity_7": {
            "FrameData": frame_cube(nx, ny, nt),
            "ConversionFactors": factors,
            "FrameDataTimeStamps": np.array([[0, 0, nt - 1]], dtype=np.int64),
        },
    }


def data_manager_tree(recording: dict, *, version: int = 3, app_version: str = "2.6.0.0") -> dict:
    return {
        ATTRS: {
            "McsHdf5ProtocolType": b"RawData",
            "McsHdf5ProtocolVersion": np.int32(version),
            "GeneratingApplicationName": b"Multi Channel DataManager",
            "GeneratingApplicationVersion": app_version.encode(),
        },
        "Data": {
            ATTRS: {"Date": b"Monday, 1 January 2024", "ProgramName": b"Multi Channel Experimenter"},
            "Recording_0": recording,
        },
    }


def recording_group(**stream_containers) -> dict:
    group = {
        ATTRS: {
            "RecordingID": np.int32(0),
            "RecordingType": b"",
            "TimeStamp": np.int64(0),
            "Duration": np.int64(250),
            "Label": b"",
            "Comment": b"test recording",
        },
    }
    group.update(stream_containers)
    return group


@pytest.fixture
def scenario_tree() -> dict:
    """One analog stream: 2 channels, tick 50, segments (1000,0,2),(2000,3,4)."""
    stream = analog_stream_group(
        raw=[[10, 20, 30, 40, 50], [1, 2, 3, 4, 5]],
        ad_zero=[5, 0],
        factors=[2, 3],
        triples=[[1000, 0, 2], [2000, 3, 4]],
    )
    return data_manager_tree(recording_group(AnalogStream={"Stream_0": stream}))


@pytest.fixture
def full_tree() -> dict:
    """A recording with one stream of every kind plus an unrelated group."""
    analog = analog_stream_group(
        raw=[[10, 20, 30, 40, 50], [1, 2, 3, 4, 5]],
        ad_zero=[5, 0],
        factors=[2, 3],
        triples=[[1000, 0, 2], [2000, 3, 4]],
    )
    return data_manager_tree(
        recording_group(
            AnalogStream={"Stream_0": analog},
            FrameStream={"Stream_0": frame_stream_group()},
            EventStream={"Stream_0": event_stream_group()},
            SegmentStream={"Stream_0": segment_stream_group()},
            TimeStampStream={"Stream_0": {ATTRS: {"Label": b"unrelated"}}},
        )
    )


@pytest.fixture
def make_backend():
    def _make(tree: dict, **kwargs) -> FakeBackend:
        return FakeBackend(tree, **kwargs)

    return _make


# ----------------------------------------------------------------------
# Real HDF5 files
# ----------------------------------------------------------------------
def _write_group(h5group, tree: dict) -> None:
    for key, value in tree.get(ATTRS, {}).items():
        h5group.attrs[key] = value
    for key, child in tree.items():
        if key == ATTRS:
            continue
        if isinstance(child, dict):
            _write_group(h5group.create_group(key, track_order=True), child)
        else:
            arr, attrs = _split_dataset(child)
            ds = h5group.create_dataset(key, data=arr)
            for name, value in attrs.items():
                ds.attrs[name] = value


@pytest.fixture
def write_h5(tmp_path):
    """Write a tree to an HDF5 file with h5py and return its path."""
    h5py = pytest.importorskip("h5py")

    def _write(tree: dict, name: str = "recording.h5"):
        path = tmp_path / name
        with h5py.File(path, "w", track_order=True) as f:
            _write_group(f, tree)
        return path

    return _write
