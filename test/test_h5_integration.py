# test/test_h5_integration.py
"""Round trips through real HDF5 files written with h5py."""

from __future__ import annotations

import numpy as np
import pytest

from mcsh5.core import InvalidFormat, ProtocolType
from mcsh5.io.h5_backend import H5pyBackend
from mcsh5.io.load import open_mcs

from conftest import ATTRS
from test_cmos_reader import cmos_tree, projection_matrix
from test_mcs_reader import expected_frame


pytestmark = pytest.mark.integration


def test_open_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        open_mcs(tmp_path / "missing.h5")


def test_open_foreign_hdf5(write_h5):
    path = write_h5({ATTRS: {"Title": b"not mcs"}, "Stuff": {}}, "foreign.h5")
    with pytest.raises(InvalidFormat) as exc:
        open_mcs(path)
    assert exc.value.path == str(path)


def test_open_text_file(tmp_path):
    path = tmp_path / "notes.h5"
    path.write_text("this is not an HDF5 file\n")
    with pytest.raises(InvalidFormat) as exc:
        open_mcs(path)
    assert exc.value.path == str(path)
    assert isinstance(exc.value.__cause__, OSError)


def test_scenario_end_to_end(write_h5, scenario_tree):
    data = open_mcs(write_h5(scenario_tree))
    assert data.protocol_type is ProtocolType.DATA_MANAGER

    stream = data[0].analog_streams[0]
    assert stream.label == "Filter Data"
    assert stream.timestamps().tolist() == [1000, 1050, 1100, 2000, 2050]
    assert not stream.is_loaded
    assert stream.data()[0].tolist() == [10, 30, 50, 70, 90]
    assert stream.data()[1].tolist() == [3, 6, 9, 12, 15]


def test_raw_mode_end_to_end(write_h5, scenario_tree):
    data = open_mcs(write_h5(scenario_tree), {"dataType": "raw"})
    raw = data[0].analog_streams[0].data()
    assert raw.dtype == np.int16
    assert raw.tolist() == [[10, 20, 30, 40, 50], [1, 2, 3, 4, 5]]


def test_all_stream_kinds(write_h5, full_tree):
    rec = open_mcs(write_h5(full_tree))[0]

    assert len(rec) == 4
    assert rec.failures == {}
    assert rec.event_streams[0].timestamps()[0].tolist() == [100, 300, 500]
    assert rec.segment_streams[0].data()[0].tolist() == [[0, 4, 8, 12], [40, 44, 48, 52]]

    entity = rec.frame_streams[0].entity(7)
    part = entity.read_partial(time=(0.00005, 0.00035), channel_x=(1, 2), channel_y=(0, 1))
    assert np.allclose(part.data, expected_frame()[1:3, 0:2, 1:4])
    assert not entity.is_loaded
    assert np.allclose(entity.data(), expected_frame())


def test_cmos_end_to_end(write_h5):
    data = open_mcs(write_h5(cmos_tree(), "cmos.h5"))
    assert data.is_cmos

    rec = data[0]
    assert [s.label for s in rec.sources] == ["Filter Tool 1", "Spike Sorter"]
    assert rec.filter_sources[0].pipeline[0]["CutoffFrequency"] == 100.0

    sorter = rec.spike_sorter_sources[0]
    assert np.array_equal(sorter.projection_matrix, projection_matrix())
    assert [u.label for u in sorter] == ["Unit 1", "Unit 2"]
    assert sorter.units[0].timestamps().tolist() == [1000, 1500, 4200]


def test_backend_region_reads(write_h5, full_tree):
    backend = H5pyBackend(write_h5(full_tree))
    path = "/Data/Recording_0/FrameStream/Stream_0/FrameDataEntity_7/FrameData"

    region = backend.read_dataset_region(path, [(1, 2), None, (3, 3)])
    assert region.shape == (2, 3, 1)

    with pytest.raises(IndexError):
        backend.read_dataset_region(path, [(0, 5), None, None])
    with pytest.raises(ValueError):
        backend.read_dataset_region(path, [None, None])


def test_backend_describe_keeps_creation_order(write_h5, full_tree):
    backend = H5pyBackend(write_h5(full_tree))
    rec = backend.describe("/Data/Recording_0")
    assert [g.name for g in rec.groups] == [
        "AnalogStream", "FrameStream", "EventStream", "SegmentStream", "TimeStampStream",
    ]
    assert backend.read_attribute("/", "McsHdf5ProtocolVersion") == 3
