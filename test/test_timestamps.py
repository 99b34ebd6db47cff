# test/test_timestamps.py
import numpy as np
import pytest

from mcsh5.core import MalformedTimestampIndex
from mcsh5.core.timestamps import (
    expand_timestamp_segments,
    normalize_segment_triples,
    timestamps_to_indices,
    validate_segment_tiling,
)


def test_expand_two_segments():
    ts = expand_timestamp_segments(np.array([[1000, 0, 2], [2000, 3, 4]]), 50)
    assert ts.tolist() == [1000, 1050, 1100, 2000, 2050]
    assert ts.dtype == np.int64


def test_expand_single_segment_uniform_spacing():
    ts = expand_timestamp_segments(np.array([[0, 0, 9]]), 100)
    assert ts.size == 10
    assert np.all(np.diff(ts) == 100)


def test_expand_accepts_transposed_descriptor():
    triples = np.array([[1000, 2000], [0, 3], [2, 4]])  # (3, n)
    ts = expand_timestamp_segments(triples, 50)
    assert ts.tolist() == [1000, 1050, 1100, 2000, 2050]


def test_expand_unsorted_rows():
    ts = expand_timestamp_segments(np.array([[2000, 3, 4], [1000, 0, 2]]), 50)
    assert ts.tolist() == [1000, 1050, 1100, 2000, 2050]


def test_expand_double_timestamps():
    ts = expand_timestamp_segments(np.array([[0, 0, 2]]), 20, dtype=np.float64)
    assert ts.dtype == np.float64
    assert ts.tolist() == [0.0, 20.0, 40.0]


def test_three_by_three_read_row_wise():
    raw = np.array([[0, 0, 1], [500, 2, 3], [900, 4, 4]])
    assert normalize_segment_triples(raw).tolist() == raw.tolist()


def test_one_dimensional_triple():
    assert normalize_segment_triples(np.array([7, 0, 3])).tolist() == [[7, 0, 3]]


@pytest.mark.parametrize(
    "triples",
    [
        [[0, 0, 2], [500, 4, 5]],  # gap at sample 3
        [[0, 0, 2], [500, 2, 5]],  # overlap at sample 2
        [[0, 1, 2]],               # does not start at 0
        [[0, 0, 2], [500, 3, 1]],  # reversed range
    ],
)
def test_invalid_tilings_raise(triples):
    with pytest.raises(MalformedTimestampIndex):
        validate_segment_tiling(normalize_segment_triples(np.array(triples)))


@pytest.mark.parametrize(
    "triples",
    [
        [[0, 0, 2], [500, 3, 4]],
        [[2000, 3, 4], [1000, 0, 2]],
        [[0, 0, 0], [1, 1, 1], [2, 2, 5]],
    ],
)
def test_expanded_timestamps_strictly_increase(triples):
    ts = expand_timestamp_segments(np.array(triples), 1)
    assert np.all(np.diff(ts) > 0)


@pytest.mark.parametrize(
    "triples, tick",
    [
        ([[1000, 0, 2], [500, 3, 4]], 50),   # second segment starts earlier
        ([[1000, 0, 2], [1100, 3, 4]], 50),  # starts on the last timestamp
        ([[1000, 0, 2], [1050, 3, 4]], 50),  # starts inside the first segment
        ([[0, 0, 2]], 0),
        ([[0, 0, 2]], -50),
    ],
)
def test_non_increasing_timestamps_raise(triples, tick):
    with pytest.raises(MalformedTimestampIndex):
        expand_timestamp_segments(np.array(triples), tick)


def test_length_mismatch_raises():
    with pytest.raises(MalformedTimestampIndex):
        expand_timestamp_segments(np.array([[0, 0, 3]]), 10, n_samples=5)


def test_bad_shape_raises():
    with pytest.raises(MalformedTimestampIndex):
        normalize_segment_triples(np.zeros((2, 4)))


def test_empty_descriptor():
    assert expand_timestamp_segments(np.empty((0, 3)), 10).size == 0
    with pytest.raises(MalformedTimestampIndex):
        expand_timestamp_segments(np.empty((0, 3)), 10, n_samples=3)


def test_timestamps_to_indices_inclusive():
    ts = np.array([0, 100, 200, 300, 400])
    assert timestamps_to_indices(ts, 100, 300) == (1, 3)
    assert timestamps_to_indices(ts, 150, 250) == (2, 2)
    assert timestamps_to_indices(ts) == (0, 4)
    first, last = timestamps_to_indices(ts, 410, 500)
    assert last < first
