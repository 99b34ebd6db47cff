# mcsh5/core/timestamps.py
"""
Reconstruction of per-sample timestamps from compact segment descriptors.

Streams store their timing as rows of (start_tick, first_index, last_index):
each row describes a run of uniformly spaced samples that starts at
`start_tick` microseconds and covers the inclusive, 0-based sample range
[first_index, last_index].
"""

from __future__ import annotations

import numpy as np

from .exceptions import MalformedTimestampIndex


def normalize_segment_triples(raw: np.ndarray) -> np.ndarray:
    """Return the descriptor as an (n, 3) int64 array, one triple per row.

    Descriptors may arrive as (n, 3) or (3, n). A (3, 3) array is read
    row-wise.
    """
    arr = np.asarray(raw)
    if arr.size == 0:
        return np.empty((0, 3), dtype=np.int64)
    if arr.ndim == 1 and arr.size == 3:
        arr = arr.reshape(1, 3)
    if arr.ndim != 2:
        raise MalformedTimestampIndex(
            f"Timestamp descriptor must be 2D, got shape {arr.shape}"
        )
    if arr.shape[1] != 3:
        if arr.shape[0] != 3:
            raise MalformedTimestampIndex(
                f"Timestamp descriptor must have 3 columns, got shape {arr.shape}"
            )
        arr = arr.T
    return np.ascontiguousarray(arr, dtype=np.int64)


def validate_segment_tiling(triples: np.ndarray, n_samples: int | None = None) -> np.ndarray:
    """
    Check that the index ranges cover [0, last] exactly once.

    Returns the triples ordered by first index. Raises MalformedTimestampIndex
    on gaps, overlaps, empty/reversed ranges or a length mismatch with
    `n_samples`.
    """
    if triples.shape[0] == 0:
        if n_samples:
            raise MalformedTimestampIndex(
                f"No timestamp segments for a stream of {n_samples} samples."
            )
        return triples

    ordered = triples[np.argsort(triples[:, 1], kind="stable")]
    first = ordered[:, 1]
    last = ordered[:, 2]

    if np.any(last < first):
        bad = int(np.flatnonzero(last < first)[0])
        raise MalformedTimestampIndex(
            f"Segment {bad} has last index {last[bad]} before first index {first[bad]}."
        )
    if first[0] != 0:
        raise MalformedTimestampIndex(
            f"Timestamp segments start at sample {first[0]}, expected 0."
        )

    expected_next = last[:-1] + 1
    mismatch = np.flatnonzero(first[1:] != expected_next)
    if mismatch.size:
        i = int(mismatch[0])
        kind = "overlap" if first[i + 1] < expected_next[i] else "gap"
        raise MalformedTimestampIndex(
            f"Timestamp segments {kind} between sample {last[i]} and {first[i + 1]}."
        )

    if n_samples is not None and int(last[-1]) + 1 != n_samples:
        raise MalformedTimestampIndex(
            f"Timestamp segments cover {int(last[-1]) + 1} samples, stream has {n_samples}."
        )
    return ordered


def expand_timestamp_segments(
    raw: np.ndarray,
    tick: int | float,
    *,
    n_samples: int | None = None,
    dtype: np.dtype | type = np.int64,
) -> np.ndarray:
    """
    Expand segment descriptors into one timestamp per sample.

    The output has length `last_index + 1` of the final segment; samples of
    segment i are `start_i + k * tick` for k = 0 .. last_i - first_i.
    The result is strictly increasing: a segment must start after the last
    timestamp of the segment before it.
    """
    if tick <= 0:
        raise MalformedTimestampIndex(f"Tick must be positive, got {tick}.")
    triples = validate_segment_tiling(normalize_segment_triples(raw), n_samples)
    if triples.shape[0] == 0:
        return np.empty(0, dtype=dtype)

    step = np.int64(tick)
    ends = triples[:, 0] + (triples[:, 2] - triples[:, 1]) * step
    overlapping = np.flatnonzero(triples[1:, 0] <= ends[:-1])
    if overlapping.size:
        i = int(overlapping[0]) + 1
        raise MalformedTimestampIndex(
            f"Segment {i} starts at {int(triples[i, 0])}, not after the last "
            f"timestamp {int(ends[i - 1])} of the segment before it."
        )

    total = int(triples[-1, 2]) + 1
    out = np.empty(total, dtype=np.int64)
    for start, first, last in triples:
        n = int(last - first + 1)
        out[first:last + 1] = start + np.arange(n, dtype=np.int64) * step

    return out if np.dtype(dtype) == out.dtype else out.astype(dtype)


def timestamps_to_indices(
    timestamps: np.ndarray,
    start_us: float | None = None,
    end_us: float | None = None,
) -> tuple[int, int]:
    """Inclusive index window [first, last] of timestamps within [start_us, end_us]."""
    ts = np.asarray(timestamps)
    if ts.size == 0:
        return 0, -1
    first = 0 if start_us is None else int(np.searchsorted(ts, start_us, side="left"))
    last = ts.size - 1 if end_us is None else int(np.searchsorted(ts, end_us, side="right")) - 1
    return first, last
