from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Sequence

import h5py  # container I/O for MCS HDF5 files
import numpy as np

from mcsh5.io.backend import AxisRange, BackendCapabilities, NodeInfo


logger = logging.getLogger(__name__)


def _to_slice(rng: AxisRange, extent: int) -> slice:
    if rng is None:
        return slice(0, extent)
    start, end = int(rng[0]), int(rng[1])
    if start < 0 or end >= extent or end < start:
        raise IndexError(f"range [{start}, {end}] outside axis of length {extent}")
    return slice(start, end + 1)


def _describe(obj: h5py.Group | h5py.Dataset, name: str) -> NodeInfo:
    attrs = {key: obj.attrs[key] for key in obj.attrs.keys()}
    if isinstance(obj, h5py.Dataset):
        return NodeInfo(
            name=name,
            path=obj.name,
            attrs=attrs,
            shape=tuple(obj.shape),
            dtype=obj.dtype,
        )

    groups: list[NodeInfo] = []
    datasets: list[NodeInfo] = []
    for key in obj.keys():
        child = obj.get(key)
        if isinstance(child, h5py.Group):
            groups.append(_describe(child, key))
        elif isinstance(child, h5py.Dataset):
            datasets.append(_describe(child, key))
    return NodeInfo(
        name=name,
        path=obj.name,
        attrs=attrs,
        groups=tuple(groups),
        datasets=tuple(datasets),
    )


class H5pyBackend:
    """StorageBackend implementation on top of h5py.

    The file is opened for each call (once for composite reads) and never
    kept open between calls. Children are enumerated in creation order when
    the file tracks it, otherwise in h5py's name order.
    """

    capabilities = BackendCapabilities(reverses_axes=False)

    def __init__(self, path: str | Path):
        self.path = str(path)

    def _open(self) -> h5py.File:
        return h5py.File(self.path, "r")

    # ------------------------------------------------------------------
    # Tree
    # ------------------------------------------------------------------
    def describe(self, path: str = "/") -> NodeInfo:
        with self._open() as f:
            obj = f[path]
            name = path.rstrip("/").rsplit("/", 1)[-1] or "/"
            return _describe(obj, name)

    def list_child_groups(self, path: str) -> list[NodeInfo]:
        return list(self.describe(path).groups)

    def read_attribute(self, path: str, name: str, default: Any = None) -> Any:
        with self._open() as f:
            attrs = f[path].attrs
            return attrs[name] if name in attrs else default

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------
    def read_dataset(self, path: str) -> np.ndarray:
        logger.debug(f"Reading dataset {path} from {self.path}")
        with self._open() as f:
            return f[path][()]

    def read_datasets(self, paths: Iterable[str]) -> list[np.ndarray]:
        paths = list(paths)
        logger.debug(f"Reading {len(paths)} datasets from {self.path}")
        with self._open() as f:
            return [f[p][()] for p in paths]

    def read_dataset_region(self, path: str, ranges: Sequence[AxisRange]) -> np.ndarray:
        with self._open() as f:
            dset = f[path]
            if len(ranges) != dset.ndim:
                raise ValueError(
                    f"{len(ranges)} ranges given for {dset.ndim}-D dataset {path}"
                )
            selection = tuple(_to_slice(r, n) for r, n in zip(ranges, dset.shape))
            logger.debug(f"Reading region {selection} of {path}")
            return dset[selection]

    def read_compound_dataset(self, path: str) -> list[dict[str, Any]]:
        with self._open() as f:
            data = np.atleast_1d(f[path][()])
        names = data.dtype.names or ()
        return [{name: record[name] for name in names} for record in data]
