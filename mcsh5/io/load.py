# mcsh5/io/load.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

from mcsh5.core import McsData, ReadConfig
from mcsh5.io.backend import StorageBackend
from mcsh5.io.h5_backend import H5pyBackend
from mcsh5.io.mcs_reader import read_mcs


def open_mcs(
    path: str | Path,
    config: ReadConfig | Mapping[str, Any] | None = None,
    *,
    backend: StorageBackend | None = None,
) -> McsData:
    """Open an MCS HDF5 file. Only metadata is read; sample data loads on access."""
    if backend is None:
        if not Path(path).exists():
            raise FileNotFoundError(f"MCS HDF5 file not found: {path}")
        backend = H5pyBackend(path)
    return read_mcs(backend, ReadConfig.coerce(config))
