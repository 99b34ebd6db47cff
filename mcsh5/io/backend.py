from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Protocol, Sequence, runtime_checkable

import numpy as np

from mcsh5.core.config import ReadConfig


# A per-axis selection for hyperslab reads: None = full extent,
# (start, end) = inclusive 0-based index range.
AxisRange = tuple[int, int] | None


def join_path(parent: str, name: str) -> str:
    if not parent or parent == "/":
        return "/" + name.lstrip("/")
    return parent.rstrip("/") + "/" + name.lstrip("/")


@dataclass(frozen=True, slots=True)
class NodeInfo:
    """
    Description of one group or dataset of the container tree.

    `attrs` holds the attribute values exactly as the backend returned them;
    use `mcsh5.io.attributes` to read them.
    """

    name: str
    path: str
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)
    groups: tuple["NodeInfo", ...] = field(default=(), repr=False)
    datasets: tuple["NodeInfo", ...] = field(default=(), repr=False)
    shape: tuple[int, ...] | None = None
    dtype: np.dtype | None = field(default=None, repr=False)

    @property
    def is_dataset(self) -> bool:
        return self.shape is not None

    @property
    def is_compound(self) -> bool:
        return self.dtype is not None and self.dtype.names is not None

    def group(self, name: str) -> "NodeInfo | None":
        return next((g for g in self.groups if g.name == name), None)

    def dataset(self, name: str) -> "NodeInfo | None":
        return next((d for d in self.datasets if d.name == name), None)


@dataclass(frozen=True, slots=True)
class BackendCapabilities:
    """
    What the storage backend can do, resolved once per backend.

    reverses_axes: arrays come back with their axes in reverse storage
    order (column-major readers).
    """

    reverses_axes: bool = False


@runtime_checkable
class StorageBackend(Protocol):
    """Protocol for the container I/O layer used by the readers."""

    path: str
    capabilities: BackendCapabilities

    def describe(self, path: str = "/") -> NodeInfo:
        ...

    def list_child_groups(self, path: str) -> list[NodeInfo]:
        ...

    def read_attribute(self, path: str, name: str, default: Any = None) -> Any:
        ...

    def read_dataset(self, path: str) -> np.ndarray:
        ...

    def read_datasets(self, paths: Iterable[str]) -> list[np.ndarray]:
        ...

    def read_dataset_region(
        self, path: str, ranges: Sequence[AxisRange]
    ) -> np.ndarray:
        ...

    def read_compound_dataset(self, path: str) -> list[dict[str, Any]]:
        ...


@dataclass(frozen=True, slots=True)
class ReadContext:
    """Backend + configuration passed down through node construction."""

    backend: StorageBackend
    config: ReadConfig = field(default_factory=ReadConfig)

    @property
    def capabilities(self) -> BackendCapabilities:
        return self.backend.capabilities

    def storage_order(self, array: np.ndarray) -> np.ndarray:
        """Return `array` with its axes in storage (row-major) order."""
        array = np.asarray(array)
        if self.capabilities.reverses_axes and array.ndim > 1:
            return array.transpose(tuple(range(array.ndim - 1, -1, -1)))
        return array

    def backend_ranges(self, ranges: Sequence[AxisRange]) -> list:
        """Translate storage-order ranges into the backend's axis order."""
        ranges = list(ranges)
        if self.capabilities.reverses_axes:
            ranges.reverse()
        return ranges
