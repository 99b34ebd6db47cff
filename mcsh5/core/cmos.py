# mcsh5/core/cmos.py
"""
CMOS-MEA data sources.

Datasets and groups of a CMOS-MEA file announce their role through an
`ID.TypeID` attribute. The identifiers below are the ones this package
understands; any other identifier is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Union

import numpy as np

from .exceptions import McsError, StreamNotFound
from .lazy import LazyPayload


# ---- typed-ID registry ----
FILTER_PIPELINE_TYPE_ID = "c632506d-c961-4a9f-b22b-ac7a56ce3552"
FILTER_SETTINGS_TYPE_ID = "b181ceed-337d-4bda-99ec-e7e624cf49d0"
SPIKE_SORTER_SETTINGS_TYPE_IDS = frozenset({
    "3533aded-b369-4529-836d-9629eb1a27a8",
    "f20b653e-25fb-4f7a-ae8a-f35044f46720",
    "c7d23018-9006-45fe-942f-c5d0f9cde284",
    "713a9202-87e1-4bfe-ba80-b909a000aae5",
    "62bc7b9f-7eea-4a88-a438-c618067d49f4",
})
UNIT_INFO_TYPE_ID = "7cffd022-c99e-42c2-b9f7-f79be7b4dfe6"
PROJECTION_MATRIX_TYPE_ID = "3fa908a3-fac9-4a80-96a1-310d9bcdf617"
UNIT_TYPE_ID = "0e5a97df-9de0-4a22-ab8c-54845c1ff3b9"

PROJECTION_MATRIX_DIMENSIONS = "Embedding x Units x Channels"


@dataclass(frozen=True, slots=True)
class FilterRecord:
    """One filter of a filter pipeline."""
    name: str | None
    type: str | None
    fields: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]


@dataclass(frozen=True, slots=True)
class CmosFilterSource:
    path: str
    label: str | None = None
    info: dict[str, Any] = field(default_factory=dict, repr=False)
    pipeline: tuple[FilterRecord, ...] = field(default=(), repr=False)
    settings: dict[str, Any] | None = field(default=None, repr=False)


@dataclass(frozen=True, slots=True)
class CmosSpikeSorterUnit:
    """
    A sorted unit. Only attributes are read up front; the unit datasets
    (peaks, source signal, STA, ...) are read together on first access.
    """
    path: str
    payload: LazyPayload[dict[str, Any]] = field(repr=False)
    label: str | None = None
    info: dict[str, Any] = field(default_factory=dict, repr=False)

    def datasets(self) -> dict[str, Any]:
        return self.payload.get()

    @property
    def is_loaded(self) -> bool:
        return self.payload.is_loaded

    def peaks(self) -> Mapping[str, np.ndarray]:
        ds = self.datasets()
        if "Peaks" not in ds:
            raise StreamNotFound(f"{self.path}/Peaks")
        return ds["Peaks"]

    def timestamps(self) -> np.ndarray:
        """Peak timestamps in microseconds."""
        peaks = self.peaks()
        if "Timestamp" not in peaks:
            raise StreamNotFound(f"{self.path}/Peaks/Timestamp")
        return np.asarray(peaks["Timestamp"])


@dataclass(frozen=True, slots=True)
class CmosSpikeSorterSource:
    """
    Results of the spike sorter.

    projection_matrix is ordered Embedding x Units x Channels.
    """
    path: str
    label: str | None = None
    info: dict[str, Any] = field(default_factory=dict, repr=False)
    settings: dict[str, Any] = field(default_factory=dict, repr=False)
    unit_infos: dict[str, np.ndarray] = field(default_factory=dict, repr=False)
    projection_matrix: np.ndarray | None = field(default=None, repr=False)
    units: tuple[CmosSpikeSorterUnit, ...] = field(default=(), repr=False)
    failures: Mapping[str, McsError] = field(default_factory=dict, repr=False)

    @property
    def projection_matrix_dimensions(self) -> str:
        return PROJECTION_MATRIX_DIMENSIONS

    def __len__(self) -> int:
        return len(self.units)

    def __iter__(self) -> Iterator[CmosSpikeSorterUnit]:
        return iter(self.units)


@dataclass(frozen=True, slots=True)
class CmosGenericSource:
    """A source of unknown type, kept when read_unknown_cmos_sources is set."""
    path: str
    payload: LazyPayload[dict[str, Any]] = field(repr=False)
    label: str | None = None
    type: str | None = None
    info: dict[str, Any] = field(default_factory=dict, repr=False)

    def datasets(self) -> dict[str, Any]:
        return self.payload.get()


CmosSource = Union[CmosFilterSource, CmosSpikeSorterSource, CmosGenericSource]


@dataclass(frozen=True, slots=True)
class CmosRecording:
    """The single recording of a CMOS-MEA file: its data sources, in file order."""
    path: str
    sources: tuple[CmosSource, ...] = field(default=(), repr=False)
    failures: Mapping[str, McsError] = field(default_factory=dict, repr=False)

    def __len__(self) -> int:
        return len(self.sources)

    @property
    def filter_sources(self) -> list[CmosFilterSource]:
        return [s for s in self.sources if isinstance(s, CmosFilterSource)]

    @property
    def spike_sorter_sources(self) -> list[CmosSpikeSorterSource]:
        return [s for s in self.sources if isinstance(s, CmosSpikeSorterSource)]

    @property
    def unknown_sources(self) -> list[CmosGenericSource]:
        return [s for s in self.sources if isinstance(s, CmosGenericSource)]

    def source(self, label: str) -> CmosSource:
        for s in self.sources:
            if s.label == label:
                return s
        raise StreamNotFound(label)
