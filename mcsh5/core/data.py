# mcsh5/core/data.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Union

from .cmos import CmosRecording
from .config import ReadConfig
from .exceptions import InvalidPayload, StreamNotFound
from .recording import Recording


class ProtocolType(str, Enum):
    DATA_MANAGER = "DataManager"
    CMOS_MEA = "CMOS-MEA"


AnyRecording = Union[Recording, CmosRecording]


@dataclass(frozen=True, slots=True)
class McsData:
    """
    Contents of an MCS HDF5 file.

    DataManager files hold zero or more `Recording`s; CMOS-MEA files hold
    exactly one `CmosRecording`. `attrs` are the `/Data` attributes
    (DataManager) or the root attributes (CMOS-MEA).
    """
    path: str
    protocol_type: ProtocolType
    protocol_version: int
    recordings: tuple[AnyRecording, ...] = field(default=(), repr=False)
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)
    generating_application: tuple[str | None, str | None] = (None, None)
    config: ReadConfig = field(default_factory=ReadConfig, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "protocol_type", ProtocolType(self.protocol_type))
        recordings = tuple(self.recordings)
        if self.protocol_type is ProtocolType.CMOS_MEA:
            if len(recordings) != 1 or not isinstance(recordings[0], CmosRecording):
                raise InvalidPayload("A CMOS-MEA file holds exactly one CmosRecording.")
        elif not all(isinstance(r, Recording) for r in recordings):
            raise InvalidPayload("DataManager recordings must be Recording instances.")
        object.__setattr__(self, "recordings", recordings)

    def __len__(self) -> int:
        return len(self.recordings)

    def __iter__(self) -> Iterator[AnyRecording]:
        return iter(self.recordings)

    def __getitem__(self, index: int) -> AnyRecording:
        try:
            return self.recordings[index]
        except IndexError as e:
            raise StreamNotFound(f"Recording[{index}]") from e

    @property
    def is_cmos(self) -> bool:
        return self.protocol_type is ProtocolType.CMOS_MEA
