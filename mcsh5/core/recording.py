# mcsh5/core/recording.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping

from .exceptions import InvalidPayload, McsError, StreamNotFound
from .streams import AnalogStream, EventStream, FrameStream, SegmentStream, Stream, StreamKind


_FIELD_BY_KIND = {
    StreamKind.ANALOG: "analog_streams",
    StreamKind.FRAME: "frame_streams",
    StreamKind.EVENT: "event_streams",
    StreamKind.SEGMENT: "segment_streams",
}

_TYPE_BY_KIND = {
    StreamKind.ANALOG: AnalogStream,
    StreamKind.FRAME: FrameStream,
    StreamKind.EVENT: EventStream,
    StreamKind.SEGMENT: SegmentStream,
}


@dataclass(frozen=True, slots=True)
class Recording:
    """
    A single DataManager recording with its streams sorted by kind.

    Stream order within each kind follows the order of the groups in the file.
    `failures` maps the path of each stream that could not be built to its error.
    """
    path: str
    recording_id: int = 0
    recording_type: str | None = None
    timestamp: int | None = None
    duration: int | None = None
    label: str | None = None
    comment: str | None = None
    attrs: dict[str, Any] = field(default_factory=dict, repr=False)
    analog_streams: tuple[AnalogStream, ...] = field(default=(), repr=False)
    frame_streams: tuple[FrameStream, ...] = field(default=(), repr=False)
    event_streams: tuple[EventStream, ...] = field(default=(), repr=False)
    segment_streams: tuple[SegmentStream, ...] = field(default=(), repr=False)
    failures: Mapping[str, McsError] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        for kind, name in _FIELD_BY_KIND.items():
            streams = tuple(getattr(self, name))
            for s in streams:
                if not isinstance(s, _TYPE_BY_KIND[kind]):
                    raise InvalidPayload(
                        f"Recording.{name} must hold {_TYPE_BY_KIND[kind].__name__} instances."
                    )
            object.__setattr__(self, name, streams)
        object.__setattr__(self, "failures", dict(self.failures))

    # ---- access ----
    def __len__(self) -> int:
        return sum(len(getattr(self, name)) for name in _FIELD_BY_KIND.values())

    def streams_of(self, kind: StreamKind | str) -> tuple[Stream, ...]:
        return getattr(self, _FIELD_BY_KIND[StreamKind(kind)])

    def streams(self) -> Iterator[Stream]:
        """All streams, kind by kind (analog, frame, event, segment)."""
        for name in _FIELD_BY_KIND.values():
            yield from getattr(self, name)

    def stream(self, kind: StreamKind | str, key: int | str = 0) -> Stream:
        """A stream of one kind by position or label."""
        candidates = self.streams_of(kind)
        if isinstance(key, int):
            try:
                return candidates[key]
            except IndexError as e:
                raise StreamNotFound(f"{StreamKind(kind).value}[{key}]") from e
        for s in candidates:
            if s.label == key:
                return s
        raise StreamNotFound(key)

    @property
    def duration_s(self) -> float | None:
        return None if self.duration is None else self.duration / 1e6
