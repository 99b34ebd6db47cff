# mcsh5/core/lazy.py
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Generic, TypeVar

from .exceptions import InvalidPayload

T = TypeVar("T")


class PayloadState(Enum):
    NOT_LOADED = "not_loaded"
    LOADED = "loaded"


@dataclass(slots=True)
class LazyPayload(Generic[T]):
    """
    Deferred-load cell: runs `loader` on the first `get()` and caches the result.

    The transition NOT_LOADED -> LOADED happens once; there is no reload or
    invalidation. A loader that raises leaves the cell NOT_LOADED.
    """

    loader: Callable[[], T] = field(repr=False)
    name: str | None = None

    _value: Any = field(default=None, init=False, repr=False)
    _state: PayloadState = field(default=PayloadState.NOT_LOADED, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        if not callable(self.loader):
            raise InvalidPayload("LazyPayload.loader must be callable.")

    @classmethod
    def loaded(cls, value: T, name: str | None = None) -> "LazyPayload[T]":
        """A cell that is already materialized (no loader call will happen)."""

        def _fail() -> T:
            raise InvalidPayload("Pre-loaded payload has no loader.")

        cell = cls(loader=_fail, name=name)
        cell._value = value
        cell._state = PayloadState.LOADED
        return cell

    @property
    def state(self) -> PayloadState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state is PayloadState.LOADED

    def get(self) -> T:
        if self._state is PayloadState.LOADED:
            return self._value
        with self._lock:
            # another thread may have materialized while we waited
            if self._state is PayloadState.NOT_LOADED:
                self._value = self.loader()
                self._state = PayloadState.LOADED
        return self._value
