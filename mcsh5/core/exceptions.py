# mcsh5/core/exceptions.py
from __future__ import annotations


class McsError(Exception):
    """Base error for all mcsh5 exceptions."""


# ---- Root validation / configuration ----
class InvalidFormat(McsError):
    """Raised when a file is not a supported MCS HDF5 file (type or version)."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigurationError(McsError):
    """Raised when a ReadConfig is constructed with invalid inputs."""


# ---- Node construction errors ----
class AttributeNotFound(McsError, KeyError):
    """Raised when a required attribute is absent from a node."""

    def __init__(self, name: str, path: str | None = None) -> None:
        super().__init__(name)
        self.name = name
        self.path = path

    def __str__(self) -> str:
        where = f" on '{self.path}'" if self.path else ""
        return f"Required attribute '{self.name}' not found{where}."


class MalformedTimestampIndex(McsError):
    """Raised when timestamp segment triples do not tile the sample range."""


class UnsupportedFieldWidth(McsError):
    """Raised when a compound field has a type that cannot be widened."""

    def __init__(self, field: str, dtype: object) -> None:
        super().__init__(f"Field '{field}' has unsupported type {dtype!r}.")
        self.field = field
        self.dtype = dtype


class InvalidPayload(McsError):
    """Raised when a loaded payload does not match the stream metadata."""


# ---- Lookup errors (also behave like KeyError for dict-like APIs) ----
class StreamNotFound(McsError, KeyError):
    """Raised when a requested stream or entity is not present."""


class DatasetNotFound(McsError, KeyError):
    """Raised when a dataset the node layout requires is absent."""
