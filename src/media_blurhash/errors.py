"""Error kinds raised by the blurhash pipeline stages."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Originating failure kind carried by a processing result."""

    RESOURCE_NOT_FOUND = "resource_not_found"
    DECODE_ERROR = "decode_error"
    ENCODE_ERROR = "encode_error"
    PERSISTENCE_ERROR = "persistence_error"
    TIMEOUT = "timeout"
    SELECTION_ERROR = "selection_error"
    UNEXPECTED_ERROR = "unexpected_error"


class BlurhashError(Exception):
    """Base class for pipeline errors; ``kind`` identifies the failing stage."""

    kind: ErrorKind

    def __init__(self, message: str, *, asset_id: str | None = None) -> None:
        super().__init__(message)
        self.asset_id = asset_id


class ResourceNotFound(BlurhashError):
    kind = ErrorKind.RESOURCE_NOT_FOUND


class DecodeError(BlurhashError):
    """The source image could not be opened or resized."""

    kind = ErrorKind.DECODE_ERROR


class EncodeError(BlurhashError):
    kind = ErrorKind.ENCODE_ERROR


class PersistenceError(BlurhashError):
    """Writing or reading hash state in the metadata store failed."""

    kind = ErrorKind.PERSISTENCE_ERROR


class ProcessingTimeout(BlurhashError):
    kind = ErrorKind.TIMEOUT


class SelectionError(BlurhashError):
    """The pending-asset query failed; the whole batch cannot run."""

    kind = ErrorKind.SELECTION_ERROR


__all__ = [
    "ErrorKind",
    "BlurhashError",
    "ResourceNotFound",
    "DecodeError",
    "EncodeError",
    "PersistenceError",
    "ProcessingTimeout",
    "SelectionError",
]
