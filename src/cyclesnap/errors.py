"""Result values shared by loading, solving, generation and saving."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    INVALID_PARAMETER = "InvalidParameter"
    SOURCE_UNAVAILABLE = "SourceUnavailable"
    MALFORMED_SOURCE = "MalformedSource"
    NO_SOURCE_LOADED = "NoSourceLoaded"
    EMPTY_SEGMENTATION = "EmptySegmentation"
    NOTHING_TO_SAVE = "NothingToSave"
    WRITE_FAILED = "WriteFailed"


@dataclass(frozen=True)
class Result:
    """Outcome of an operation that reports failure instead of raising."""

    ok: bool
    kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "Result":
        return cls(ok=True, message=message)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> "Result":
        return cls(ok=False, kind=kind, message=message)

    def __bool__(self) -> bool:
        return self.ok
