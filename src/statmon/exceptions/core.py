from __future__ import annotations


class StatmonError(Exception):
    """Base class for every error raised by statmon."""

    stage: str = "statmon"


class FatalError(StatmonError):
    """Ends the current recording / replay session."""


class MalformedResult(StatmonError, ValueError):
    """Query result (or externally built snapshot) breaks the row/column invariant."""

    stage = "sampling"


class MalformedArchiveEntry(StatmonError, ValueError):
    """Archive payload bytes cannot be decoded into a snapshot."""

    stage = "archive read"


class InvalidNumericCell(StatmonError, ValueError):
    """A diffable cell is null or not a number."""

    stage = "diffing"


class UnknownView(StatmonError, KeyError):
    stage = "configuration"

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "unknown view"


class ArchiveUnwritable(FatalError):
    stage = "archive write"


class SamplingError(FatalError):
    """Connection or query failure while taking a sample."""

    stage = "sampling"


class ArchiveCorrupt(FatalError):
    """
    Corrupt or truncated archive entry.

    Replay stops at the offending entry; everything before it stays valid.
    """

    stage = "archive read"

    def __init__(self, message: str, *, entry_name: str | None, position: int):
        super().__init__(f"{message} (entry={entry_name!r}, position={position})")
        self.entry_name = entry_name
        self.position = position
