"""Error taxonomy for the comparison engine.

Per-file errors (ReadError, FormatError) are recoverable: the file is logged
and dropped from the run. PreconditionError is fatal and aborts the run
before any output is produced.
"""

from __future__ import annotations

from pathlib import Path


class FilyError(Exception):
    """Base exception for all fily errors."""


class FileError(FilyError):
    """Base exception for errors tied to a single file.

    Attributes:
        path: The file that caused the error.
    """

    kind = "file"

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class ReadError(FileError):
    """Raised when a file cannot be read (vanished, permission denied, I/O fault)."""

    kind = "read"


class FormatError(FileError):
    """Raised when file content cannot be decoded for the requested fingerprint."""

    kind = "format"


class PreconditionError(FilyError):
    """Raised when a run-level precondition is violated."""
