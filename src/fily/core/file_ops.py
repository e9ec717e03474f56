"""Moving files with an undo history.

Every successful move is appended to a JSON-backed UndoStack so it can be
reversed later, also from a new process.
"""

from __future__ import annotations

import json
import logging
import shutil
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from fily.core.errors import FilyError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


class FileOperationError(FilyError):
    """Base exception for file operation errors."""


class SourceNotFoundError(FileOperationError):
    """Raised when source file does not exist."""


class DestinationExistsError(FileOperationError):
    """Raised when destination file already exists."""


class UndoError(FileOperationError):
    """Raised when undo operation fails."""


@dataclass(frozen=True)
class MoveRecord:
    """Immutable record of a file move.

    Attributes:
        src: Original file path (before move).
        dst: Destination file path (after move).
        timestamp: When the move happened (ISO 8601).
    """

    src: str
    dst: str
    timestamp: str

    @classmethod
    def create(cls, src: Path, dst: Path) -> MoveRecord:
        """Create a new MoveRecord with current timestamp."""
        return cls(
            src=str(src.resolve()),
            dst=str(dst.resolve()),
            timestamp=datetime.now().isoformat(),
        )


class UndoStack:
    """Persistent stack of moves that can be undone.

    The stack is written to its JSON file after every change.

    Attributes:
        history_file: Path to the JSON file storing the history.
    """

    def __init__(self, history_file: Path) -> None:
        self.history_file = history_file
        self._records: list[MoveRecord] = []
        self._load()

    def _load(self) -> None:
        """Load history from JSON file if it exists."""
        if self.history_file.exists():
            try:
                data = json.loads(self.history_file.read_text(encoding="utf-8"))
                self._records = [MoveRecord(**record) for record in data]
            except (json.JSONDecodeError, TypeError, KeyError):
                logger.warning(f"Ignoring unreadable undo history {self.history_file}")
                self._records = []

    def _save(self) -> None:
        self.history_file.parent.mkdir(parents=True, exist_ok=True)
        data = [asdict(record) for record in self._records]
        self.history_file.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    def push(self, record: MoveRecord) -> None:
        self._records.append(record)
        self._save()

    def pop(self) -> MoveRecord | None:
        """Remove and return the last record, or None if the stack is empty."""
        if not self._records:
            return None
        record = self._records.pop()
        self._save()
        return record

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[MoveRecord]:
        """Iterate over records from oldest to newest."""
        return iter(self._records)

    def is_empty(self) -> bool:
        return not self._records


def safe_move(src: Path, dst: Path, undo_stack: UndoStack) -> MoveRecord:
    """Move a single file and record the move.

    Args:
        src: Source file path (must exist).
        dst: Destination file path (must NOT exist).
        undo_stack: Stack to record the operation for undo.

    Returns:
        The recorded MoveRecord.

    Raises:
        SourceNotFoundError: If source file does not exist.
        DestinationExistsError: If destination file already exists.
        FileOperationError: If the move operation fails.
    """
    src = src.resolve()
    dst = dst.resolve()

    if not src.exists():
        raise SourceNotFoundError(f"Source file not found: {src}")

    if dst.exists():
        raise DestinationExistsError(f"Destination already exists: {dst}")

    dst.parent.mkdir(parents=True, exist_ok=True)

    try:
        shutil.move(str(src), str(dst))
    except OSError as e:
        raise FileOperationError(f"Failed to move {src} to {dst}: {e}") from e

    record = MoveRecord.create(src, dst)
    undo_stack.push(record)
    return record


def prepare_target_dir(move_to: Path) -> Path:
    """Create the target folder if needed and return its resolved path.

    Raises:
        FileOperationError: If the folder cannot be created or the path
            points to something that is not a folder.
    """
    if move_to.exists() and not move_to.is_dir():
        raise FileOperationError(f"Move target is not a folder: {move_to}")
    try:
        move_to.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise FileOperationError(f"Cannot create move target {move_to}: {e}") from e
    return move_to.resolve()


def move_files(
    move_to: Path,
    paths: Iterable[Path],
    undo_stack: UndoStack,
    *,
    log: logging.Logger | None = None,
) -> tuple[list[MoveRecord], list[tuple[Path, str]]]:
    """Move every file into one folder, keeping its file name.

    Per-file failures are logged and returned; they do not stop the run.

    Args:
        move_to: Target folder (created if missing).
        paths: Files to move.
        undo_stack: Stack that records every successful move.
        log: Logger for per-file events.

    Returns:
        Tuple of (moved records, failed items as (path, error_message)).

    Raises:
        FileOperationError: If the target folder is unusable.
    """
    log = log or logger
    target = prepare_target_dir(move_to)
    moved: list[MoveRecord] = []
    failed: list[tuple[Path, str]] = []

    for path in paths:
        if not path.name:
            log.warning(f"Cannot move {path}: no file name")
            failed.append((path, "no file name"))
            continue
        try:
            record = safe_move(path, target / path.name, undo_stack)
        except FileOperationError as e:
            log.warning(f"Cannot move {path}: {e}")
            failed.append((path, str(e)))
            continue
        log.info(f"Moved {record.src} to {record.dst}")
        moved.append(record)

    return moved, failed


def undo_last(undo_stack: UndoStack) -> MoveRecord | None:
    """Undo the last move by moving the file back.

    Returns:
        The undone MoveRecord, or None if stack was empty.

    Raises:
        UndoError: If the undo operation fails.
    """
    record = undo_stack.pop()
    if record is None:
        return None

    src = Path(record.src)
    dst = Path(record.dst)

    if not dst.exists():
        raise UndoError(f"Cannot undo: moved file not found at {dst}")

    if src.exists():
        raise UndoError(f"Cannot undo: original location already occupied: {src}")

    src.parent.mkdir(parents=True, exist_ok=True)

    try:
        shutil.move(str(dst), str(src))
    except OSError as e:
        undo_stack.push(record)
        raise UndoError(f"Failed to undo move: {e}") from e

    logger.info(f"Moved {dst} back to {src}")
    return record


def undo_all(undo_stack: UndoStack) -> list[MoveRecord]:
    """Undo all moves in reverse order.

    Raises:
        UndoError: If any undo operation fails.
    """
    undone: list[MoveRecord] = []

    while not undo_stack.is_empty():
        record = undo_last(undo_stack)
        if record is not None:
            undone.append(record)

    return undone


def get_default_history_path() -> Path:
    """Default location of the undo history file."""
    return Path.home() / ".fily" / "undo_history.json"
