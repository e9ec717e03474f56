"""Turn the caller's path list into file handles.

The path list arrives as delimited text (one path per line by default). Each
path is stat'ed exactly once here; the engine never resolves it again.
"""

from __future__ import annotations

import logging
import stat
from pathlib import Path
from typing import TYPE_CHECKING

from fily.core.errors import ReadError
from fily.core.models import FileFailure, FileHandle

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import TextIO

logger = logging.getLogger(__name__)


def split_paths(text: str, separator: str | None = None) -> list[str]:
    """Split delimited input into path strings.

    Args:
        text: Raw input text.
        separator: Separator between paths. None splits on line breaks
            ("\\n" or "\\r\\n").

    Returns:
        Non-empty path strings in input order.
    """
    if separator is None:
        entries = [line.rstrip("\r") for line in text.split("\n")]
    else:
        if separator == "":
            raise ValueError("Path separator must not be empty")
        # `echo` and friends terminate the whole input with a line break
        if text.endswith("\r\n"):
            text = text[:-2]
        elif text.endswith("\n"):
            text = text[:-1]
        entries = text.split(separator)
    return [entry for entry in entries if entry]


def read_paths(stream: TextIO, separator: str | None = None) -> list[str]:
    """Read the whole stream and split it into paths.

    Raises:
        OSError: If the stream cannot be read.
        UnicodeDecodeError: If the stream is not valid text.
    """
    return split_paths(stream.read(), separator)


def open_handle(path: Path, index: int) -> FileHandle:
    """Stat a path and wrap it in a FileHandle.

    Args:
        path: Path to the file.
        index: Position of the path in the input.

    Returns:
        FileHandle with the current file size.

    Raises:
        ReadError: If the path cannot be stat'ed or is not a regular file.
    """
    try:
        st = path.stat()
    except OSError as e:
        raise ReadError(path, f"cannot access file: {e.strerror or e}") from e
    if not stat.S_ISREG(st.st_mode):
        raise ReadError(path, "not a regular file")
    return FileHandle(path=path, size=st.st_size, index=index)


def build_handles(
    paths: Iterable[str | Path],
    *,
    log: logging.Logger | None = None,
) -> tuple[list[FileHandle], list[FileFailure]]:
    """Create handles for every path, in input order.

    A path that appears more than once is kept at its first position.
    Paths that cannot be stat'ed are reported as failures, not raised.

    Args:
        paths: Paths in the caller's order.
        log: Logger for per-file events (defaults to this module's logger).

    Returns:
        Tuple of (handles, failures).
    """
    log = log or logger
    handles: list[FileHandle] = []
    failures: list[FileFailure] = []
    seen: set[Path] = set()

    for index, raw in enumerate(paths):
        path = Path(raw)
        if path in seen:
            log.debug(f"Ignoring repeated path {path}")
            continue
        seen.add(path)

        try:
            handles.append(open_handle(path, index))
        except ReadError as e:
            log.warning(f"Skipping {path}: {e.message}")
            failures.append(FileFailure(path=path, kind=e.kind, message=e.message))

    log.debug(f"Built {len(handles)} handles, {len(failures)} paths skipped")
    return handles, failures
