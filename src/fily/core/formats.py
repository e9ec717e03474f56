"""Detect images whose file extension does not match their actual format."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from PIL import Image

from fily.core.errors import FormatError, ReadError
from fily.core.models import FileFailure, FileHandle

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

# Extension to suggest for a Pillow format; other formats use their lowercased name
PREFERRED_EXTENSIONS: dict[str, str] = {
    "JPEG": "jpg",
    "PNG": "png",
    "GIF": "gif",
    "BMP": "bmp",
    "TIFF": "tiff",
    "WEBP": "webp",
    "ICO": "ico",
    "PPM": "ppm",
    "TGA": "tga",
}

# Formats Pillow reports separately although they are stored as another format
FORMAT_ALIASES: dict[str, str] = {
    "MPO": "JPEG",  # multi-picture JPEG written by many cameras and phones
}


@dataclass(frozen=True)
class FormatMismatch:
    """An image whose extension names a different format than its content.

    Attributes:
        path: The image file.
        extension: Current extension without the dot ("" if none).
        actual: Extension matching the detected format.
    """

    path: Path
    extension: str
    actual: str


def format_from_extension(path: Path) -> str | None:
    """Pillow format name registered for the path's extension, if any."""
    registered = Image.registered_extensions().get(path.suffix.lower())
    return FORMAT_ALIASES.get(registered, registered) if registered else None


def detect_format(handle: FileHandle) -> str:
    """Detect the image format from the file content.

    Raises:
        ReadError: If the file cannot be opened.
        FormatError: If Pillow does not recognise the content.
    """
    try:
        f = open(handle.path, "rb")
    except OSError as e:
        raise ReadError(handle.path, f"cannot read file: {e.strerror or e}") from e

    with f:
        try:
            with Image.open(f) as img:
                detected = img.format
        except Exception as e:
            raise FormatError(handle.path, f"cannot identify image: {e}") from e

    if not detected:
        raise FormatError(handle.path, "cannot identify image format")
    return FORMAT_ALIASES.get(detected, detected)


def check_image_formats(
    handles: Iterable[FileHandle],
    *,
    log: logging.Logger | None = None,
) -> tuple[list[FormatMismatch], list[FileFailure]]:
    """Find images whose extension does not match their content.

    Files that cannot be read or identified are logged and skipped.

    Returns:
        Tuple of (mismatches in input order, failures).
    """
    log = log or logger
    mismatches: list[FormatMismatch] = []
    failures: list[FileFailure] = []

    for handle in sorted(handles, key=lambda h: h.index):
        try:
            detected = detect_format(handle)
        except (ReadError, FormatError) as e:
            log.info(f"Skipping {e.path}: {e.message}")
            failures.append(FileFailure(path=e.path, kind=e.kind, message=e.message))
            continue

        if format_from_extension(handle.path) == detected:
            continue

        actual = PREFERRED_EXTENSIONS.get(detected, detected.lower())
        mismatch = FormatMismatch(path=handle.path, extension=handle.path.suffix[1:], actual=actual)
        log.debug(f"{handle.path} is {detected}, not {mismatch.extension or 'extensionless'}")
        mismatches.append(mismatch)

    return mismatches, failures
