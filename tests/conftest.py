"""Shared fixtures for the fily test suite."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from PIL import Image

from fily.core.inputs import open_handle
from fily.core.models import FileHandle


@pytest.fixture(autouse=True)
def reset_fily_logger() -> Iterator[None]:
    """Undo whatever setup_logging() did to the fily logger during a test."""
    yield
    logger = logging.getLogger("fily")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the caller's FILY_* variables out of the tests."""
    for name in ("FILY_LOGLEVEL", "FILY_STRICT_LOGGING", "FILY_INPUT_PATH_SEPARATOR"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[[str, bytes | str], Path]:
    """Write a file below tmp_path and return its path."""

    def _make(name: str, content: bytes | str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
        return path

    return _make


def handles_for(*paths: Path) -> list[FileHandle]:
    """Handles for the given paths, indexed in argument order."""
    return [open_handle(path, index) for index, path in enumerate(paths)]


def gradient_image(size: int = 64, reverse: bool = False) -> Image.Image:
    """Grayscale image that gets brighter from left to right (or right to left)."""
    img = Image.new("L", (size, size))
    for x in range(size):
        value = x * 255 // (size - 1)
        if reverse:
            value = 255 - value
        for y in range(size):
            img.putpixel((x, y), value)
    return img
