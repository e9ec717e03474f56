"""File fingerprints: full content, CRC-32 checksum and perceptual hashes.

Every fingerprint function reads the file itself and raises ReadError when
the file is gone or unreadable. Perceptual hashing raises FormatError when
Pillow cannot decode the data. fingerprint_all() fans the work out over a
thread pool and only returns once every file has been processed, so the
groupers always see the complete table.
"""

from __future__ import annotations

import hashlib
import logging
import zlib
from concurrent.futures import ThreadPoolExecutor, as_completed
from functools import partial
from typing import TYPE_CHECKING, Callable, TypeVar

import imagehash
import numpy
from PIL import Image, ImageFilter

from fily.core.config import DEFAULT_HASH_SIZE
from fily.core.errors import FileError, FormatError, ReadError
from fily.core.models import (
    Checksum,
    ExactMode,
    FileFailure,
    FileHandle,
    Fingerprint,
    FullContent,
    HashAlgorithm,
    PerceptualHash,
    ResizeFilter,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

T = TypeVar("T")

BUFFER_SIZE = 65536  # 64KB

ProgressCallback = Callable[[str, int, int], None]


def read_content(handle: FileHandle) -> FullContent:
    """Read the whole file in one pass.

    Raises:
        ReadError: If the file cannot be read.
    """
    try:
        with open(handle.path, "rb") as f:
            return FullContent(f.read())
    except OSError as e:
        raise ReadError(handle.path, f"cannot read file: {e.strerror or e}") from e


def checksum(handle: FileHandle) -> Checksum:
    """Compute the CRC-32 of a file, streaming it in fixed-size blocks.

    Raises:
        ReadError: If the file cannot be read.
    """
    crc = 0
    try:
        with open(handle.path, "rb") as f:
            while True:
                data = f.read(BUFFER_SIZE)
                if not data:
                    break
                crc = zlib.crc32(data, crc)
    except OSError as e:
        raise ReadError(handle.path, f"cannot read file: {e.strerror or e}") from e
    return Checksum(crc & 0xFFFFFFFF)


def content_digest(handle: FileHandle) -> bytes:
    """SHA-256 digest of a file, used to bucket full-content candidates.

    Raises:
        ReadError: If the file cannot be read.
    """
    hasher = hashlib.sha256()
    try:
        with open(handle.path, "rb") as f:
            while True:
                data = f.read(BUFFER_SIZE)
                if not data:
                    break
                hasher.update(data)
    except OSError as e:
        raise ReadError(handle.path, f"cannot read file: {e.strerror or e}") from e
    return hasher.digest()


def _block_mean_hash(image: Image.Image, hash_size: int) -> imagehash.ImageHash:
    """Average each block of the image and compare it to the median block."""
    small = image.resize((hash_size, hash_size), Image.Resampling.BOX)
    pixels = numpy.asarray(small, dtype=numpy.float64)
    return imagehash.ImageHash(pixels > numpy.median(pixels))


# Pillow kernels matching the filter names; GAUSSIAN is handled in _shrink()
_RESAMPLING: dict[ResizeFilter, Image.Resampling] = {
    ResizeFilter.NEAREST: Image.Resampling.NEAREST,
    ResizeFilter.TRIANGLE: Image.Resampling.BILINEAR,
    ResizeFilter.CATMULL_ROM: Image.Resampling.BICUBIC,
    ResizeFilter.LANCZOS3: Image.Resampling.LANCZOS,
}


def _shrink(image: Image.Image, size: tuple[int, int], resize_filter: ResizeFilter) -> Image.Image:
    """Resize an image to exactly `size` with the requested filter."""
    if image.size == size:
        return image
    if resize_filter is ResizeFilter.GAUSSIAN:
        # Pillow has no Gaussian kernel: low-pass by the scale factor, then interpolate
        scale = max(image.width / size[0], image.height / size[1])
        if scale > 1:
            image = image.filter(ImageFilter.GaussianBlur(radius=scale / 2))
        return image.resize(size, Image.Resampling.BILINEAR)
    return image.resize(size, _RESAMPLING[resize_filter])


def _wavelet_scale(image: Image.Image, hash_size: int) -> int:
    """Side length imagehash.whash() scales the image to."""
    return max(2 ** int(numpy.log2(min(image.size))), hash_size)


def _hash_image(
    image: Image.Image,
    algorithm: HashAlgorithm,
    hash_size: int,
    resize_filter: ResizeFilter = ResizeFilter.LANCZOS3,
) -> imagehash.ImageHash:
    """Hash a grayscale image.

    The image is first shrunk with resize_filter to the exact grid the
    imagehash function samples, so imagehash's own resize leaves it as is.
    """
    if algorithm is HashAlgorithm.MEAN:
        return imagehash.average_hash(_shrink(image, (hash_size, hash_size), resize_filter), hash_size=hash_size)
    if algorithm is HashAlgorithm.GRADIENT:
        return imagehash.dhash(_shrink(image, (hash_size + 1, hash_size), resize_filter), hash_size=hash_size)
    if algorithm is HashAlgorithm.VERT_GRADIENT:
        return imagehash.dhash_vertical(_shrink(image, (hash_size, hash_size + 1), resize_filter), hash_size=hash_size)
    if algorithm is HashAlgorithm.DOUBLE_GRADIENT:
        horizontal = imagehash.dhash(_shrink(image, (hash_size + 1, hash_size), resize_filter), hash_size=hash_size)
        vertical = imagehash.dhash_vertical(
            _shrink(image, (hash_size, hash_size + 1), resize_filter), hash_size=hash_size
        )
        return imagehash.ImageHash(numpy.concatenate([horizontal.hash.flatten(), vertical.hash.flatten()]))
    if algorithm is HashAlgorithm.BLOCKHASH:
        return _block_mean_hash(image, hash_size)
    if algorithm is HashAlgorithm.DCT:
        # phash samples a grid four times the hash size (highfreq_factor=4)
        side = hash_size * 4
        return imagehash.phash(_shrink(image, (side, side), resize_filter), hash_size=hash_size)
    if algorithm is HashAlgorithm.WAVELET:
        side = _wavelet_scale(image, hash_size)
        return imagehash.whash(_shrink(image, (side, side), resize_filter), hash_size=hash_size)
    raise ValueError(f"Unknown hash algorithm: {algorithm!r}")


def perceptual_hash(
    handle: FileHandle,
    algorithm: HashAlgorithm = HashAlgorithm.GRADIENT,
    hash_size: int = DEFAULT_HASH_SIZE,
    resize_filter: ResizeFilter = ResizeFilter.LANCZOS3,
) -> PerceptualHash:
    """Compute the perceptual hash of an image.

    Args:
        handle: Image file to hash.
        algorithm: Hashing algorithm.
        hash_size: Side length of the hash grid.
        resize_filter: Filter used to shrink the image to the grid.

    Returns:
        PerceptualHash tagged with the algorithm.

    Raises:
        ReadError: If the file cannot be opened.
        FormatError: If the file is not a decodable image.
    """
    try:
        f = open(handle.path, "rb")
    except OSError as e:
        raise ReadError(handle.path, f"cannot read file: {e.strerror or e}") from e

    with f:
        try:
            with Image.open(f) as img:
                # Convert to RGB if needed (handles RGBA, palette, CMYK, etc.)
                if img.mode != "RGB":
                    img = img.convert("RGB")
                result = _hash_image(img.convert("L"), algorithm, hash_size, resize_filter)
        except Exception as e:
            raise FormatError(handle.path, f"cannot decode image: {e}") from e

    return PerceptualHash(bits=str(result), length=int(result.hash.size), algorithm=algorithm)


def fingerprinter_for(
    kind: ExactMode | HashAlgorithm,
    hash_size: int = DEFAULT_HASH_SIZE,
    resize_filter: ResizeFilter = ResizeFilter.LANCZOS3,
) -> Callable[[FileHandle], Fingerprint]:
    """Return the fingerprint function for a mode or hash algorithm."""
    if kind is ExactMode.CONTENT:
        return read_content
    if kind is ExactMode.CHECKSUM:
        return checksum
    if isinstance(kind, HashAlgorithm):
        return partial(perceptual_hash, algorithm=kind, hash_size=hash_size, resize_filter=resize_filter)
    raise ValueError(f"Unknown fingerprint kind: {kind!r}")


def fingerprint(
    handle: FileHandle,
    kind: ExactMode | HashAlgorithm,
    hash_size: int = DEFAULT_HASH_SIZE,
    resize_filter: ResizeFilter = ResizeFilter.LANCZOS3,
) -> Fingerprint:
    """Compute a single fingerprint.

    Raises:
        ReadError: If the file cannot be read.
        FormatError: If a perceptual hash is requested for a non-image.
    """
    return fingerprinter_for(kind, hash_size, resize_filter)(handle)


def _as_failure(error: FileError, log: logging.Logger) -> FileFailure:
    log.warning(f"Skipping {error.path}: {error.message}")
    return FileFailure(path=error.path, kind=error.kind, message=error.message)


def fingerprint_all(
    handles: Sequence[FileHandle],
    compute: Callable[[FileHandle], T],
    *,
    workers: int = 1,
    stage: str = "fingerprint",
    on_progress: ProgressCallback | None = None,
    log: logging.Logger | None = None,
) -> tuple[dict[FileHandle, T], list[FileFailure]]:
    """Fingerprint every handle, in parallel when workers > 1.

    Returns only after all files are done. Files whose fingerprint raises a
    FileError are logged once and reported as failures; any other exception
    propagates.

    Args:
        handles: Files to fingerprint.
        compute: Fingerprint function applied to each handle.
        workers: Maximum number of worker threads.
        stage: Stage name passed to on_progress.
        on_progress: Optional callback(stage, current, total).
        log: Logger for per-file failures.

    Returns:
        Tuple of ({handle: fingerprint}, failures in input order).
    """
    log = log or logger
    results: dict[FileHandle, T] = {}
    failed: list[tuple[int, FileFailure]] = []
    total = len(handles)

    if workers <= 1 or total <= 1:
        for done, handle in enumerate(handles, start=1):
            try:
                results[handle] = compute(handle)
            except FileError as e:
                failed.append((handle.index, _as_failure(e, log)))
            if on_progress:
                on_progress(stage, done, total)
    else:
        with ThreadPoolExecutor(max_workers=min(workers, total)) as pool:
            futures = {pool.submit(compute, handle): handle for handle in handles}
            for done, future in enumerate(as_completed(futures), start=1):
                handle = futures[future]
                try:
                    results[handle] = future.result()
                except FileError as e:
                    failed.append((handle.index, _as_failure(e, log)))
                if on_progress:
                    on_progress(stage, done, total)

    failed.sort(key=lambda item: item[0])
    log.debug(f"{stage}: {len(results)} fingerprints, {len(failed)} failures")
    return results, [failure for _, failure in failed]
