"""Immutable per-run options for the groupers.

Options are validated on construction so that an invalid configuration is
rejected before any file is read.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from fily.core.errors import PreconditionError
from fily.core.models import ExactMode, HashAlgorithm, ResizeFilter

DEFAULT_HASH_SIZE = 8
MIN_HASH_SIZE = 2


def default_workers() -> int:
    """Worker count for the fingerprinting pool when none is configured."""
    return min(32, (os.cpu_count() or 1) + 4)


def _check_workers(workers: int | None) -> None:
    if workers is None:
        return
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise PreconditionError(f"workers must be a positive integer, got {workers!r}")


@dataclass(frozen=True)
class DuplicateOptions:
    """Options for exact duplicate detection.

    Attributes:
        mode: CONTENT verifies byte equality, CHECKSUM trusts CRC-32 buckets.
        workers: Size of the fingerprinting pool (None = default_workers()).
        fail_on_empty: Treat an empty input list as a fatal error.
    """

    mode: ExactMode = ExactMode.CONTENT
    workers: int | None = None
    fail_on_empty: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.mode, ExactMode):
            raise PreconditionError(f"Unknown duplicate mode: {self.mode!r}")
        _check_workers(self.workers)

    @property
    def pool_size(self) -> int:
        return self.workers or default_workers()


@dataclass(frozen=True)
class SimilarityOptions:
    """Options for similar image detection.

    Attributes:
        threshold: Maximum Hamming distance for two images to be linked.
        algorithm: Perceptual hashing algorithm used for every image.
        hash_size: Side length of the hash grid; vectors have hash_size**2
            bits (twice that for DOUBLE_GRADIENT).
            The grid is always square: imagehash takes a single size for
            both sides.
        resize_filter: Filter used to shrink images to the hash grid.
        workers: Size of the fingerprinting pool (None = default_workers()).
        fail_on_empty: Treat an empty input list as a fatal error.
    """

    threshold: int
    algorithm: HashAlgorithm = HashAlgorithm.GRADIENT
    hash_size: int = DEFAULT_HASH_SIZE
    resize_filter: ResizeFilter = ResizeFilter.LANCZOS3
    workers: int | None = None
    fail_on_empty: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            raise PreconditionError(f"threshold must be an integer, got {self.threshold!r}")
        if self.threshold < 0:
            raise PreconditionError(f"threshold must not be negative, got {self.threshold}")
        if not isinstance(self.algorithm, HashAlgorithm):
            raise PreconditionError(f"Unknown hash algorithm: {self.algorithm!r}")
        if isinstance(self.hash_size, bool) or not isinstance(self.hash_size, int):
            raise PreconditionError(f"hash_size must be an integer, got {self.hash_size!r}")
        if self.hash_size < MIN_HASH_SIZE:
            raise PreconditionError(f"hash_size must be at least {MIN_HASH_SIZE}, got {self.hash_size}")
        # wHash decomposes the image in powers of two
        if self.algorithm is HashAlgorithm.WAVELET and self.hash_size & (self.hash_size - 1):
            raise PreconditionError(f"wavelet hash_size must be a power of 2, got {self.hash_size}")
        if not isinstance(self.resize_filter, ResizeFilter):
            raise PreconditionError(f"Unknown resize filter: {self.resize_filter!r}")
        _check_workers(self.workers)

    @property
    def pool_size(self) -> int:
        return self.workers or default_workers()

    @property
    def hash_bits(self) -> int:
        """Length of the bit vectors this configuration produces."""
        bits = self.hash_size * self.hash_size
        if self.algorithm is HashAlgorithm.DOUBLE_GRADIENT:
            return bits * 2
        return bits
