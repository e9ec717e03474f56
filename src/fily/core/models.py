"""Data model shared by the fingerprinter, the groupers and the emitter."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union


class HashAlgorithm(str, Enum):
    """Perceptual hashing algorithms.

    Hashes produced by different algorithms are never comparable.
    """

    MEAN = "mean"
    GRADIENT = "gradient"
    VERT_GRADIENT = "vertgradient"
    DOUBLE_GRADIENT = "doublegradient"
    BLOCKHASH = "blockhash"
    DCT = "dct"
    WAVELET = "wavelet"

    @property
    def description(self) -> str:
        """Short help text for the CLI."""
        return _ALGORITHM_DESCRIPTIONS[self]


_ALGORITHM_DESCRIPTIONS: dict[HashAlgorithm, str] = {
    HashAlgorithm.MEAN: "pixel intensity compared to the mean",
    HashAlgorithm.GRADIENT: "horizontal gradient (difference hash)",
    HashAlgorithm.VERT_GRADIENT: "vertical gradient",
    HashAlgorithm.DOUBLE_GRADIENT: "horizontal and vertical gradients combined",
    HashAlgorithm.BLOCKHASH: "block means compared to the median",
    HashAlgorithm.DCT: "discrete cosine transform (pHash)",
    HashAlgorithm.WAVELET: "Haar wavelet transform",
}


class ResizeFilter(str, Enum):
    """Filter used to shrink an image to the hash grid.

    Has no effect on BLOCKHASH, which always averages whole blocks.
    """

    NEAREST = "nearest"
    TRIANGLE = "triangle"
    CATMULL_ROM = "catmullrom"
    GAUSSIAN = "gaussian"
    LANCZOS3 = "lanczos3"


class ExactMode(str, Enum):
    """How the exact-match grouper decides byte equality."""

    CONTENT = "content"
    CHECKSUM = "checksum"


@dataclass(frozen=True)
class FileHandle:
    """A path with its size, captured once before the engine runs.

    Attributes:
        path: Path exactly as supplied by the caller.
        size: File size in bytes.
        index: Position of the path in the caller's input sequence.
    """

    path: Path
    size: int
    index: int

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class FullContent:
    """The entire content of a file."""

    data: bytes


@dataclass(frozen=True)
class Checksum:
    """32-bit CRC of a file's content."""

    value: int


@dataclass(frozen=True)
class PerceptualHash:
    """Fixed-length bit vector describing an image.

    Attributes:
        bits: The bit vector as a hex string.
        length: Number of bits in the vector.
        algorithm: Algorithm that produced the vector.
    """

    bits: str
    length: int
    algorithm: HashAlgorithm

    def hamming_distance(self, other: PerceptualHash) -> int:
        """Number of differing bit positions.

        Raises:
            ValueError: If the vectors come from different algorithms or
                differ in length.
        """
        if self.algorithm is not other.algorithm or self.length != other.length:
            raise ValueError(
                f"Cannot compare {self.algorithm.value}/{self.length} hash "
                f"with {other.algorithm.value}/{other.length} hash"
            )
        return bin(int(self.bits, 16) ^ int(other.bits, 16)).count("1")


Fingerprint = Union[FullContent, Checksum, PerceptualHash]


@dataclass(frozen=True)
class Group:
    """Two or more files that matched each other.

    Members are kept in input order.
    """

    members: tuple[FileHandle, ...]

    def __post_init__(self) -> None:
        if len(self.members) < 2:
            raise ValueError("A group needs at least two members")

    @classmethod
    def of(cls, handles: list[FileHandle]) -> Group:
        """Build a group with members sorted by input order."""
        return cls(members=tuple(sorted(handles, key=lambda h: h.index)))

    @property
    def first_index(self) -> int:
        """Input position of the earliest member."""
        return self.members[0].index

    @property
    def paths(self) -> list[Path]:
        return [h.path for h in self.members]

    def __len__(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class FileFailure:
    """A recoverable per-file failure.

    Attributes:
        path: The file that was dropped.
        kind: "read" or "format".
        message: Human readable reason.
    """

    path: Path
    kind: str
    message: str


@dataclass
class GroupingResult:
    """Result of one grouping run.

    Attributes:
        groups: Groups in emission order.
        failures: Files dropped because they could not be fingerprinted.
        total_files: Number of handles the grouper received.
    """

    groups: list[Group] = field(default_factory=list)
    failures: list[FileFailure] = field(default_factory=list)
    total_files: int = 0

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    @property
    def total_grouped_files(self) -> int:
        """Number of files that ended up in some group."""
        return sum(len(g) for g in self.groups)

    @property
    def total_failed(self) -> int:
        return len(self.failures)
