"""Tests for core/fingerprint.py: content, checksum and perceptual fingerprints."""

from __future__ import annotations

import zlib
from pathlib import Path

import imagehash
import pytest
from conftest import gradient_image, handles_for
from PIL import Image

from fily.core.errors import FormatError, ReadError
from fily.core.fingerprint import (
    checksum,
    content_digest,
    fingerprint,
    fingerprint_all,
    fingerprinter_for,
    perceptual_hash,
    read_content,
)
from fily.core.models import Checksum, ExactMode, FileHandle, FullContent, HashAlgorithm, ResizeFilter


class TestExactFingerprints:
    """Tests for read_content, checksum and content_digest."""

    def test_read_content(self, tmp_path: Path) -> None:
        path = tmp_path / "a.bin"
        path.write_bytes(b"\x00\x01hello")
        (handle,) = handles_for(path)

        assert read_content(handle) == FullContent(b"\x00\x01hello")

    def test_checksum_matches_crc32(self, tmp_path: Path) -> None:
        """Streaming checksum should equal a one-shot CRC-32."""
        data = bytes(range(256)) * 1000  # larger than one read buffer
        path = tmp_path / "big.bin"
        path.write_bytes(data)
        (handle,) = handles_for(path)

        assert checksum(handle) == Checksum(zlib.crc32(data) & 0xFFFFFFFF)

    def test_checksum_of_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty"
        path.write_bytes(b"")
        (handle,) = handles_for(path)

        assert checksum(handle).value == 0

    def test_digest_equal_for_equal_content(self, tmp_path: Path) -> None:
        a = tmp_path / "a.txt"
        b = tmp_path / "b.txt"
        c = tmp_path / "c.txt"
        a.write_text("hello", encoding="utf-8")
        b.write_text("hello", encoding="utf-8")
        c.write_text("world", encoding="utf-8")
        ha, hb, hc = handles_for(a, b, c)

        assert content_digest(ha) == content_digest(hb)
        assert content_digest(ha) != content_digest(hc)

    @pytest.mark.parametrize("compute", [read_content, checksum, content_digest])
    def test_missing_file_raises_read_error(self, tmp_path: Path, compute) -> None:
        """A file that vanished after its handle was built should raise ReadError."""
        handle = FileHandle(path=tmp_path / "gone.txt", size=3, index=0)

        with pytest.raises(ReadError) as excinfo:
            compute(handle)

        assert excinfo.value.kind == "read"


class TestPerceptualHash:
    """Tests for perceptual_hash function."""

    @pytest.mark.parametrize(
        ("algorithm", "bits"),
        [
            (HashAlgorithm.MEAN, 64),
            (HashAlgorithm.GRADIENT, 64),
            (HashAlgorithm.VERT_GRADIENT, 64),
            (HashAlgorithm.DOUBLE_GRADIENT, 128),
            (HashAlgorithm.BLOCKHASH, 64),
            (HashAlgorithm.DCT, 64),
            (HashAlgorithm.WAVELET, 64),
        ],
    )
    def test_hash_length(self, tmp_path: Path, algorithm: HashAlgorithm, bits: int) -> None:
        """Every algorithm should produce a vector of the expected length."""
        path = tmp_path / "img.png"
        gradient_image().save(path)
        (handle,) = handles_for(path)

        result = perceptual_hash(handle, algorithm, 8)

        assert result.length == bits
        assert result.algorithm is algorithm

    def test_identical_images_same_hash(self, tmp_path: Path) -> None:
        img = gradient_image()
        path1 = tmp_path / "img1.png"
        path2 = tmp_path / "img2.png"
        img.save(path1)
        img.save(path2)
        h1, h2 = handles_for(path1, path2)

        assert perceptual_hash(h1).hamming_distance(perceptual_hash(h2)) == 0

    def test_opposite_gradients_differ_everywhere(self, tmp_path: Path) -> None:
        """Horizontal gradients running in opposite directions flip every bit."""
        path1 = tmp_path / "left.png"
        path2 = tmp_path / "right.png"
        gradient_image().save(path1)
        gradient_image(reverse=True).save(path2)
        h1, h2 = handles_for(path1, path2)

        assert perceptual_hash(h1).hamming_distance(perceptual_hash(h2)) == 64

    def test_rgba_image(self, tmp_path: Path) -> None:
        path = tmp_path / "rgba.png"
        Image.new("RGBA", (50, 50), color=(255, 0, 0, 128)).save(path)
        (handle,) = handles_for(path)

        assert perceptual_hash(handle).length == 64

    def test_non_image_raises_format_error(self, tmp_path: Path) -> None:
        path = tmp_path / "fake.png"
        path.write_text("not an image", encoding="utf-8")
        (handle,) = handles_for(path)

        with pytest.raises(FormatError) as excinfo:
            perceptual_hash(handle)

        assert excinfo.value.kind == "format"

    def test_missing_image_raises_read_error(self, tmp_path: Path) -> None:
        handle = FileHandle(path=tmp_path / "gone.png", size=1, index=0)

        with pytest.raises(ReadError):
            perceptual_hash(handle)

    @pytest.mark.parametrize("resize_filter", list(ResizeFilter))
    @pytest.mark.parametrize("algorithm", [HashAlgorithm.MEAN, HashAlgorithm.GRADIENT, HashAlgorithm.DCT, HashAlgorithm.WAVELET])
    def test_every_resize_filter(self, tmp_path: Path, algorithm: HashAlgorithm, resize_filter: ResizeFilter) -> None:
        """Each filter shrinks to the grid the algorithm samples."""
        path = tmp_path / "img.png"
        gradient_image(size=100).save(path)
        (handle,) = handles_for(path)

        result = perceptual_hash(handle, algorithm, 8, resize_filter)

        assert result.length == 64
        assert result.hamming_distance(perceptual_hash(handle, algorithm, 8, resize_filter)) == 0

    @pytest.mark.parametrize(
        ("algorithm", "reference"),
        [
            (HashAlgorithm.MEAN, imagehash.average_hash),
            (HashAlgorithm.GRADIENT, imagehash.dhash),
            (HashAlgorithm.VERT_GRADIENT, imagehash.dhash_vertical),
            (HashAlgorithm.DCT, imagehash.phash),
            (HashAlgorithm.WAVELET, imagehash.whash),
        ],
    )
    def test_default_filter_matches_imagehash(self, tmp_path: Path, algorithm: HashAlgorithm, reference) -> None:
        """Shrinking with Lanczos first gives the same hash imagehash computes on its own."""
        path = tmp_path / "img.png"
        gradient_image(size=100).save(path)
        (handle,) = handles_for(path)

        with Image.open(path) as img:
            expected = str(reference(img.convert("RGB"), hash_size=8))

        assert perceptual_hash(handle, algorithm, 8).bits == expected

    def test_filter_changes_the_sampled_grid(self, tmp_path: Path) -> None:
        """Nearest neighbour skips a small corner block that Lanczos blends in."""
        path = tmp_path / "corner.png"
        img = Image.new("L", (64, 64))
        img.paste(255, (0, 0, 4, 4))
        img.save(path)
        (handle,) = handles_for(path)

        nearest = perceptual_hash(handle, HashAlgorithm.MEAN, 8, ResizeFilter.NEAREST)
        lanczos = perceptual_hash(handle, HashAlgorithm.MEAN, 8, ResizeFilter.LANCZOS3)

        assert nearest.bits == "0000000000000000"
        assert lanczos.bits != nearest.bits


class TestFingerprint:
    """Tests for fingerprint and fingerprinter_for."""

    def test_dispatch_by_kind(self, tmp_path: Path) -> None:
        path = tmp_path / "img.png"
        gradient_image().save(path)
        (handle,) = handles_for(path)

        assert isinstance(fingerprint(handle, ExactMode.CONTENT), FullContent)
        assert isinstance(fingerprint(handle, ExactMode.CHECKSUM), Checksum)
        assert fingerprint(handle, HashAlgorithm.MEAN, 4).length == 16

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError):
            fingerprinter_for("sha1")  # type: ignore[arg-type]


class TestFingerprintAll:
    """Tests for fingerprint_all function."""

    @pytest.mark.parametrize("workers", [1, 4])
    def test_collects_results_and_failures(self, tmp_path: Path, workers: int) -> None:
        """Failed files should be reported in input order, others fingerprinted."""
        paths = []
        for i in range(6):
            path = tmp_path / f"f{i}.txt"
            path.write_text(f"file {i}", encoding="utf-8")
            paths.append(path)
        handles = handles_for(*paths)
        paths[4].unlink()
        paths[1].unlink()

        results, failures = fingerprint_all(handles, checksum, workers=workers)

        assert set(results) == {handles[0], handles[2], handles[3], handles[5]}
        assert results[handles[3]] == Checksum(zlib.crc32(b"file 3"))
        assert [f.path for f in failures] == [paths[1], paths[4]]
        assert all(f.kind == "read" for f in failures)

    def test_progress_callback(self, tmp_path: Path) -> None:
        paths = []
        for i in range(3):
            path = tmp_path / f"f{i}.txt"
            path.write_text("x", encoding="utf-8")
            paths.append(path)
        progress_calls: list[tuple[str, int, int]] = []

        def on_progress(stage: str, current: int, total: int) -> None:
            progress_calls.append((stage, current, total))

        fingerprint_all(handles_for(*paths), checksum, workers=2, stage="checksum", on_progress=on_progress)

        assert progress_calls == [("checksum", 1, 3), ("checksum", 2, 3), ("checksum", 3, 3)]

    def test_other_errors_propagate(self, tmp_path: Path) -> None:
        """Only per-file errors are turned into failures."""
        path = tmp_path / "a.txt"
        path.write_text("x", encoding="utf-8")

        def broken(handle: FileHandle) -> int:
            raise RuntimeError("bug")

        with pytest.raises(RuntimeError):
            fingerprint_all(handles_for(path), broken)
