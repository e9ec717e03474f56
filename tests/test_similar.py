"""Tests for core/similar.py: BK-tree, union-find and similar image grouping."""

from __future__ import annotations

import logging
import random
from pathlib import Path

import pytest
from conftest import gradient_image, handles_for
from PIL import Image

from fily.core.config import SimilarityOptions
from fily.core.errors import PreconditionError
from fily.core.models import FileHandle, HashAlgorithm, PerceptualHash
from fily.core.similar import BKTree, HashedImage, UnionFind, cluster_hashes, find_similar


def _hash(value: int, bits: int = 8, algorithm: HashAlgorithm = HashAlgorithm.GRADIENT) -> PerceptualHash:
    return PerceptualHash(bits=format(value, f"0{bits // 4}x"), length=bits, algorithm=algorithm)


def _hashes(*values: int) -> dict[FileHandle, PerceptualHash]:
    return {FileHandle(Path(f"img{i}.png"), 1, i): _hash(v) for i, v in enumerate(values)}


def _names(groups) -> list[list[str]]:
    return [[p.name for p in g.paths] for g in groups]


class TestBKTree:
    """Tests for BKTree data structure."""

    def test_empty_tree(self) -> None:
        tree = BKTree()

        assert len(tree) == 0
        assert list(tree) == []
        assert tree.find_within(HashedImage(FileHandle(Path("q"), 1, 0), _hash(0)), 8) == []

    def test_size_and_iteration(self) -> None:
        tree = BKTree()
        items = [HashedImage(h, p) for h, p in _hashes(0x00, 0x01, 0x03, 0xFF).items()]
        for item in items:
            tree.add(item)

        assert len(tree) == 4
        assert set(tree) == set(items)

    def test_find_within_matches_brute_force(self) -> None:
        """Range queries should return exactly what a full scan returns."""
        rng = random.Random(1234)
        items = [
            HashedImage(FileHandle(Path(f"{i}.png"), 1, i), _hash(rng.getrandbits(16), 16))
            for i in range(200)
        ]
        tree = BKTree()
        for item in items:
            tree.add(item)

        for query in items[:20]:
            for threshold in range(6):
                expected = {other for other in items if other.hamming_distance(query) <= threshold}
                found = {item for item, _ in tree.find_within(query, threshold)}
                assert found == expected


class TestUnionFind:
    """Tests for UnionFind data structure."""

    def test_union_is_transitive(self) -> None:
        a, b, c, d = (FileHandle(Path(n), 1, i) for i, n in enumerate("abcd"))
        components = UnionFind()
        components.union(a, b)
        components.union(b, c)

        assert components.find(a) == components.find(c)
        assert components.find(d) != components.find(a)


class TestClusterHashes:
    """Tests for cluster_hashes function."""

    def test_transitive_chain(self) -> None:
        """A~B and B~C join one group even though A and C are 4 bits apart."""
        hashes = _hashes(0x00, 0x03, 0x0F)

        assert _names(cluster_hashes(hashes, 2)) == [["img0.png", "img1.png", "img2.png"]]

    def test_threshold_is_inclusive(self) -> None:
        hashes = _hashes(0x00, 0x07)

        assert _names(cluster_hashes(hashes, 3)) == [["img0.png", "img1.png"]]
        assert cluster_hashes(hashes, 2) == []

    def test_threshold_zero_groups_identical_hashes(self) -> None:
        hashes = _hashes(0xAA, 0x55, 0xAA, 0x55, 0x01)

        assert _names(cluster_hashes(hashes, 0)) == [["img0.png", "img2.png"], ["img1.png", "img3.png"]]

    def test_matches_pairwise_components(self) -> None:
        """Groups should be the connected components of the pairwise graph."""
        rng = random.Random(99)
        hashes = _hashes(*(rng.getrandbits(8) for _ in range(40)))
        handles = sorted(hashes, key=lambda h: h.index)
        threshold = 2

        components = UnionFind()
        for i, a in enumerate(handles):
            for b in handles[i + 1:]:
                if hashes[a].hamming_distance(hashes[b]) <= threshold:
                    components.union(a, b)
        expected: dict[FileHandle, list[FileHandle]] = {}
        for handle in handles:
            expected.setdefault(components.find(handle), []).append(handle)
        expected_groups = sorted(
            (members for members in expected.values() if len(members) >= 2), key=lambda m: m[0].index
        )

        groups = cluster_hashes(hashes, threshold)

        assert [list(g.members) for g in groups] == expected_groups

    def test_mixed_algorithms_rejected(self) -> None:
        hashes = {
            FileHandle(Path("a.png"), 1, 0): _hash(0),
            FileHandle(Path("b.png"), 1, 1): _hash(0, algorithm=HashAlgorithm.MEAN),
        }

        with pytest.raises(PreconditionError, match="Mixed hash algorithms"):
            cluster_hashes(hashes, 5)

    def test_mixed_lengths_rejected(self) -> None:
        hashes = {
            FileHandle(Path("a.png"), 1, 0): _hash(0, 8),
            FileHandle(Path("b.png"), 1, 1): _hash(0, 16),
        }

        with pytest.raises(PreconditionError, match="Mixed hash lengths"):
            cluster_hashes(hashes, 5)

    def test_negative_threshold_rejected(self) -> None:
        with pytest.raises(PreconditionError):
            cluster_hashes(_hashes(0, 1), -1)

    def test_fewer_than_two_images(self) -> None:
        assert cluster_hashes({}, 3) == []
        assert cluster_hashes(_hashes(0), 3) == []


class TestFindSimilar:
    """Tests for find_similar function."""

    def test_full_pipeline(self, tmp_path: Path) -> None:
        """Copies of an image group together; a different image stays out."""
        original = tmp_path / "original.png"
        copy = tmp_path / "copy.png"
        other = tmp_path / "other.png"
        gradient_image().save(original)
        gradient_image().save(copy)
        gradient_image(reverse=True).save(other)

        result = find_similar(handles_for(original, other, copy), SimilarityOptions(threshold=4, workers=2))

        assert _names(result.groups) == [["original.png", "copy.png"]]
        assert result.total_files == 3
        assert result.failures == []

    def test_non_image_reported(self, tmp_path: Path) -> None:
        path1 = tmp_path / "a.png"
        path2 = tmp_path / "b.png"
        text = tmp_path / "notes.png"
        img = Image.new("RGB", (50, 50), color="blue")
        img.save(path1)
        img.save(path2)
        text.write_text("hello", encoding="utf-8")

        result = find_similar(handles_for(path1, text, path2), SimilarityOptions(threshold=0))

        assert _names(result.groups) == [["a.png", "b.png"]]
        assert [(f.path, f.kind) for f in result.failures] == [(text, "format")]

    def test_empty_input(self) -> None:
        assert find_similar([], SimilarityOptions(threshold=3)).groups == []

    def test_empty_input_fails_when_requested(self) -> None:
        with pytest.raises(PreconditionError):
            find_similar([], SimilarityOptions(threshold=3, fail_on_empty=True))

    def test_progress_stages(self, tmp_path: Path) -> None:
        path = tmp_path / "a.png"
        gradient_image().save(path)
        stages: list[str] = []

        def on_progress(stage: str, current: int, total: int) -> None:
            stages.append(stage)

        find_similar(handles_for(path), SimilarityOptions(threshold=1), on_progress=on_progress)

        assert stages == ["hash", "compare", "compare"]

    def test_warns_when_threshold_covers_whole_hash(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        """A threshold at the hash length puts every image in one group."""
        paths = [tmp_path / "left.png", tmp_path / "right.png"]
        gradient_image().save(paths[0])
        gradient_image(reverse=True).save(paths[1])
        caplog.set_level(logging.WARNING, logger="fily.core.similar")

        result = find_similar(handles_for(*paths), SimilarityOptions(threshold=64))

        assert _names(result.groups) == [["left.png", "right.png"]]
        assert "hash length of 64 bits" in caplog.text

    def test_no_warning_below_hash_length(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        path = tmp_path / "a.png"
        gradient_image().save(path)
        caplog.set_level(logging.WARNING, logger="fily.core.similar")

        find_similar(handles_for(path), SimilarityOptions(threshold=63))

        assert "hash length" not in caplog.text
