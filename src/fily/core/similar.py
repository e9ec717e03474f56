"""Similar image detection using perceptual hashes.

Two images are linked when the Hamming distance between their hashes is at
most the threshold. Groups are the connected components of that graph, so
similarity is transitive: if A~B and B~C then A, B and C share a group even
when A and C are further apart than the threshold.

A BK-tree prunes candidate pairs. Its range query is exact, so the groups
are the same as with a full pairwise comparison.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

from fily.core.config import SimilarityOptions
from fily.core.emit import order_groups
from fily.core.errors import PreconditionError
from fily.core.fingerprint import ProgressCallback, fingerprint_all, perceptual_hash
from fily.core.models import FileHandle, Group, GroupingResult, PerceptualHash

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HashedImage:
    """An image file together with its perceptual hash."""

    handle: FileHandle
    hash: PerceptualHash

    def hamming_distance(self, other: HashedImage) -> int:
        return self.hash.hamming_distance(other.hash)


class BKTree:
    """BK-tree for range queries by Hamming distance.

    Each child edge is labelled with the distance between the child and its
    parent. A query within threshold T only descends into edges labelled
    d-T..d+T, where d is the distance from the query to the node; by the
    triangle inequality no match can hide behind any other edge.
    """

    def __init__(self) -> None:
        """Initialize an empty BK-tree."""
        self._root: tuple[HashedImage, dict[int, BKTree]] | None = None
        self._size = 0

    def add(self, item: HashedImage) -> None:
        """Add an item to the tree.

        Args:
            item: HashedImage to add.
        """
        self._size += 1
        if self._root is None:
            self._root = (item, {})
            return

        node = self
        while True:
            assert node._root is not None
            node_item, children = node._root
            distance = node_item.hamming_distance(item)
            if distance not in children:
                subtree = BKTree()
                subtree._root = (item, {})
                subtree._size = 1
                children[distance] = subtree
                return
            node = children[distance]
            node._size += 1

    def find_within(self, query: HashedImage, threshold: int) -> list[tuple[HashedImage, int]]:
        """Find all items within a given Hamming distance.

        Args:
            query: The item to search around.
            threshold: Maximum Hamming distance (inclusive).

        Returns:
            List of (item, distance) tuples within threshold.
        """
        results: list[tuple[HashedImage, int]] = []
        pending: list[BKTree] = [self]

        while pending:
            node = pending.pop()
            if node._root is None:
                continue
            node_item, children = node._root
            distance = node_item.hamming_distance(query)

            if distance <= threshold:
                results.append((node_item, distance))

            min_dist = max(0, distance - threshold)
            max_dist = distance + threshold
            for child_dist, subtree in children.items():
                if min_dist <= child_dist <= max_dist:
                    pending.append(subtree)

        return results

    def __len__(self) -> int:
        """Return the number of items in the tree."""
        return self._size

    def __iter__(self) -> Iterator[HashedImage]:
        """Iterate over all items in the tree."""
        pending: list[BKTree] = [self]
        while pending:
            node = pending.pop()
            if node._root is None:
                continue
            node_item, children = node._root
            yield node_item
            pending.extend(children.values())


class UnionFind:
    """Union-Find data structure for grouping similar images transitively."""

    def __init__(self) -> None:
        """Initialize empty Union-Find."""
        self._parent: dict[FileHandle, FileHandle] = {}
        self._rank: dict[FileHandle, int] = {}

    def find(self, x: FileHandle) -> FileHandle:
        """Find root of x with path compression."""
        if x not in self._parent:
            self._parent[x] = x
            self._rank[x] = 0
        if self._parent[x] != x:
            self._parent[x] = self.find(self._parent[x])
        return self._parent[x]

    def union(self, x: FileHandle, y: FileHandle) -> None:
        """Union two sets by rank."""
        rx, ry = self.find(x), self.find(y)
        if rx == ry:
            return
        if self._rank[rx] < self._rank[ry]:
            rx, ry = ry, rx
        self._parent[ry] = rx
        if self._rank[rx] == self._rank[ry]:
            self._rank[rx] += 1


def _check_comparable(images: list[HashedImage]) -> None:
    """Raise PreconditionError unless every hash has the same algorithm and length."""
    if not images:
        return
    first = images[0].hash
    for image in images[1:]:
        if image.hash.algorithm is not first.algorithm:
            raise PreconditionError(
                f"Mixed hash algorithms: {image.handle.path} was hashed with "
                f"{image.hash.algorithm.value}, expected {first.algorithm.value}"
            )
        if image.hash.length != first.length:
            raise PreconditionError(
                f"Mixed hash lengths: {image.handle.path} has {image.hash.length} bits, expected {first.length}"
            )


def cluster_hashes(hashes: Mapping[FileHandle, PerceptualHash], threshold: int) -> list[Group]:
    """Group images whose hashes are connected by distances <= threshold.

    Args:
        hashes: Perceptual hash per file; all from the same algorithm.
        threshold: Maximum Hamming distance of a link (inclusive).

    Returns:
        Connected components with at least two members, in emission order.

    Raises:
        PreconditionError: If the threshold is negative or the hashes are
            not mutually comparable.
    """
    if threshold < 0:
        raise PreconditionError(f"threshold must not be negative, got {threshold}")

    images = [HashedImage(handle, hashes[handle]) for handle in sorted(hashes, key=lambda h: h.index)]
    _check_comparable(images)
    if len(images) < 2:
        return []

    tree = BKTree()
    for image in images:
        tree.add(image)

    components = UnionFind()
    for image in images:
        for other, _ in tree.find_within(image, threshold):
            if other.handle != image.handle:
                components.union(image.handle, other.handle)

    members: dict[FileHandle, list[FileHandle]] = {}
    for image in images:
        members.setdefault(components.find(image.handle), []).append(image.handle)

    return order_groups(Group.of(group) for group in members.values() if len(group) >= 2)


def find_similar(
    handles: Iterable[FileHandle],
    options: SimilarityOptions,
    *,
    on_progress: ProgressCallback | None = None,
    log: logging.Logger | None = None,
) -> GroupingResult:
    """Find groups of visually similar images.

    Args:
        handles: Image files, in input order.
        options: Threshold, algorithm and pool settings.
        on_progress: Optional callback(stage, current, total).
            Stages: "hash", "compare".
        log: Logger for per-file failures and run summaries.

    Returns:
        GroupingResult with groups in emission order. Files that cannot be
        read or decoded are listed in failures.

    Raises:
        PreconditionError: If there are no files and options.fail_on_empty.
    """
    log = log or logger
    handles = sorted(handles, key=lambda h: h.index)

    if not handles:
        if options.fail_on_empty:
            raise PreconditionError("No images to compare")
        return GroupingResult()

    if options.threshold >= options.hash_bits:
        log.warning(
            f"Threshold {options.threshold} is not below the hash length of {options.hash_bits} bits, "
            f"every image will match every other image"
        )

    compute = partial(
        perceptual_hash,
        algorithm=options.algorithm,
        hash_size=options.hash_size,
        resize_filter=options.resize_filter,
    )
    hashes, failures = fingerprint_all(
        handles, compute, workers=options.pool_size, stage="hash", on_progress=on_progress, log=log
    )

    if on_progress:
        on_progress("compare", 0, len(hashes))
    groups = cluster_hashes(hashes, options.threshold)
    if on_progress:
        on_progress("compare", len(hashes), len(hashes))

    log.info(
        f"Found {len(groups)} similar image groups among {len(hashes)} images "
        f"({options.algorithm.value}, threshold {options.threshold})"
    )
    return GroupingResult(groups=groups, failures=failures, total_files=len(handles))
