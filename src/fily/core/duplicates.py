"""Exact duplicate detection.

Files are bucketed by size first; only files sharing a size are ever read.
Within a size bucket the mode decides:

- CHECKSUM: the CRC-32 is the bucket key and same-bucket files are reported
  without further checks. Two different files with colliding checksums are a
  false positive the caller accepted in exchange for O(1) memory per file.
- CONTENT: a SHA-256 digest is the bucket key, then the members of each
  digest bucket are loaded and compared byte for byte. Only one digest
  bucket's contents are held in memory at a time.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable

from fily.core.config import DuplicateOptions
from fily.core.emit import order_groups
from fily.core.errors import PreconditionError
from fily.core.fingerprint import (
    ProgressCallback,
    checksum,
    content_digest,
    fingerprint_all,
    read_content,
)
from fily.core.models import ExactMode, FileFailure, FileHandle, FullContent, Group, GroupingResult

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


def bucket_by(handles: Iterable[FileHandle], key_func: Callable[[FileHandle], Any]) -> list[list[FileHandle]]:
    """Group handles by a computed key, keeping only buckets with 2+ files.

    Args:
        handles: Handles in input order.
        key_func: Function that computes a hashable key from a handle.

    Returns:
        Buckets in order of their first member; members keep input order.
    """
    buckets: dict[Any, list[FileHandle]] = defaultdict(list)
    for handle in handles:
        buckets[key_func(handle)].append(handle)
    return [bucket for bucket in buckets.values() if len(bucket) >= 2]


def partition_equal(bucket: list[FileHandle], contents: dict[FileHandle, FullContent]) -> list[list[FileHandle]]:
    """Split a bucket into classes of byte-identical files.

    Handles missing from contents (failed reads) are ignored.

    Returns:
        Classes with at least two members, in input order.
    """
    classes: list[tuple[FullContent, list[FileHandle]]] = []
    for handle in bucket:
        content = contents.get(handle)
        if content is None:
            continue
        for representative, members in classes:
            if representative.data == content.data:
                members.append(handle)
                break
        else:
            classes.append((content, [handle]))
    return [members for _, members in classes if len(members) >= 2]


def _checksum_groups(
    candidates: list[FileHandle],
    options: DuplicateOptions,
    on_progress: ProgressCallback | None,
    log: logging.Logger,
) -> tuple[list[Group], list[FileFailure]]:
    sums, failures = fingerprint_all(
        candidates, checksum, workers=options.pool_size, stage="checksum", on_progress=on_progress, log=log
    )
    hashed = [h for h in candidates if h in sums]
    buckets = bucket_by(hashed, lambda h: (h.size, sums[h].value))
    return [Group.of(bucket) for bucket in buckets], failures


def _content_groups(
    candidates: list[FileHandle],
    options: DuplicateOptions,
    on_progress: ProgressCallback | None,
    log: logging.Logger,
) -> tuple[list[Group], list[FileFailure]]:
    digests, failures = fingerprint_all(
        candidates, content_digest, workers=options.pool_size, stage="digest", on_progress=on_progress, log=log
    )
    hashed = [h for h in candidates if h in digests]
    digest_buckets = bucket_by(hashed, lambda h: (h.size, digests[h]))

    groups: list[Group] = []
    for done, bucket in enumerate(digest_buckets, start=1):
        contents, read_failures = fingerprint_all(
            bucket, read_content, workers=options.pool_size, stage="verify", log=log
        )
        failures.extend(read_failures)
        classes = partition_equal(bucket, contents)
        if len(classes) > 1:
            log.info(f"Digest collision split {len(bucket)} files into {len(classes)} groups")
        groups.extend(Group.of(members) for members in classes)
        # Drop the buffers before loading the next bucket
        del contents
        if on_progress:
            on_progress("verify", done, len(digest_buckets))

    return groups, failures


def find_duplicates(
    handles: Iterable[FileHandle],
    options: DuplicateOptions | None = None,
    *,
    on_progress: ProgressCallback | None = None,
    log: logging.Logger | None = None,
) -> GroupingResult:
    """Find groups of byte-identical files.

    Args:
        handles: Files to compare, in input order.
        options: Mode and pool settings (defaults to full-content mode).
        on_progress: Optional callback(stage, current, total).
            Stages: "size", "checksum" or "digest", "verify".
        log: Logger for per-file failures and run summaries.

    Returns:
        GroupingResult with groups in emission order and per-file failures.

    Raises:
        PreconditionError: If there are no files and options.fail_on_empty.
    """
    options = options or DuplicateOptions()
    log = log or logger
    handles = sorted(handles, key=lambda h: h.index)

    if not handles:
        if options.fail_on_empty:
            raise PreconditionError("No files to compare")
        return GroupingResult()

    result = GroupingResult(total_files=len(handles))

    size_buckets = bucket_by(handles, lambda h: h.size)
    candidates = sorted((h for bucket in size_buckets for h in bucket), key=lambda h: h.index)
    if on_progress:
        on_progress("size", len(handles), len(handles))
    log.info(f"{len(candidates)} of {len(handles)} files share their size with another file")

    if options.mode is ExactMode.CHECKSUM:
        groups, failures = _checksum_groups(candidates, options, on_progress, log)
    else:
        groups, failures = _content_groups(candidates, options, on_progress, log)

    result.groups = order_groups(groups)
    position = {h.path: h.index for h in handles}
    result.failures = sorted(failures, key=lambda f: position.get(f.path, -1))
    log.info(f"Found {result.total_groups} duplicate groups ({options.mode.value} mode)")
    return result
