"""Core business logic for fily: fingerprinting, grouping and file operations."""

from fily.core.config import DuplicateOptions, SimilarityOptions, default_workers
from fily.core.duplicates import bucket_by, find_duplicates, partition_equal
from fily.core.emit import format_group, format_groups, order_groups, write_groups
from fily.core.errors import FileError, FilyError, FormatError, PreconditionError, ReadError
from fily.core.file_ops import (
    DestinationExistsError,
    FileOperationError,
    MoveRecord,
    SourceNotFoundError,
    UndoError,
    UndoStack,
    get_default_history_path,
    move_files,
    safe_move,
    undo_all,
    undo_last,
)
from fily.core.fingerprint import (
    checksum,
    content_digest,
    fingerprint,
    fingerprint_all,
    perceptual_hash,
    read_content,
)
from fily.core.formats import FormatMismatch, check_image_formats
from fily.core.inputs import build_handles, read_paths, split_paths
from fily.core.models import (
    Checksum,
    ExactMode,
    FileFailure,
    FileHandle,
    Fingerprint,
    FullContent,
    Group,
    GroupingResult,
    HashAlgorithm,
    PerceptualHash,
    ResizeFilter,
)
from fily.core.settings import Settings, SettingsError
from fily.core.similar import BKTree, UnionFind, cluster_hashes, find_similar

__all__ = [
    # config
    "DuplicateOptions",
    "SimilarityOptions",
    "default_workers",
    # duplicates
    "bucket_by",
    "find_duplicates",
    "partition_equal",
    # emit
    "format_group",
    "format_groups",
    "order_groups",
    "write_groups",
    # errors
    "FileError",
    "FilyError",
    "FormatError",
    "PreconditionError",
    "ReadError",
    # file_ops
    "DestinationExistsError",
    "FileOperationError",
    "MoveRecord",
    "SourceNotFoundError",
    "UndoError",
    "UndoStack",
    "get_default_history_path",
    "move_files",
    "safe_move",
    "undo_all",
    "undo_last",
    # fingerprint
    "checksum",
    "content_digest",
    "fingerprint",
    "fingerprint_all",
    "perceptual_hash",
    "read_content",
    # formats
    "FormatMismatch",
    "check_image_formats",
    # inputs
    "build_handles",
    "read_paths",
    "split_paths",
    # models
    "Checksum",
    "ExactMode",
    "FileFailure",
    "FileHandle",
    "Fingerprint",
    "FullContent",
    "Group",
    "GroupingResult",
    "HashAlgorithm",
    "PerceptualHash",
    "ResizeFilter",
    # settings
    "Settings",
    "SettingsError",
    # similar
    "BKTree",
    "UnionFind",
    "cluster_hashes",
    "find_similar",
]
