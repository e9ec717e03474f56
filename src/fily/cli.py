"""Command line interface.

Paths are read from stdin (one per line unless --input-path-separator is
given), handed to one engine operation, and the results are printed to
stdout. Log output goes to a file, see --log-level and --log-file.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from tqdm import tqdm

from fily import __version__
from fily.core.config import DuplicateOptions, SimilarityOptions
from fily.core.duplicates import find_duplicates
from fily.core.emit import write_groups
from fily.core.errors import FilyError
from fily.core.file_ops import UndoStack, get_default_history_path, move_files, undo_all, undo_last
from fily.core.formats import check_image_formats
from fily.core.inputs import build_handles, read_paths
from fily.core.models import ExactMode, FileHandle, HashAlgorithm, ResizeFilter
from fily.core.settings import LOG_LEVELS, Settings
from fily.core.similar import find_similar
from fily.logging_config import setup_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from typing import TextIO

ENV_LOG_LEVEL = "FILY_LOGLEVEL"
ENV_STRICT_LOGGING = "FILY_STRICT_LOGGING"
ENV_INPUT_SEPARATOR = "FILY_INPUT_PATH_SEPARATOR"

# Separators that cannot be typed literally on a command line
_SEPARATOR_ESCAPES = {"\\0": "\0", "\\n": "\n", "\\t": "\t", "\\r\\n": "\r\n"}


class ProgressBars:
    """Renders engine progress callbacks as tqdm bars, one per stage."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._bars: dict[str, tqdm] = {}

    def __call__(self, stage: str, current: int, total: int) -> None:
        bar = self._bars.get(stage)
        if bar is None:
            bar = tqdm(total=total, desc=stage, file=self._stream, leave=False)
            self._bars[stage] = bar
        bar.total = total
        bar.n = current
        bar.refresh()

    def close(self) -> None:
        for bar in self._bars.values():
            bar.close()
        self._bars.clear()


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"{value!r} is not a whole number") from e
    if number < 0:
        raise argparse.ArgumentTypeError(f"{value!r} must not be negative")
    return number


def _positive_int(value: str) -> int:
    number = _non_negative_int(value)
    if number == 0:
        raise argparse.ArgumentTypeError("must be at least 1")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(prog="fily", description="Does stuff with files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-l", "--log-level",
        choices=LOG_LEVELS,
        help=f"Log level (default: settings, or ${ENV_LOG_LEVEL})",
    )
    parser.add_argument("--log-file", type=Path, help="File the log is written to (default: fily.log)")
    parser.add_argument(
        "-s", "--strict-logging",
        action="store_true",
        help=f"Refuse to run if logging cannot be set up (also ${ENV_STRICT_LOGGING})",
    )
    parser.add_argument(
        "-p", "--input-path-separator",
        help=f"Separator between input paths instead of line breaks, \\0 for NUL (also ${ENV_INPUT_SEPARATOR})",
    )
    parser.add_argument("--workers", type=_positive_int, help="Number of threads used to read files")
    parser.add_argument("--progress", action="store_true", help="Show progress bars on stderr")
    parser.add_argument("--settings-file", type=Path, help="Use this settings file instead of ~/.fily/settings.json")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND", required=True)

    duplicates = commands.add_parser(
        "duplicates", help="Find files with identical content and print one group per line"
    )
    duplicates.add_argument(
        "-c", "--checksum",
        action="store_const",
        const=ExactMode.CHECKSUM.value,
        dest="duplicate_mode",
        help="Compare CRC-32 checksums instead of bytes. Needs far less memory but can report false duplicates",
    )
    duplicates.add_argument("--fail-on-empty", action="store_true", help="Fail if no files are given")

    similar = commands.add_parser("similar-images", help="Find similar images and print one group per line")
    similar.add_argument(
        "-a", "--hash-alg",
        choices=[a.value for a in HashAlgorithm],
        help="Perceptual hash algorithm: " + "; ".join(f"{a.value}: {a.description}" for a in HashAlgorithm),
    )
    similar.add_argument(
        "--hash-size", type=_positive_int, help="Side length of the hash grid (always square)"
    )
    similar.add_argument(
        "-r", "--resize-filter",
        choices=[f.value for f in ResizeFilter],
        help="Filter used to shrink images to the hash grid (no effect on blockhash)",
    )
    similar.add_argument(
        "-t", "--threshold",
        type=_non_negative_int,
        help="Maximum number of differing hash bits for two images to count as similar",
    )
    similar.add_argument("--fail-on-empty", action="store_true", help="Fail if no images are given")

    move = commands.add_parser("move", help="Move files into a folder")
    move.add_argument("-t", "--to", dest="move_to", type=Path, required=True, help="Target folder")
    move.add_argument("--history-file", type=Path, help="Undo history file")

    undo = commands.add_parser("undo", help="Undo moves made with the move command")
    undo.add_argument("--all", action="store_true", help="Undo every recorded move")
    undo.add_argument("--history-file", type=Path, help="Undo history file")

    commands.add_parser(
        "check-image-formats",
        help="Find images whose extension does not match their format, printed as: path, extension, actual",
    )

    config = commands.add_parser("config", help="Show or change default settings")
    config_commands = config.add_subparsers(dest="config_command", metavar="ACTION")
    config_commands.add_parser("show", help="Print all settings (default)")
    config_set = config_commands.add_parser("set", help="Change a setting")
    config_set.add_argument("key")
    config_set.add_argument("value")
    config_commands.add_parser("reset", help="Restore the built-in defaults")

    return parser


def _resolve(value: Any, env_name: str | None, settings: Settings, key: str) -> Any:
    """Command-line value, else environment variable, else setting."""
    if value is not None:
        return value
    if env_name and os.environ.get(env_name):
        return os.environ[env_name]
    return settings.get(key)


def _separator(args: argparse.Namespace, settings: Settings) -> str | None:
    raw = _resolve(args.input_path_separator, ENV_INPUT_SEPARATOR, settings, "input_path_separator")
    if not raw:
        return None
    return _SEPARATOR_ESCAPES.get(raw, raw)


def _workers(args: argparse.Namespace, settings: Settings) -> int | None:
    return args.workers or settings.get("workers") or None


def _read_handles(args: argparse.Namespace, settings: Settings, stdin: TextIO) -> list[FileHandle]:
    try:
        paths = read_paths(stdin, _separator(args, settings))
    except (OSError, UnicodeDecodeError) as e:
        raise FilyError(f"Cannot read the path list: {e}") from e
    handles, _ = build_handles(paths)
    return handles


def _run_duplicates(args: argparse.Namespace, settings: Settings, stdin: TextIO, stdout: TextIO,
                    progress: ProgressBars | None) -> int:
    mode = ExactMode(args.duplicate_mode or settings.get("duplicate_mode"))
    options = DuplicateOptions(mode=mode, workers=_workers(args, settings), fail_on_empty=args.fail_on_empty)
    handles = _read_handles(args, settings, stdin)
    result = find_duplicates(handles, options, on_progress=progress)
    write_groups(result.groups, stdout)
    return 0


def _run_similar(args: argparse.Namespace, settings: Settings, stdin: TextIO, stdout: TextIO,
                 progress: ProgressBars | None) -> int:
    options = SimilarityOptions(
        threshold=args.threshold if args.threshold is not None else settings.get("threshold"),
        algorithm=HashAlgorithm(args.hash_alg or settings.get("hash_alg")),
        hash_size=args.hash_size or settings.get("hash_size"),
        resize_filter=ResizeFilter(args.resize_filter or settings.get("resize_filter")),
        workers=_workers(args, settings),
        fail_on_empty=args.fail_on_empty,
    )
    handles = _read_handles(args, settings, stdin)
    result = find_similar(handles, options, on_progress=progress)
    write_groups(result.groups, stdout)
    return 0


def _run_move(args: argparse.Namespace, settings: Settings, stdin: TextIO, stderr: TextIO) -> int:
    try:
        paths = read_paths(stdin, _separator(args, settings))
    except (OSError, UnicodeDecodeError) as e:
        raise FilyError(f"Cannot read the path list: {e}") from e
    undo_stack = UndoStack(args.history_file or get_default_history_path())
    _, failed = move_files(args.move_to, [Path(p) for p in paths], undo_stack)
    for path, error in failed:
        print(f"fily: {path}: {error}", file=stderr)
    return 0


def _run_undo(args: argparse.Namespace, stdout: TextIO) -> int:
    undo_stack = UndoStack(args.history_file or get_default_history_path())
    records = undo_all(undo_stack) if args.all else [r for r in [undo_last(undo_stack)] if r is not None]
    for record in records:
        stdout.write(f"{record.dst} -> {record.src}\n")
    return 0


def _run_check_formats(args: argparse.Namespace, settings: Settings, stdin: TextIO, stdout: TextIO) -> int:
    handles = _read_handles(args, settings, stdin)
    mismatches, _ = check_image_formats(handles)
    for mismatch in mismatches:
        stdout.write(f"{mismatch.path}, {mismatch.extension}, {mismatch.actual}\n")
    return 0


def _run_config(args: argparse.Namespace, settings: Settings, stdout: TextIO) -> int:
    if args.config_command == "set":
        settings.set(args.key, args.value)
    elif args.config_command == "reset":
        settings.reset()
    for key, value in settings.all_settings().items():
        stdout.write(f"{key} = {value!r}\n")
    return 0


def main(
    argv: Sequence[str] | None = None,
    *,
    stdin: TextIO | None = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    """Run the CLI and return the process exit code."""
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    args = build_parser().parse_args(argv)
    settings = Settings(args.settings_file) if args.settings_file else Settings()

    level = _resolve(args.log_level, ENV_LOG_LEVEL, settings, "log_level")
    log_file = args.log_file or Path(settings.get("log_file"))
    strict = args.strict_logging or bool(os.environ.get(ENV_STRICT_LOGGING))
    try:
        setup_logging(level, log_file)
    except (OSError, ValueError) as e:
        print(f"fily: error while setting up logging: {e}", file=stderr)
        if strict:
            return 1

    progress = ProgressBars(stderr) if args.progress else None
    try:
        if args.command == "duplicates":
            return _run_duplicates(args, settings, stdin, stdout, progress)
        if args.command == "similar-images":
            return _run_similar(args, settings, stdin, stdout, progress)
        if args.command == "move":
            return _run_move(args, settings, stdin, stderr)
        if args.command == "undo":
            return _run_undo(args, stdout)
        if args.command == "check-image-formats":
            return _run_check_formats(args, settings, stdin, stdout)
        return _run_config(args, settings, stdout)
    except FilyError as e:
        print(f"fily: error: {e}", file=stderr)
        return 1
    finally:
        if progress is not None:
            progress.close()
