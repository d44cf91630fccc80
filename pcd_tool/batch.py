"""
batch.py

Best-effort conversion of every matching file in a directory.

Each input file is converted by an independent task on a fixed-size thread
pool.  A failing file is logged and tallied; it never stops its siblings or
the batch.  The outcome is returned as a :class:`BatchResult`.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from tqdm import tqdm

from pcd_tool.errors import DirectoryConflictError, PcdIOError
from pcd_tool.formats import FileFormat, guess_file_format

logger = logging.getLogger(__name__)

FileRoutine = Callable[[Path, Path], object]


@dataclass
class BatchResult:
    """Outcome of a directory conversion.

    Attributes:
        succeeded: Output files written successfully.
        failed: ``(input_file, error message)`` for every failed file.
        skipped: Matching entries that were not readable regular files.
    """

    succeeded: List[Path] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return f"{len(self.succeeded)} succeeded, {len(self.failed)} failed"


def matches_format(path: Path, fmt: FileFormat) -> bool:
    """Return True if *path*'s name carries the extension of *fmt*."""
    if fmt is FileFormat.RAW_BIN:
        return path.name.endswith(fmt.extension)
    return guess_file_format(path) is fmt


def output_name(path: Path, source: FileFormat, target: FileFormat) -> str:
    """Input stem with the destination extension (``a.pcd`` -> ``a.bin``)."""
    stem = path.name[: -len(source.extension)] if path.name.endswith(source.extension) else path.stem
    return stem + target.extension


def _is_readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def convert_directory(
    input_dir: str | os.PathLike,
    output_dir: str | os.PathLike,
    per_file_routine: FileRoutine,
    source: FileFormat,
    target: FileFormat,
    workers: Optional[int] = None,
    progress: bool = False,
) -> BatchResult:
    """Convert every *source* file of *input_dir* into a new *output_dir*.

    Args:
        input_dir: Directory whose immediate children are converted.
        output_dir: Directory to create; it must not exist yet.
        per_file_routine: ``routine(input_file, output_file)`` converting one
            file; any exception it raises counts as a failure of that file.
        source: Format of the input files (selects the matching extension).
        target: Format of the output files (selects the output extension).
        workers: Pool size; defaults to the CPU count.
        progress: Show a tqdm progress bar.

    Raises:
        DirectoryConflictError: If *output_dir* already exists.
        PcdIOError: If *input_dir* cannot be listed or *output_dir* created.
    """
    input_dir = Path(input_dir)
    output_dir = Path(output_dir)

    if output_dir.exists():
        raise DirectoryConflictError(f"Output directory '{output_dir}' already exists.")
    try:
        entries = sorted(input_dir.iterdir())
    except OSError as err:
        raise PcdIOError(f"Cannot list input directory '{input_dir}': {err}") from err
    try:
        output_dir.mkdir(parents=True)
    except OSError as err:
        raise PcdIOError(f"Cannot create output directory '{output_dir}': {err}") from err

    result = BatchResult()
    jobs: List[Tuple[Path, Path]] = []
    for entry in entries:
        if not matches_format(entry, source):
            continue
        if not _is_readable_file(entry):
            logger.warning("Skipping '%s': not a readable regular file", entry)
            result.skipped.append(entry)
            continue
        jobs.append((entry, output_dir / output_name(entry, source, target)))

    logger.info("Converting %d files from '%s' into '%s'", len(jobs), input_dir, output_dir)

    with ThreadPoolExecutor(max_workers=workers or os.cpu_count() or 1) as pool:
        futures = {pool.submit(per_file_routine, src, dst): (src, dst) for src, dst in jobs}
        for future in tqdm(as_completed(futures), total=len(futures), disable=not progress, unit="file"):
            src, dst = futures[future]
            try:
                future.result()
            except Exception as err:
                logger.error("Failed to convert '%s': %s", src, err)
                result.failed.append((src, str(err)))
            else:
                result.succeeded.append(dst)

    result.succeeded.sort()
    result.failed.sort()
    logger.info("Batch conversion complete: %s", result.summary())
    return result
