"""
codecs/raw_bin.py

Reader and writer for the raw binary point dump.

Format
------
A headerless sequence of 16-byte records, each four little-endian
``float32`` values: ``(x, y, z, intensity)``.  This is the layout of the
KITTI ``velodyne/*.bin`` files.  A file whose size is not a multiple of 16
bytes is corrupt; the trailing partial record is reported as a
:class:`~pcd_tool.errors.TruncatedRecordError`, never silently dropped.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

import numpy as np

from pcd_tool.errors import PcdIOError, TruncatedRecordError
from pcd_tool.records import empty_records

logger = logging.getLogger(__name__)

RAW_BIN_POINT_DTYPE = np.dtype(
    [("x", "<f4"), ("y", "<f4"), ("z", "<f4"), ("intensity", "<f4")]
)
RECORD_SIZE = RAW_BIN_POINT_DTYPE.itemsize  # 16 bytes

DEFAULT_CHUNK_POINTS = 1 << 16


class RawBinReader:
    """Reader for raw binary point files.

    Args:
        path: Path to the ``.bin`` file.
        chunk_points: Number of records decoded per batch.

    Example::

        reader = RawBinReader("000000.bin")
        for batch in reader:
            ...  # POINT_RECORD_DTYPE array with x, y, z, intensity filled
    """

    def __init__(self, path: str | os.PathLike, chunk_points: int = DEFAULT_CHUNK_POINTS) -> None:
        self._path = Path(path)
        if not self._path.is_file():
            raise PcdIOError(f"Raw binary file not found: {self._path}")
        self._chunk_points = chunk_points

    @property
    def path(self) -> Path:
        return self._path

    @property
    def points(self) -> int:
        """Number of complete records in the file."""
        return self._path.stat().st_size // RECORD_SIZE

    def __iter__(self) -> Iterator[np.ndarray]:
        chunk_bytes = self._chunk_points * RECORD_SIZE
        offset = 0
        with open(self._path, "rb") as fh:
            while True:
                buf = fh.read(chunk_bytes)
                if not buf:
                    break
                if len(buf) % RECORD_SIZE:
                    leftover = len(buf) % RECORD_SIZE
                    raise TruncatedRecordError(
                        f"{self._path}: truncated record at byte {offset + len(buf) - leftover} "
                        f"({leftover} of {RECORD_SIZE} bytes)."
                    )
                offset += len(buf)
                yield _raw_to_records(np.frombuffer(buf, dtype=RAW_BIN_POINT_DTYPE))

    def read(self) -> np.ndarray:
        """Read every point into a single ``POINT_RECORD_DTYPE`` array."""
        batches = list(self)
        if not batches:
            return empty_records(0)
        return np.concatenate(batches)


class RawBinWriter:
    """Streaming writer for raw binary point files.

    Use as a context manager; the file is flushed and closed on every exit
    path.  :meth:`finish` may be called explicitly and is idempotent.

    Example::

        with RawBinWriter("out.bin") as writer:
            writer.push(records)
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)
        try:
            self._fh: Optional[BinaryIO] = open(self._path, "wb")
        except OSError as err:
            raise PcdIOError(f"Cannot create '{self._path}': {err}") from err
        self.points_written = 0

    @property
    def path(self) -> Path:
        return self._path

    def push(self, records: np.ndarray) -> None:
        """Append records; only x, y, z and intensity are written."""
        if self._fh is None:
            raise ValueError(f"Writer for '{self._path}' is already finished.")
        out = np.empty(len(records), dtype=RAW_BIN_POINT_DTYPE)
        for name in RAW_BIN_POINT_DTYPE.names:
            out[name] = records[name]
        self._fh.write(out.tobytes())
        self.points_written += len(out)

    def finish(self) -> None:
        if self._fh is None:
            return
        fh, self._fh = self._fh, None
        fh.flush()
        fh.close()
        logger.debug("Wrote %d points to %s", self.points_written, self._path)

    def __enter__(self) -> "RawBinWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finish()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def load_raw_bin(path: str | os.PathLike) -> np.ndarray:
    """Load a raw binary file as ``POINT_RECORD_DTYPE`` records."""
    return RawBinReader(path).read()


def save_raw_bin(path: str | os.PathLike, records: np.ndarray) -> int:
    """Write *records* to a raw binary file and return the point count."""
    with RawBinWriter(path) as writer:
        writer.push(records)
    return writer.points_written


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _raw_to_records(raw: np.ndarray) -> np.ndarray:
    """Widen a raw ``(x, y, z, intensity)`` array to point records."""
    out = empty_records(raw.shape[0])
    out["x"] = raw["x"]
    out["y"] = raw["y"]
    out["z"] = raw["z"]
    out["intensity"] = raw["intensity"]
    return out
