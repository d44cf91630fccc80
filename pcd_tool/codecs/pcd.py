"""
codecs/pcd.py

PCD reader and writer built on :mod:`pypcd4`.

Two logical formats share the PCD container:

* **libpcl PCD** – any field layout; only ``x``, ``y``, ``z`` (count 1) are
  required.  Freshly written files use :data:`~pcd_tool.records.LIBPCL_SCHEMA`.
* **newslab PCD** – the fixed :data:`~pcd_tool.records.NEWSLAB_SCHEMA` with
  float64 coordinates plus distance and spherical angles.

The reader exposes the field schema and layout (width, height, viewpoint,
encoding) so that converters can carry them over to the output.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
from pypcd4 import Encoding, MetaData, PointCloud

from pcd_tool.errors import PcdIOError
from pcd_tool.records import FieldDef, FieldSchema, empty_records

logger = logging.getLogger(__name__)

DEFAULT_VIEWPOINT = (0.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0)


def schema_from_metadata(metadata: MetaData) -> FieldSchema:
    """Build a :class:`FieldSchema` from a pypcd4 header."""
    return FieldSchema(
        FieldDef(name, kind, int(size), int(count))
        for name, kind, size, count in zip(metadata.fields, metadata.type, metadata.size, metadata.count)
    )


class PcdReader:
    """Reader for PCD files.

    Args:
        path: Path to the ``.pcd`` file.

    Raises:
        PcdIOError: If the file is missing or its header/body cannot be parsed.
    """

    def __init__(self, path: str | os.PathLike) -> None:
        self._path = Path(path)
        if not self._path.is_file():
            raise PcdIOError(f"PCD file not found: {self._path}")
        try:
            self._cloud = PointCloud.from_path(self._path)
        except (OSError, ValueError, KeyError, IndexError) as err:
            raise PcdIOError(f"Cannot parse PCD file '{self._path}': {err}") from err
        self._schema = schema_from_metadata(self._cloud.metadata)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def schema(self) -> FieldSchema:
        return self._schema

    @property
    def points(self) -> int:
        return int(self._cloud.metadata.points)

    @property
    def width(self) -> int:
        return int(self._cloud.metadata.width)

    @property
    def height(self) -> int:
        return int(self._cloud.metadata.height)

    @property
    def viewpoint(self) -> tuple:
        return tuple(self._cloud.metadata.viewpoint)

    @property
    def encoding(self) -> Encoding:
        return self._cloud.metadata.data

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def read_raw(self) -> np.ndarray:
        """Return a copy of the file's own structured array (source schema)."""
        return np.array(self._cloud.pc_data, copy=True)

    def read_records(self) -> np.ndarray:
        """Return the points as ``POINT_RECORD_DTYPE`` records.

        Fields that exist in both the file and the record dtype are copied;
        the others stay zero.  Requires ``x``, ``y``, ``z``.
        """
        self._schema.require_xyz()
        data = self._cloud.pc_data
        out = empty_records(len(data))
        for name in out.dtype.names:
            if name in self._schema and self._schema[name].count == 1:
                out[name] = data[name]
        return out

    def layout(self) -> dict:
        """Keyword arguments that reproduce this file's layout in a :class:`PcdWriter`."""
        return {
            "width": self.width,
            "height": self.height,
            "viewpoint": self.viewpoint,
            "encoding": self.encoding,
        }


class PcdWriter:
    """Writer for PCD files with a fixed field schema.

    A PCD header states the point count, so pushed points are buffered and
    the file is written by :meth:`finish`.  Used as a context manager the
    file is written on normal exit; on an exception the buffer is dropped
    and no file is written.

    Args:
        path: Output path.
        schema: Field schema of the output.
        width: Header ``WIDTH``; defaults to the number of points.
        height: Header ``HEIGHT``; defaults to 1.
        viewpoint: Header ``VIEWPOINT``.
        encoding: ``DATA`` encoding (``Encoding.BINARY`` by default).
        dtype: Structured dtype of pushed arrays.  Defaults to the schema's
            natural dtype; pass the source dtype when re-writing a file with
            repeated (count > 1) fields.
    """

    def __init__(
        self,
        path: str | os.PathLike,
        schema: FieldSchema,
        width: Optional[int] = None,
        height: Optional[int] = None,
        viewpoint: Sequence[float] = DEFAULT_VIEWPOINT,
        encoding: Encoding = Encoding.BINARY,
        dtype: Optional[np.dtype] = None,
    ) -> None:
        self._path = Path(path)
        self._schema = schema
        self._width = width
        self._height = height
        self._viewpoint = tuple(float(v) for v in viewpoint)
        self._encoding = encoding
        self._dtype = np.dtype(dtype) if dtype is not None else schema_dtype(schema)
        self._batches: List[np.ndarray] = []
        self._finished = False
        self.points_written = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    def push(self, points: np.ndarray) -> None:
        """Buffer points.

        *points* is either an array of :attr:`dtype`, or any structured
        array (e.g. point records) from which same-named fields are copied.
        """
        if self._finished:
            raise ValueError(f"Writer for '{self._path}' is already finished.")
        if points.dtype != self._dtype:
            points = _select_fields(points, self._dtype)
        self._batches.append(points)

    def finish(self) -> None:
        if self._finished:
            return
        self._finished = True
        data = np.concatenate(self._batches) if self._batches else np.empty(0, dtype=self._dtype)
        self._batches = []
        n = len(data)

        width, height = self._width, self._height
        if width is None or height is None or width * height != n:
            if width is not None and height is not None:
                logger.warning(
                    "%s: layout %dx%d does not match %d points; writing an unorganized cloud",
                    self._path, width, height, n,
                )
            width, height = n, 1

        metadata = MetaData(
            fields=self._schema.names,
            size=tuple(f.size for f in self._schema),
            type=tuple(f.type for f in self._schema),
            count=tuple(f.count for f in self._schema),
            width=width,
            height=height,
            viewpoint=self._viewpoint,
            points=n,
            data=self._encoding,
        )
        try:
            PointCloud(metadata, data).save(self._path, encoding=self._encoding)
        except OSError as err:
            raise PcdIOError(f"Cannot write PCD file '{self._path}': {err}") from err
        self.points_written = n
        logger.debug("Wrote %d points to %s", n, self._path)

    def __enter__(self) -> "PcdWriter":
        return self

    def abort(self) -> None:
        """Drop buffered points without writing a file."""
        self._finished = True
        self._batches = []

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.finish()
        else:
            self.abort()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def schema_dtype(schema: FieldSchema) -> np.dtype:
    """Natural structured dtype of a schema (count > 1 fields become sub-arrays)."""
    return np.dtype(
        [(f.name, f.dtype) if f.count == 1 else (f.name, f.dtype, (f.count,)) for f in schema]
    )


def _select_fields(points: np.ndarray, dtype: np.dtype) -> np.ndarray:
    out = np.zeros(len(points), dtype=dtype)
    available = points.dtype.names or ()
    for name in dtype.names:
        if name in available:
            out[name] = points[name]
    return out
