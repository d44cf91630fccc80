"""
convert.py

Format-pair dispatch and the conversion routines.

Every ``(source, target)`` pair of :class:`~pcd_tool.formats.FileFormat` has
an explicit entry in :data:`CONVERSION_MATRIX`:

================  ==========  ===========  =============  ==========
From \\ To         libpcl      newslab      velodyne pcap  raw bin
================  ==========  ===========  =============  ==========
libpcl PCD        copy (+T)   project      --             strip
newslab PCD       re-derive   copy (+T)    --             strip
velodyne pcap     frames      --           copy           frames
raw bin           decode      --           --             copy
================  ==========  ===========  =============  ==========

``copy (+T)``: byte copy, or a streaming transform pass when a transform is
configured.  Plain ``copy`` edges reject transforms and frame windows.
``--`` edges raise :class:`~pcd_tool.errors.UnsupportedConversionError`.

Points are transformed in the float width of the source (float32 for libpcl
and raw files, float64 for newslab files).
"""

from __future__ import annotations

import enum
import functools
import logging
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
from tqdm import tqdm

from pcd_tool.batch import BatchResult, convert_directory
from pcd_tool.codecs.pcd import PcdReader, PcdWriter
from pcd_tool.codecs.raw_bin import RawBinReader, RawBinWriter
from pcd_tool.codecs.velodyne_pcap import ReturnMode, VelodyneConfig, VelodyneModel, VelodynePcapReader
from pcd_tool.errors import (
    DirectoryConflictError,
    FrameRangeError,
    MissingFieldError,
    PcdIOError,
    PcdToolError,
    UnsupportedConversionError,
)
from pcd_tool.formats import FileFormat, resolve_format
from pcd_tool.frame_window import (
    FrameBound,
    requires_full_scan,
    resolve_frame_window,
    resolve_open_end,
    resolve_start,
)
from pcd_tool.records import LIBPCL_SCHEMA, NEWSLAB_SCHEMA, FieldSchema, xyz_of
from pcd_tool.spherical import project_points
from pcd_tool.transform import Transform, apply_transform

logger = logging.getLogger(__name__)

F = FileFormat


# ---------------------------------------------------------------------------
# Options and results
# ---------------------------------------------------------------------------


@dataclass
class ConversionOptions:
    """Settings for one :func:`convert` call.

    Attributes:
        from_format: Explicit input format (token or enum); guessed if None.
        to_format: Explicit output format; guessed if None.
        transform: Rigid transform applied to every point.
        start_frame: First frame to extract from a capture.
        end_frame: End bound of the extracted frames.
        velodyne_model: Sensor model, required for capture sources.
        velodyne_return_mode: Return mode, required for capture sources.
        workers: Pool size for directory inputs.
        progress: Show progress bars.
    """

    from_format: Union[FileFormat, str, None] = None
    to_format: Union[FileFormat, str, None] = None
    transform: Optional[Transform] = None
    start_frame: Optional[FrameBound] = None
    end_frame: Optional[FrameBound] = None
    velodyne_model: Union[VelodyneModel, str, None] = None
    velodyne_return_mode: Union[ReturnMode, str, None] = None
    workers: Optional[int] = None
    progress: bool = False

    @property
    def has_window(self) -> bool:
        return self.start_frame is not None or self.end_frame is not None


@dataclass
class ConversionReport:
    """What a conversion did.

    ``points`` is None for byte copies.  ``batch`` is set for directory inputs.
    """

    source: FileFormat
    target: FileFormat
    input_path: Path
    output_path: Path
    files: List[Path] = field(default_factory=list)
    points: Optional[int] = None
    frames: int = 0
    batch: Optional[BatchResult] = None

    @property
    def edge(self) -> "ConversionEdge":
        return lookup_edge(self.source, self.target)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _io_stage(stage: str, path: Path) -> Iterator[None]:
    """Re-raise bare OS errors as :class:`PcdIOError` naming *stage* and *path*."""
    try:
        yield
    except PcdToolError:
        raise
    except OSError as err:
        raise PcdIOError(f"Error while {stage} '{path}': {err}") from err


def _float_width(dtype: np.dtype) -> np.dtype:
    return dtype if np.issubdtype(dtype, np.floating) else np.dtype(np.float64)


def _source_xyz(data: np.ndarray) -> np.ndarray:
    """``(N, 3)`` coordinates of a PCD array in the float width of its ``x`` field."""
    width = _float_width(data.dtype["x"])
    return np.column_stack([data["x"], data["y"], data["z"]]).astype(width, copy=False)


def _require_newslab(schema: FieldSchema, path: Path) -> None:
    missing = [name for name in NEWSLAB_SCHEMA.names if name not in schema]
    if missing:
        raise MissingFieldError(f"'{path}' is not a newslab PCD file; missing fields {missing}.")


def _set_xyz(records: np.ndarray, xyz: np.ndarray) -> None:
    records["x"] = xyz[:, 0]
    records["y"] = xyz[:, 1]
    records["z"] = xyz[:, 2]


def _set_spherical(records: np.ndarray, xyz: np.ndarray) -> None:
    distance, azimuthal_angle, vertical_angle = project_points(xyz)
    records["distance"] = distance
    records["azimuthal_angle"] = azimuthal_angle
    records["vertical_angle"] = vertical_angle


def _copy(src: Path, dst: Path) -> None:
    with _io_stage("copying", src):
        shutil.copyfile(src, dst)


# ---------------------------------------------------------------------------
# File-to-file routines: routine(src, dst, options) -> points written
# ---------------------------------------------------------------------------


def libpcl_to_libpcl(src: Path, dst: Path, options: ConversionOptions) -> int:
    """Transform x/y/z in place, keeping every other field and the layout."""
    reader = PcdReader(src)
    reader.schema.require_xyz()
    integer_axes = [name for name in "xyz" if reader.schema[name].type != "F"]
    if integer_axes:
        raise MissingFieldError(
            f"'{src}' stores {integer_axes} as integer fields; only float coordinates can be transformed."
        )
    data = reader.read_raw()
    moved = apply_transform(_source_xyz(data), options.transform)
    for axis, name in enumerate("xyz"):
        data[name] = moved[:, axis]
    with _io_stage("writing", dst), PcdWriter(dst, reader.schema, dtype=data.dtype, **reader.layout()) as writer:
        writer.push(data)
    return len(data)


def libpcl_to_newslab(src: Path, dst: Path, options: ConversionOptions) -> int:
    reader = PcdReader(src)
    records = reader.read_records()
    xyz = apply_transform(_source_xyz(reader.read_raw()), options.transform).astype(np.float64)
    _set_xyz(records, xyz)
    _set_spherical(records, xyz)
    records["laser_id"] = 0
    records["timestamp_ns"] = 0
    if "intensity" not in reader.schema:
        records["intensity"] = 0.0
    with _io_stage("writing", dst), PcdWriter(dst, NEWSLAB_SCHEMA, **reader.layout()) as writer:
        writer.push(records)
    return len(records)


def newslab_to_newslab(src: Path, dst: Path, options: ConversionOptions) -> int:
    """Transform a newslab file; spherical fields follow the moved points."""
    reader = PcdReader(src)
    _require_newslab(reader.schema, src)
    records = reader.read_records()
    xyz = apply_transform(xyz_of(records), options.transform)
    _set_xyz(records, xyz)
    _set_spherical(records, xyz)
    with _io_stage("writing", dst), PcdWriter(dst, NEWSLAB_SCHEMA, **reader.layout()) as writer:
        writer.push(records)
    return len(records)


def newslab_to_libpcl(src: Path, dst: Path, options: ConversionOptions) -> int:
    """Keep the stored x/y/z (and intensity); spherical fields are dropped."""
    reader = PcdReader(src)
    _require_newslab(reader.schema, src)
    records = reader.read_records()
    _set_xyz(records, apply_transform(xyz_of(records), options.transform))
    with _io_stage("writing", dst), PcdWriter(dst, LIBPCL_SCHEMA, **reader.layout()) as writer:
        writer.push(records)
    return len(records)


def pcd_to_raw_bin(src: Path, dst: Path, options: ConversionOptions) -> int:
    """Write x/y/z with zero intensity."""
    reader = PcdReader(src)
    reader.schema.require_xyz()
    records = reader.read_records()
    _set_xyz(records, apply_transform(_source_xyz(reader.read_raw()), options.transform))
    records["intensity"] = 0.0
    with _io_stage("writing", dst), RawBinWriter(dst) as writer:
        writer.push(records)
    return len(records)


def raw_bin_to_libpcl(src: Path, dst: Path, options: ConversionOptions) -> int:
    reader = RawBinReader(src)
    with _io_stage("writing", dst), PcdWriter(dst, LIBPCL_SCHEMA) as writer:
        for batch in reader:
            _set_xyz(batch, apply_transform(xyz_of(batch).astype(np.float32), options.transform))
            writer.push(batch)
    return writer.points_written


def copy_or_transform(routine: Optional[Callable[[Path, Path, ConversionOptions], int]]):
    """Copy edge: byte copy without a transform, else *routine* if there is one."""

    def run(src: Path, dst: Path, options: ConversionOptions) -> Optional[int]:
        if options.transform is None and not options.has_window:
            _copy(src, dst)
            return None
        if routine is None:
            raise UnsupportedConversionError(
                f"'{src}' can only be copied; transforms and frame windows are not supported "
                f"between two files of this format."
            )
        return routine(src, dst, options)

    return run


# ---------------------------------------------------------------------------
# Capture routines: write one file per frame and return stream
# ---------------------------------------------------------------------------


def _frame_window_bounds(
    reader: VelodynePcapReader, options: ConversionOptions
) -> Tuple[int, Optional[int], bool]:
    """Return ``(start_index, end_index, full_scan)``; end None means open."""
    start, end = options.start_frame, options.end_frame
    if requires_full_scan(start, end):
        logger.info(
            "Frame window %s..%s requires a full scan of '%s' to count frames",
            start, end, reader.path,
        )
        total = reader.count_frames()
        window = resolve_frame_window(start, end, total)
        return window.start, window.end, True
    start_index, end_index = resolve_start(start, None), resolve_open_end(start, end)
    if end_index is not None and end_index <= start_index:
        raise FrameRangeError(
            f"Start frame must precede end frame (resolved window [{start_index}, {end_index}))."
        )
    return start_index, end_index, False


def pcap_to_frames(src: Path, dst: Path, options: ConversionOptions, target: FileFormat) -> ConversionReport:
    """Extract the selected frames of a capture as one file per frame and stream.

    Output layout: ``dst/<stream>/<index:06d><ext>`` where *stream* is
    ``strongest`` and/or ``last`` depending on the return mode.
    """
    config = VelodyneConfig.from_options(options.velodyne_model, options.velodyne_return_mode)
    if dst.exists():
        raise DirectoryConflictError(f"Output directory '{dst}' already exists.")
    reader = VelodynePcapReader(src, config)
    start_index, end_index, full_scan = _frame_window_bounds(reader, options)

    streams = config.return_mode.streams
    with _io_stage("creating", dst):
        for stream in streams:
            (dst / stream).mkdir(parents=True)

    report = ConversionReport(F.VELODYNE_PCAP, target, src, dst, points=0)
    try:
        _write_frames(reader, report, options, start_index, end_index, full_scan)
    except PcdToolError:
        # dst was created by this call.
        shutil.rmtree(dst, ignore_errors=True)
        raise
    logger.info("Wrote %d frames (%d files) to '%s'", report.frames, len(report.files), dst)
    return report


def _write_frames(
    reader: VelodynePcapReader,
    report: ConversionReport,
    options: ConversionOptions,
    start_index: int,
    end_index: Optional[int],
    full_scan: bool,
) -> None:
    src, dst, target = report.input_path, report.output_path, report.target
    streams = reader.config.return_mode.streams
    last_index = -1
    exhausted = True
    for frame in tqdm(reader, disable=not options.progress, unit="frame"):
        last_index = frame.index
        if end_index is not None and frame.index >= end_index:
            exhausted = False
            break
        if frame.index < start_index:
            continue
        for stream in streams:
            records = frame.returns[stream]
            _set_xyz(records, apply_transform(xyz_of(records).astype(np.float32), options.transform))
            path = dst / stream / f"{frame.index:06d}{target.extension}"
            with _io_stage("writing", path):
                if target is F.RAW_BIN:
                    with RawBinWriter(path) as writer:
                        writer.push(records)
                else:
                    with PcdWriter(path, LIBPCL_SCHEMA) as writer:
                        writer.push(records)
            report.files.append(path)
            report.points += len(records)
        report.frames += 1
        logger.debug("Wrote frame %d of '%s'", frame.index, src)

    if exhausted and not full_scan:
        # The whole capture was seen, so its frame count is now known.
        resolve_frame_window(options.start_frame, options.end_frame, last_index + 1)
    if report.frames == 0:
        raise FrameRangeError(f"No frames of '{src}' fall inside the requested window.")


# ---------------------------------------------------------------------------
# Conversion matrix
# ---------------------------------------------------------------------------


class EdgeKind(enum.Enum):
    CONVERT = "convert"
    COPY = "copy"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class ConversionEdge:
    """One cell of the conversion matrix.

    ``routine`` converts a single file.  For COPY edges it is the transform
    pass used when a transform is configured, or None for copy-only formats.
    """

    source: FileFormat
    target: FileFormat
    kind: EdgeKind
    routine: Optional[Callable] = None
    reason: str = ""

    @property
    def transformable(self) -> bool:
        return self.kind is EdgeKind.CONVERT or self.routine is not None


def _convert(src: FileFormat, dst: FileFormat, routine: Callable) -> ConversionEdge:
    return ConversionEdge(src, dst, EdgeKind.CONVERT, routine)


def _copy_edge(fmt: FileFormat, routine: Optional[Callable]) -> ConversionEdge:
    return ConversionEdge(fmt, fmt, EdgeKind.COPY, routine)


def _unsupported(src: FileFormat, dst: FileFormat, reason: str) -> ConversionEdge:
    return ConversionEdge(src, dst, EdgeKind.UNSUPPORTED, None, reason)


CONVERSION_MATRIX: Dict[Tuple[FileFormat, FileFormat], ConversionEdge] = {
    (F.LIBPCL_PCD, F.LIBPCL_PCD): _copy_edge(F.LIBPCL_PCD, libpcl_to_libpcl),
    (F.LIBPCL_PCD, F.NEWSLAB_PCD): _convert(F.LIBPCL_PCD, F.NEWSLAB_PCD, libpcl_to_newslab),
    (F.LIBPCL_PCD, F.VELODYNE_PCAP): _unsupported(
        F.LIBPCL_PCD, F.VELODYNE_PCAP, "Converting to a pcap capture is not supported."
    ),
    (F.LIBPCL_PCD, F.RAW_BIN): _convert(F.LIBPCL_PCD, F.RAW_BIN, pcd_to_raw_bin),
    (F.NEWSLAB_PCD, F.LIBPCL_PCD): _convert(F.NEWSLAB_PCD, F.LIBPCL_PCD, newslab_to_libpcl),
    (F.NEWSLAB_PCD, F.NEWSLAB_PCD): _copy_edge(F.NEWSLAB_PCD, newslab_to_newslab),
    (F.NEWSLAB_PCD, F.VELODYNE_PCAP): _unsupported(
        F.NEWSLAB_PCD, F.VELODYNE_PCAP, "Converting to a pcap capture is not supported."
    ),
    (F.NEWSLAB_PCD, F.RAW_BIN): _convert(F.NEWSLAB_PCD, F.RAW_BIN, pcd_to_raw_bin),
    (F.VELODYNE_PCAP, F.LIBPCL_PCD): _convert(
        F.VELODYNE_PCAP, F.LIBPCL_PCD, functools.partial(pcap_to_frames, target=F.LIBPCL_PCD)
    ),
    (F.VELODYNE_PCAP, F.NEWSLAB_PCD): _unsupported(
        F.VELODYNE_PCAP, F.NEWSLAB_PCD, "Converting a pcap capture to newslab PCD is not supported."
    ),
    (F.VELODYNE_PCAP, F.VELODYNE_PCAP): _copy_edge(F.VELODYNE_PCAP, None),
    (F.VELODYNE_PCAP, F.RAW_BIN): _convert(
        F.VELODYNE_PCAP, F.RAW_BIN, functools.partial(pcap_to_frames, target=F.RAW_BIN)
    ),
    (F.RAW_BIN, F.LIBPCL_PCD): _convert(F.RAW_BIN, F.LIBPCL_PCD, raw_bin_to_libpcl),
    (F.RAW_BIN, F.NEWSLAB_PCD): _unsupported(
        F.RAW_BIN, F.NEWSLAB_PCD, "Converting raw binary to newslab PCD is not supported."
    ),
    (F.RAW_BIN, F.VELODYNE_PCAP): _unsupported(
        F.RAW_BIN, F.VELODYNE_PCAP, "Converting to a pcap capture is not supported."
    ),
    (F.RAW_BIN, F.RAW_BIN): _copy_edge(F.RAW_BIN, None),
}

# Pairs that accept a directory of input files.
BATCH_PAIRS = frozenset(
    [
        (F.LIBPCL_PCD, F.LIBPCL_PCD),
        (F.LIBPCL_PCD, F.RAW_BIN),
        (F.RAW_BIN, F.LIBPCL_PCD),
        (F.RAW_BIN, F.RAW_BIN),
    ]
)


def lookup_edge(source: FileFormat, target: FileFormat) -> ConversionEdge:
    """Return the matrix entry for ``(source, target)``."""
    return CONVERSION_MATRIX[(source, target)]


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _file_routine(edge: ConversionEdge) -> Callable[[Path, Path, ConversionOptions], Optional[int]]:
    if edge.kind is EdgeKind.COPY:
        return copy_or_transform(edge.routine)
    return edge.routine


def convert(
    input_path: str | os.PathLike,
    output_path: str | os.PathLike,
    options: Optional[ConversionOptions] = None,
) -> ConversionReport:
    """Convert *input_path* into *output_path*.

    Args:
        input_path: Source file, or directory for libpcl/raw-bin batch pairs.
        output_path: Destination file, or directory for capture sources and
            batch inputs (it must not exist yet).
        options: Formats, transform, frame window and sensor settings.

    Returns:
        A :class:`ConversionReport`.  For directory inputs, per-file failures
        are reported in ``report.batch`` and do not raise.

    Raises:
        PcdToolError: Any error of a single-file conversion.
    """
    options = options or ConversionOptions()
    input_path = Path(input_path)
    output_path = Path(output_path)

    source = resolve_format(input_path, options.from_format)
    target = resolve_format(output_path, options.to_format)
    edge = lookup_edge(source, target)
    logger.info("Converting '%s' (%s) -> '%s' (%s)", input_path, source, output_path, target)

    if edge.kind is EdgeKind.UNSUPPORTED:
        raise UnsupportedConversionError(edge.reason)
    if options.has_window and source is not F.VELODYNE_PCAP:
        raise UnsupportedConversionError("Frame windows can only be applied to pcap captures.")
    wants_processing = options.transform is not None or options.has_window
    if edge.kind is EdgeKind.COPY and not edge.transformable and wants_processing:
        raise UnsupportedConversionError(
            f"{source} files can only be copied; transforms and frame windows are not supported."
        )

    if input_path.is_dir() and (source, target) not in BATCH_PAIRS:
        raise UnsupportedConversionError(f"Directory input is not supported for {source} -> {target}.")

    if source is F.VELODYNE_PCAP and target is not F.VELODYNE_PCAP:
        return edge.routine(input_path, output_path, options)

    routine = _file_routine(edge)

    if input_path.is_dir():
        batch = convert_directory(
            input_path,
            output_path,
            functools.partial(_run_one, routine, options=options),
            source,
            target,
            workers=options.workers,
            progress=options.progress,
        )
        return ConversionReport(source, target, input_path, output_path, files=list(batch.succeeded), batch=batch)

    points = _run_one(routine, input_path, output_path, options=options)
    logger.info("Wrote '%s'", output_path)
    return ConversionReport(source, target, input_path, output_path, files=[output_path], points=points)


def _run_one(routine, src: Path, dst: Path, options: ConversionOptions) -> Optional[int]:
    with _io_stage("reading", src):
        return routine(src, dst, options)
