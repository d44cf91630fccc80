"""
codecs/velodyne_pcap.py

Decoder for Velodyne sensor captures stored as pcap files.

Supported sensors
-----------------
======================  ======  ================================
Model token             Lasers  Distance unit
======================  ======  ================================
``vlp-16``              16      2 mm
``puck-lite``           16      2 mm
``puck-hires``          16      2 mm
``vlp-32c``             32      4 mm
======================  ======  ================================

Data packet layout (1206-byte UDP payload)
------------------------------------------
::

    12 x [ flag 0xFFEE (2) | azimuth 0.01 deg (2) | 32 x (distance u16, intensity u8) ]
    timestamp, us past the hour (4) | return mode (1) | product id (1)

16-laser sensors pack two firings per block; the azimuth of the second one
is interpolated halfway to the next block.  In dual-return mode consecutive
blocks share one azimuth: the even block holds the last return and the odd
block the strongest return.

A frame is one sensor revolution: a new frame starts whenever the firing
azimuth wraps around.  Captures have no frame index, so counting frames
(:func:`count_frames`) decodes the whole file.
"""

from __future__ import annotations

import enum
import logging
import math
import os
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import dpkt
import numpy as np

from pcd_tool.errors import CaptureDecodeError, MissingRequiredOptionError, PcdIOError, UnknownFormatError
from pcd_tool.records import empty_records

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PACKET_SIZE = 1206
BLOCKS_PER_PACKET = 12
CHANNELS_PER_BLOCK = 32
BLOCK_FLAG = b"\xff\xee"

_BLOCK_DTYPE = np.dtype(
    [
        ("flag", "<u2"),
        ("azimuth", "<u2"),
        ("channels", [("distance", "<u2"), ("intensity", "u1")], (CHANNELS_PER_BLOCK,)),
    ]
)

_FIRING_PERIOD_US = 55.296
_LASER_PERIOD_US = 2.304
_FULL_TURN = 36000  # centidegrees

# Elevation angles (degrees) by laser id
_VLP16_ELEVATION = [-15, 1, -13, 3, -11, 5, -9, 7, -7, 9, -5, 11, -3, 13, -1, 15]
_PUCK_HIRES_ELEVATION = [
    -10.0, 0.67, -8.67, 2.0, -7.33, 3.33, -6.0, 4.67,
    -4.67, 6.0, -3.33, 7.33, -2.0, 8.67, -0.67, 10.0,
]
_VLP32C_ELEVATION = [
    -25.0, -1.0, -1.667, -15.639, -11.31, 0.0, -0.667, -8.843,
    -7.254, 0.333, -0.333, -6.148, -5.333, 1.333, 0.667, -4.0,
    -4.667, 1.667, 1.0, -3.667, -3.333, 3.333, 2.333, -2.667,
    -3.0, 7.0, 4.667, -2.333, -2.0, 15.0, 10.333, -1.333,
]
_VLP32C_AZIMUTH_OFFSET = [
    1.4, -4.2, 1.4, -1.4, 1.4, -1.4, 4.2, -1.4,
    1.4, -4.2, 1.4, -1.4, 4.2, -1.4, 4.2, -1.4,
    1.4, -4.2, 1.4, -4.2, 4.2, -1.4, 1.4, -1.4,
    1.4, -1.4, 1.4, -4.2, 4.2, -1.4, 1.4, -1.4,
]


class VelodyneModel(enum.Enum):
    VLP16 = "vlp-16"
    PUCK_LITE = "puck-lite"
    PUCK_HIRES = "puck-hires"
    VLP32C = "vlp-32c"

    def __str__(self) -> str:
        return self.value


class ReturnMode(enum.Enum):
    STRONGEST = "strongest"
    LAST = "last"
    DUAL = "dual"

    @property
    def streams(self) -> Tuple[str, ...]:
        """Names of the output streams this mode produces."""
        if self is ReturnMode.DUAL:
            return ("strongest", "last")
        return (self.value,)

    def __str__(self) -> str:
        return self.value


_RETURN_MODE_BYTES = {0x37: ReturnMode.STRONGEST, 0x38: ReturnMode.LAST, 0x39: ReturnMode.DUAL}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VelodyneConfig:
    """Sensor model and return mode used to decode a capture."""

    model: VelodyneModel
    return_mode: ReturnMode

    @classmethod
    def from_options(
        cls,
        model: VelodyneModel | str | None,
        return_mode: ReturnMode | str | None,
    ) -> "VelodyneConfig":
        """Build a config from CLI-level values.

        Raises:
            MissingRequiredOptionError: If either value is missing.
            UnknownFormatError: If a value is not a known token.
        """
        if model is None:
            raise MissingRequiredOptionError("A Velodyne sensor model is required for pcap captures.")
        if return_mode is None:
            raise MissingRequiredOptionError("A Velodyne return mode is required for pcap captures.")
        try:
            model = VelodyneModel(model)
        except ValueError:
            valid = ", ".join(m.value for m in VelodyneModel)
            raise UnknownFormatError(f"The model '{model}' is not supported; expected one of: {valid}.") from None
        try:
            return_mode = ReturnMode(return_mode)
        except ValueError:
            raise UnknownFormatError(f"Invalid return mode '{return_mode}'.") from None
        return cls(model, return_mode)

    @property
    def lasers(self) -> int:
        return 32 if self.model is VelodyneModel.VLP32C else 16

    @property
    def distance_resolution(self) -> float:
        """Metres per distance unit."""
        return 0.004 if self.model is VelodyneModel.VLP32C else 0.002

    @property
    def elevation(self) -> np.ndarray:
        """Per-laser elevation, radians."""
        table = {
            VelodyneModel.VLP16: _VLP16_ELEVATION,
            VelodyneModel.PUCK_LITE: _VLP16_ELEVATION,
            VelodyneModel.PUCK_HIRES: _PUCK_HIRES_ELEVATION,
            VelodyneModel.VLP32C: _VLP32C_ELEVATION,
        }[self.model]
        return np.radians(np.asarray(table, dtype=np.float64))

    @property
    def azimuth_offset(self) -> np.ndarray:
        """Per-laser azimuth correction, degrees."""
        if self.model is VelodyneModel.VLP32C:
            return np.asarray(_VLP32C_AZIMUTH_OFFSET, dtype=np.float64)
        return np.zeros(self.lasers, dtype=np.float64)


# ---------------------------------------------------------------------------
# Frames
# ---------------------------------------------------------------------------


@dataclass
class Frame:
    """One revolution of a capture.

    Attributes:
        index: 0-based frame index within the capture.
        returns: Point records keyed by stream name (``"strongest"``,
            ``"last"``); dual-return frames carry both, in parallel order.
    """

    index: int
    returns: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def strongest(self) -> Optional[np.ndarray]:
        return self.returns.get("strongest")

    @property
    def last(self) -> Optional[np.ndarray]:
        return self.returns.get("last")


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------


class VelodynePcapReader:
    """Lazy frame reader for Velodyne pcap captures.

    Args:
        path: Path to the ``.pcap`` file.
        config: Sensor model and return mode.

    Example::

        reader = VelodynePcapReader("drive.pcap", VelodyneConfig.from_options("vlp-16", "dual"))
        for frame in reader:
            strongest, last = frame.strongest, frame.last
    """

    def __init__(self, path: str | os.PathLike, config: VelodyneConfig) -> None:
        self._path = Path(path)
        if not self._path.is_file():
            raise PcdIOError(f"Capture file not found: {self._path}")
        self._config = config
        self._elevation = config.elevation
        self._cos_elevation = np.cos(self._elevation)
        self._sin_elevation = np.sin(self._elevation)
        self._azimuth_offset = config.azimuth_offset

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> VelodyneConfig:
        return self._config

    def __iter__(self) -> Iterator[Frame]:
        return self.iter_frames()

    def iter_frames(self) -> Iterator[Frame]:
        """Yield frames in capture order."""
        streams = self._config.return_mode.streams
        pending: Dict[str, List[np.ndarray]] = {s: [] for s in streams}
        index = 0
        prev_azimuth: Optional[float] = None

        for payload in self._iter_payloads():
            for azimuth, firing in self._decode_packet(payload):
                if prev_azimuth is not None and azimuth < prev_azimuth and pending[streams[0]]:
                    yield Frame(index, {s: np.concatenate(pending[s]) for s in streams})
                    index += 1
                    pending = {s: [] for s in streams}
                prev_azimuth = azimuth
                for s in streams:
                    pending[s].append(firing[s])

        if pending[streams[0]]:
            yield Frame(index, {s: np.concatenate(pending[s]) for s in streams})

    def count_frames(self) -> int:
        """Decode the whole capture and return its number of frames."""
        return sum(1 for _ in self.iter_frames())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _iter_payloads(self) -> Iterator[bytes]:
        try:
            fh = open(self._path, "rb")
        except OSError as err:
            raise PcdIOError(f"Cannot open capture '{self._path}': {err}") from err
        with fh:
            try:
                pcap = dpkt.pcap.Reader(fh)
            except (ValueError, dpkt.dpkt.Error) as err:
                raise PcdIOError(f"'{self._path}' is not a pcap file: {err}") from err

            skipped = 0
            for _ts, buf in pcap:
                payload = _udp_payload(buf)
                if payload is None or len(payload) != PACKET_SIZE or payload[:2] != BLOCK_FLAG:
                    skipped += 1
                    continue
                yield payload
            if skipped:
                logger.debug("%s: skipped %d non-data packets", self._path, skipped)

    def _decode_packet(self, payload: bytes) -> Iterator[Tuple[float, Dict[str, np.ndarray]]]:
        """Yield ``(azimuth_centidegrees, {stream: records})`` per firing."""
        mode = self._config.return_mode
        mode_byte = payload[1204]
        packet_mode = _RETURN_MODE_BYTES.get(mode_byte)
        if packet_mode is not None and packet_mode is not mode:
            raise CaptureDecodeError(
                f"{self._path}: capture was recorded in '{packet_mode}' return mode, "
                f"but '{mode}' was requested."
            )

        blocks = np.frombuffer(payload, dtype=_BLOCK_DTYPE, count=BLOCKS_PER_PACKET)
        (timestamp_us,) = struct.unpack_from("<I", payload, 1200)

        if mode is ReturnMode.DUAL:
            columns = [
                (int(blocks[2 * k]["azimuth"]), {"last": blocks[2 * k], "strongest": blocks[2 * k + 1]})
                for k in range(BLOCKS_PER_PACKET // 2)
            ]
        else:
            columns = [(int(b["azimuth"]), {mode.value: b}) for b in blocks]

        lasers = self._config.lasers
        firings_per_block = CHANNELS_PER_BLOCK // lasers
        gap = 0
        for col, (azimuth, block_by_stream) in enumerate(columns):
            if col + 1 < len(columns):
                gap = (columns[col + 1][0] - azimuth) % _FULL_TURN
            for f in range(firings_per_block):
                firing_azimuth = (azimuth + gap * f / firings_per_block) % _FULL_TURN
                firing_offset_us = (col * firings_per_block + f) * _FIRING_PERIOD_US
                firing = {
                    stream: self._firing_records(
                        block["channels"][f * lasers:(f + 1) * lasers],
                        firing_azimuth,
                        timestamp_us,
                        firing_offset_us,
                    )
                    for stream, block in block_by_stream.items()
                }
                yield firing_azimuth, firing

    def _firing_records(
        self,
        channels: np.ndarray,
        azimuth_cdeg: float,
        timestamp_us: int,
        firing_offset_us: float,
    ) -> np.ndarray:
        lasers = len(channels)
        laser_id = np.arange(lasers, dtype=np.uint32)
        distance = channels["distance"].astype(np.float64) * self._config.distance_resolution
        alpha = np.radians(azimuth_cdeg / 100.0 + self._azimuth_offset) % (2 * math.pi)

        if lasers == 32:
            laser_offset_us = (laser_id // 2) * _LASER_PERIOD_US
        else:
            laser_offset_us = laser_id * _LASER_PERIOD_US

        out = empty_records(lasers)
        out["x"] = distance * self._cos_elevation * np.sin(alpha)
        out["y"] = distance * self._cos_elevation * np.cos(alpha)
        out["z"] = distance * self._sin_elevation
        out["intensity"] = channels["intensity"]
        out["distance"] = distance
        out["azimuthal_angle"] = alpha
        out["vertical_angle"] = self._elevation
        out["laser_id"] = laser_id
        out["timestamp_ns"] = timestamp_us * 1000 + np.round((firing_offset_us + laser_offset_us) * 1000).astype(np.uint64)
        return out


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def count_frames(path: str | os.PathLike, config: VelodyneConfig) -> int:
    """Count the frames of a capture (one full decoding pass)."""
    return VelodynePcapReader(path, config).count_frames()


def _udp_payload(buf: bytes) -> Optional[bytes]:
    """Extract the UDP payload of an Ethernet/IPv4 frame, or None."""
    try:
        eth = dpkt.ethernet.Ethernet(buf)
    except (dpkt.dpkt.NeedData, dpkt.dpkt.UnpackError):
        return None
    ip = eth.data
    if not isinstance(ip, dpkt.ip.IP) or ip.p != dpkt.ip.IP_PROTO_UDP:
        return None
    udp = ip.data
    if not isinstance(udp, dpkt.udp.UDP):
        return None
    return bytes(udp.data)
