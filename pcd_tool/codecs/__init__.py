"""
pcd_tool.codecs

Readers and writers for raw binary dumps, PCD files and Velodyne captures.
"""

from pcd_tool.codecs.raw_bin import RawBinReader, RawBinWriter, load_raw_bin, save_raw_bin
from pcd_tool.codecs.pcd import PcdReader, PcdWriter
from pcd_tool.codecs.velodyne_pcap import (
    Frame,
    ReturnMode,
    VelodyneConfig,
    VelodyneModel,
    VelodynePcapReader,
    count_frames,
)

__all__ = [
    "RawBinReader",
    "RawBinWriter",
    "load_raw_bin",
    "save_raw_bin",
    "PcdReader",
    "PcdWriter",
    "Frame",
    "ReturnMode",
    "VelodyneConfig",
    "VelodyneModel",
    "VelodynePcapReader",
    "count_frames",
]
