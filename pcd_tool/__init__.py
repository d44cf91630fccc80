"""
pcd_tool: Point-cloud conversion between libpcl PCD, newslab PCD, raw
binary dumps and Velodyne pcap captures, with optional rigid transforms.
"""

from pcd_tool.convert import ConversionOptions, ConversionReport, CONVERSION_MATRIX, convert
from pcd_tool.formats import FileFormat, guess_file_format
from pcd_tool.frame_window import FrameBound, FrameWindow, resolve_frame_window
from pcd_tool.transform import Transform, apply_transform, load_transform
from pcd_tool.spherical import project, project_points
from pcd_tool import codecs
from pcd_tool import errors

__all__ = [
    "ConversionOptions",
    "ConversionReport",
    "CONVERSION_MATRIX",
    "convert",
    "FileFormat",
    "guess_file_format",
    "FrameBound",
    "FrameWindow",
    "resolve_frame_window",
    "Transform",
    "apply_transform",
    "load_transform",
    "project",
    "project_points",
    "codecs",
    "errors",
]
