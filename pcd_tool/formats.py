"""
formats.py

The four storage formats and how a path is mapped to one of them.

==============  =================  ========================
Format          Token              Recognised suffix
==============  =================  ========================
LIBPCL_PCD      ``pcd.libpcl``     ``*.pcd``
NEWSLAB_PCD     ``pcd.newslab``    ``*.newslab.pcd``
VELODYNE_PCAP   ``pcap.velodyne``  ``*.pcap``
RAW_BIN         ``raw.bin``        (none, always explicit)
==============  =================  ========================
"""

from __future__ import annotations

import enum
import os
from pathlib import Path
from typing import Optional, Union

from pcd_tool.errors import FormatAmbiguousError, UnknownFormatError


class FileFormat(enum.Enum):
    LIBPCL_PCD = "pcd.libpcl"
    NEWSLAB_PCD = "pcd.newslab"
    VELODYNE_PCAP = "pcap.velodyne"
    RAW_BIN = "raw.bin"

    @property
    def token(self) -> str:
        return self.value

    @property
    def extension(self) -> str:
        """File extension used when output names are generated."""
        return _EXTENSIONS[self]

    @classmethod
    def from_token(cls, token: str) -> "FileFormat":
        try:
            return cls(token)
        except ValueError:
            valid = ", ".join(f.value for f in cls)
            raise UnknownFormatError(f"Unknown format '{token}'; expected one of: {valid}.") from None

    def __str__(self) -> str:
        return self.value


_EXTENSIONS = {
    FileFormat.LIBPCL_PCD: ".pcd",
    FileFormat.NEWSLAB_PCD: ".newslab.pcd",
    FileFormat.VELODYNE_PCAP: ".pcap",
    FileFormat.RAW_BIN: ".bin",
}


def guess_file_format(path: str | os.PathLike) -> Optional[FileFormat]:
    """Infer a format from the file name, or return None if the suffix is unknown."""
    name = Path(path).name
    if name.endswith(".newslab.pcd"):
        return FileFormat.NEWSLAB_PCD
    if name.endswith(".pcd"):
        return FileFormat.LIBPCL_PCD
    if name.endswith(".pcap"):
        return FileFormat.VELODYNE_PCAP
    return None


def resolve_format(
    path: str | os.PathLike,
    explicit: Union[FileFormat, str, None] = None,
) -> FileFormat:
    """Return the explicit format if given, else the one guessed from *path*.

    Raises:
        UnknownFormatError: If *explicit* is a string that is not a known token.
        FormatAmbiguousError: If nothing is given and the suffix is unknown.
    """
    if isinstance(explicit, FileFormat):
        return explicit
    if explicit is not None:
        return FileFormat.from_token(explicit)

    guessed = guess_file_format(path)
    if guessed is None:
        raise FormatAmbiguousError(
            f"Cannot guess the format of '{path}'; specify it explicitly "
            f"(one of: {', '.join(f.value for f in FileFormat)})."
        )
    return guessed
