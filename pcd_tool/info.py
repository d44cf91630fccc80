"""
info.py

Field-schema listing for PCD files (the ``info`` command).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List

from pcd_tool.codecs.pcd import PcdReader
from pcd_tool.errors import UnsupportedConversionError
from pcd_tool.records import FieldSchema

HEADER = "name\ttype\tcount"


def read_schema(path: str | os.PathLike) -> FieldSchema:
    """Return the field schema of a ``.pcd`` file.

    Raises:
        UnsupportedConversionError: If *path* does not end in ``.pcd``.
        PcdIOError: If the file cannot be read.
    """
    path = Path(path)
    if path.suffix != ".pcd":
        raise UnsupportedConversionError(f"'{path}' is not a PCD file; only .pcd files can be inspected.")
    return PcdReader(path).schema


def format_schema(schema: FieldSchema) -> List[str]:
    """Render *schema* as tab-separated lines, header first."""
    return [HEADER] + [f"{f.name}\t{f.kind}\t{f.count}" for f in schema]


def schema_lines(path: str | os.PathLike) -> List[str]:
    return format_schema(read_schema(path))
