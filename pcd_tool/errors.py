"""
errors.py

Exception hierarchy shared by every stage of the conversion pipeline.

All errors raised on purpose by :mod:`pcd_tool` derive from
:class:`PcdToolError`, so callers (the CLI, the batch runner) can catch a
single base class.  Several kinds additionally derive from the builtin they
most resemble so that generic ``except ValueError`` / ``except OSError``
handlers keep working.
"""

from __future__ import annotations


class PcdToolError(Exception):
    """Base class for all pcd_tool errors."""


class FormatAmbiguousError(PcdToolError):
    """The file format cannot be inferred from the path and none was given."""


class UnknownFormatError(PcdToolError, ValueError):
    """An explicit format token is not one of the known tokens."""


class UnsupportedConversionError(PcdToolError):
    """The (source, target) pair, or a requested option on it, is unsupported."""


class MissingRequiredOptionError(PcdToolError):
    """An option required by one of the endpoints was not supplied."""


class MissingFieldError(PcdToolError, KeyError):
    """A point cloud lacks a field the conversion needs."""

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message.
        return str(self.args[0]) if self.args else ""


class FrameRangeError(PcdToolError, ValueError):
    """A frame window is empty or exceeds the capture's frame count."""


class MalformedTransformSpecError(PcdToolError, ValueError):
    """A transform file or inline transform text cannot be parsed."""


class PcdIOError(PcdToolError, OSError):
    """Reading, writing or creating a file failed."""


class TruncatedRecordError(PcdIOError):
    """A fixed-size binary file ends in the middle of a record."""


class CaptureDecodeError(PcdIOError):
    """A sensor capture contains data that contradicts the decoder settings."""


class DirectoryConflictError(PcdToolError, FileExistsError):
    """An output directory that must be created already exists."""
