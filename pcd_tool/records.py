"""
records.py

In-flight point representation and the PCD field schema.

Points travel through the pipeline as numpy structured arrays.  The canonical
record (:data:`POINT_RECORD_DTYPE`) is a superset of what every format needs;
each codec fills only the fields its format carries:

=================  =====  ===============================================
Field              Type   Populated by
=================  =====  ===============================================
x, y, z            f8     all formats
intensity          f4     raw binary, sensor captures, newslab, some PCDs
distance           f8     newslab, sensor captures
azimuthal_angle    f8     newslab, sensor captures (radians)
vertical_angle     f8     newslab (radians)
laser_id           u4     newslab, sensor captures
timestamp_ns       u8     newslab, sensor captures
=================  =====  ===============================================
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Tuple

import numpy as np

from pcd_tool.errors import MissingFieldError

POINT_RECORD_DTYPE = np.dtype(
    [
        ("x", np.float64),
        ("y", np.float64),
        ("z", np.float64),
        ("intensity", np.float32),
        ("distance", np.float64),
        ("azimuthal_angle", np.float64),
        ("vertical_angle", np.float64),
        ("laser_id", np.uint32),
        ("timestamp_ns", np.uint64),
    ]
)

_XYZ = ("x", "y", "z")

# PCD numeric kinds: (TYPE letter, SIZE in bytes) -> numpy dtype
_PCD_KINDS: dict[Tuple[str, int], np.dtype] = {
    ("I", 1): np.dtype(np.int8),
    ("I", 2): np.dtype(np.int16),
    ("I", 4): np.dtype(np.int32),
    ("I", 8): np.dtype(np.int64),
    ("U", 1): np.dtype(np.uint8),
    ("U", 2): np.dtype(np.uint16),
    ("U", 4): np.dtype(np.uint32),
    ("U", 8): np.dtype(np.uint64),
    ("F", 4): np.dtype(np.float32),
    ("F", 8): np.dtype(np.float64),
}


def empty_records(n: int) -> np.ndarray:
    """Return *n* zero-initialised point records."""
    return np.zeros(n, dtype=POINT_RECORD_DTYPE)


def xyz_of(records: np.ndarray) -> np.ndarray:
    """Stack the ``x``, ``y``, ``z`` fields of *records* into an ``(N, 3)`` array."""
    return np.column_stack([records["x"], records["y"], records["z"]])


# ---------------------------------------------------------------------------
# Field schema
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldDef:
    """One PCD field: name, numeric kind and repetition count.

    Attributes:
        name: Field name as written in the ``FIELDS`` header line.
        type: ``"I"`` (signed), ``"U"`` (unsigned) or ``"F"`` (float).
        size: Size in bytes of one element (1, 2, 4 or 8).
        count: Number of elements per point.
    """

    name: str
    type: str
    size: int
    count: int = 1

    def __post_init__(self) -> None:
        if (self.type, self.size) not in _PCD_KINDS:
            raise ValueError(f"Unsupported PCD field kind {self.type}{self.size} for '{self.name}'.")
        if self.count < 1:
            raise ValueError(f"Field '{self.name}' must have count >= 1, got {self.count}.")

    @property
    def kind(self) -> str:
        """Short kind label, e.g. ``"F4"``."""
        return f"{self.type}{self.size}"

    @property
    def dtype(self) -> np.dtype:
        return _PCD_KINDS[(self.type, self.size)]

    @classmethod
    def from_dtype(cls, name: str, dtype: np.dtype | type, count: int = 1) -> "FieldDef":
        dt = np.dtype(dtype)
        for (letter, size), candidate in _PCD_KINDS.items():
            if candidate == dt:
                return cls(name, letter, size, count)
        raise ValueError(f"No PCD kind for numpy dtype {dt} (field '{name}').")


class FieldSchema:
    """Ordered, name-unique list of :class:`FieldDef`.

    Args:
        fields: Field definitions in file order.

    Raises:
        ValueError: If two fields share a name.
    """

    def __init__(self, fields: Iterable[FieldDef]) -> None:
        self._fields: Tuple[FieldDef, ...] = tuple(fields)
        seen: set[str] = set()
        for f in self._fields:
            if f.name in seen:
                raise ValueError(f"Duplicate field name '{f.name}' in schema.")
            seen.add(f.name)

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self._fields)

    def __iter__(self) -> Iterator[FieldDef]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __contains__(self, name: object) -> bool:
        return name in self.names

    def __getitem__(self, name: str) -> FieldDef:
        for f in self._fields:
            if f.name == name:
                return f
        raise KeyError(name)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldSchema):
            return NotImplemented
        return self._fields == other._fields

    def __repr__(self) -> str:
        inner = ", ".join(f"{f.name}:{f.kind}x{f.count}" for f in self._fields)
        return f"FieldSchema({inner})"

    def require_xyz(self) -> None:
        """Check that ``x``, ``y`` and ``z`` exist with count 1.

        Raises:
            MissingFieldError: If a coordinate field is absent or repeated.
        """
        for name in _XYZ:
            if name not in self:
                raise MissingFieldError(f"Point cloud has no '{name}' field; fields are {list(self.names)}.")
            if self[name].count != 1:
                raise MissingFieldError(
                    f"Field '{name}' must have count 1 to be used as a coordinate, got {self[name].count}."
                )


NEWSLAB_SCHEMA = FieldSchema(
    [
        FieldDef("x", "F", 8),
        FieldDef("y", "F", 8),
        FieldDef("z", "F", 8),
        FieldDef("distance", "F", 8),
        FieldDef("azimuthal_angle", "F", 8),
        FieldDef("vertical_angle", "F", 8),
        FieldDef("intensity", "F", 4),
        FieldDef("laser_id", "U", 4),
        FieldDef("timestamp_ns", "U", 8),
    ]
)

LIBPCL_SCHEMA = FieldSchema(
    [
        FieldDef("x", "F", 4),
        FieldDef("y", "F", 4),
        FieldDef("z", "F", 4),
        FieldDef("intensity", "F", 4),
    ]
)
