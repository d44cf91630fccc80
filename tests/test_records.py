"""Tests for point records and the PCD field schema."""

import numpy as np
import pytest

from pcd_tool.errors import MissingFieldError
from pcd_tool.records import (
    LIBPCL_SCHEMA,
    NEWSLAB_SCHEMA,
    POINT_RECORD_DTYPE,
    FieldDef,
    FieldSchema,
    empty_records,
    xyz_of,
)


class TestRecords:
    def test_empty_records(self):
        records = empty_records(4)
        assert records.dtype == POINT_RECORD_DTYPE
        assert len(records) == 4
        assert np.all(records["x"] == 0.0)

    def test_xyz_of(self):
        records = empty_records(2)
        records["x"] = [1.0, 2.0]
        records["z"] = [3.0, 4.0]
        np.testing.assert_allclose(xyz_of(records), [[1.0, 0.0, 3.0], [2.0, 0.0, 4.0]])


class TestFieldDef:
    def test_kind_and_dtype(self):
        f = FieldDef("intensity", "F", 4)
        assert f.kind == "F4"
        assert f.dtype == np.float32

    def test_unsupported_kind(self):
        with pytest.raises(ValueError):
            FieldDef("x", "F", 2)

    def test_bad_count(self):
        with pytest.raises(ValueError):
            FieldDef("x", "F", 4, count=0)

    def test_from_dtype(self):
        assert FieldDef.from_dtype("ring", np.uint16) == FieldDef("ring", "U", 2)

    def test_from_dtype_unknown(self):
        with pytest.raises(ValueError):
            FieldDef.from_dtype("flag", np.bool_)


class TestFieldSchema:
    def test_duplicate_names(self):
        with pytest.raises(ValueError, match="Duplicate"):
            FieldSchema([FieldDef("x", "F", 4), FieldDef("x", "F", 8)])

    def test_lookup(self):
        assert "intensity" in LIBPCL_SCHEMA
        assert LIBPCL_SCHEMA["x"].kind == "F4"
        with pytest.raises(KeyError):
            LIBPCL_SCHEMA["distance"]

    def test_newslab_field_order(self):
        assert NEWSLAB_SCHEMA.names == (
            "x",
            "y",
            "z",
            "distance",
            "azimuthal_angle",
            "vertical_angle",
            "intensity",
            "laser_id",
            "timestamp_ns",
        )
        assert NEWSLAB_SCHEMA["x"].kind == "F8"
        assert NEWSLAB_SCHEMA["timestamp_ns"].kind == "U8"

    def test_require_xyz_missing(self):
        schema = FieldSchema([FieldDef("x", "F", 4), FieldDef("y", "F", 4)])
        with pytest.raises(MissingFieldError, match="'z'"):
            schema.require_xyz()

    def test_require_xyz_repeated(self):
        schema = FieldSchema([FieldDef("x", "F", 4, 2), FieldDef("y", "F", 4), FieldDef("z", "F", 4)])
        with pytest.raises(MissingFieldError, match="count 1"):
            schema.require_xyz()

    def test_require_xyz_ok(self):
        LIBPCL_SCHEMA.require_xyz()
        NEWSLAB_SCHEMA.require_xyz()
