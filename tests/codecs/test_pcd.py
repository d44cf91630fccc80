"""Tests for the PCD reader and writer."""

import numpy as np
import pytest
from pypcd4 import Encoding

from pcd_tool.codecs.pcd import PcdReader, PcdWriter, schema_dtype
from pcd_tool.errors import MissingFieldError, PcdIOError
from pcd_tool.records import LIBPCL_SCHEMA, NEWSLAB_SCHEMA, POINT_RECORD_DTYPE, FieldDef, FieldSchema

ASCII_PCD = """\
# .PCD v0.7 - Point Cloud Data file format
VERSION 0.7
FIELDS x y z rgb
SIZE 4 4 4 4
TYPE F F F U
COUNT 1 1 1 1
WIDTH 3
HEIGHT 1
VIEWPOINT 0 0 0 1 0 0 0
POINTS 3
DATA ascii
1.0 2.0 3.0 255
4.0 5.0 6.0 65280
-1.5 0.0 2.5 0
"""

RING_SCHEMA = FieldSchema(
    [
        FieldDef("x", "F", 4),
        FieldDef("y", "F", 4),
        FieldDef("z", "F", 4),
        FieldDef("intensity", "F", 4),
        FieldDef("ring", "U", 2),
    ]
)


class TestPcdReader:
    def test_reads_ascii(self, tmp_path):
        path = tmp_path / "rgb.pcd"
        path.write_text(ASCII_PCD)
        reader = PcdReader(path)
        assert reader.points == 3
        assert reader.schema.names == ("x", "y", "z", "rgb")
        assert reader.schema["rgb"].kind == "U4"
        assert reader.encoding == Encoding.ASCII

    def test_read_records(self, tmp_path):
        path = tmp_path / "rgb.pcd"
        path.write_text(ASCII_PCD)
        records = PcdReader(path).read_records()
        assert records.dtype == POINT_RECORD_DTYPE
        np.testing.assert_allclose(records["x"], [1.0, 4.0, -1.5])
        np.testing.assert_allclose(records["z"], [3.0, 6.0, 2.5])
        # no intensity field in the file
        np.testing.assert_array_equal(records["intensity"], 0.0)

    def test_missing_xyz(self, tmp_path):
        path = tmp_path / "noz.pcd"
        path.write_text(
            ASCII_PCD.replace("FIELDS x y z rgb", "FIELDS x y h rgb")
        )
        with pytest.raises(MissingFieldError, match="'z'"):
            PcdReader(path).read_records()

    def test_file_not_found(self, tmp_path):
        with pytest.raises(PcdIOError):
            PcdReader(tmp_path / "missing.pcd")

    def test_bad_header(self, tmp_path):
        path = tmp_path / "bad.pcd"
        path.write_text("VERSION 0.7\nFIELDS x y z\nSIZE 4 4\nDATA ascii\n")
        with pytest.raises(PcdIOError):
            PcdReader(path)


class TestPcdWriter:
    def test_roundtrip_libpcl(self, libpcl_file, cloud):
        reader = PcdReader(libpcl_file)
        assert reader.schema == LIBPCL_SCHEMA
        assert (reader.width, reader.height) == (5, 1)
        records = reader.read_records()
        np.testing.assert_allclose(records["x"], cloud["x"], rtol=1e-6)
        np.testing.assert_allclose(records["intensity"], cloud["intensity"], rtol=1e-6)

    def test_newslab_schema_keeps_float64(self, tmp_path, cloud):
        path = tmp_path / "scan.newslab.pcd"
        cloud["x"][0] = 1.0 + 1e-12
        cloud["timestamp_ns"] = 2**40
        with PcdWriter(path, NEWSLAB_SCHEMA) as writer:
            writer.push(cloud)
        reader = PcdReader(path)
        assert reader.schema == NEWSLAB_SCHEMA
        records = reader.read_records()
        assert records["x"][0] == 1.0 + 1e-12
        assert records["timestamp_ns"][0] == 2**40

    def test_layout_preserved(self, tmp_path, cloud):
        path = tmp_path / "organised.pcd"
        cloud = np.concatenate([cloud, cloud[:1]])
        viewpoint = (1.0, 2.0, 3.0, 1.0, 0.0, 0.0, 0.0)
        with PcdWriter(path, RING_SCHEMA, width=3, height=2, viewpoint=viewpoint,
                       encoding=Encoding.BINARY_COMPRESSED) as writer:
            writer.push(cloud)
        reader = PcdReader(path)
        assert reader.layout() == {
            "width": 3,
            "height": 2,
            "viewpoint": viewpoint,
            "encoding": Encoding.BINARY_COMPRESSED,
        }
        assert reader.schema == RING_SCHEMA

    def test_layout_mismatch_falls_back(self, tmp_path, cloud):
        path = tmp_path / "flat.pcd"
        with PcdWriter(path, LIBPCL_SCHEMA, width=4, height=4) as writer:
            writer.push(cloud)
        reader = PcdReader(path)
        assert (reader.width, reader.height) == (5, 1)

    def test_push_after_finish(self, tmp_path, cloud):
        writer = PcdWriter(tmp_path / "a.pcd", LIBPCL_SCHEMA)
        writer.finish()
        with pytest.raises(ValueError, match="finished"):
            writer.push(cloud)

    def test_schema_dtype(self):
        dtype = schema_dtype(RING_SCHEMA)
        assert dtype.names == RING_SCHEMA.names
        assert dtype["ring"] == np.uint16

    def test_nothing_written_on_error(self, tmp_path, cloud):
        path = tmp_path / "partial.pcd"
        with pytest.raises(RuntimeError):
            with PcdWriter(path, LIBPCL_SCHEMA) as writer:
                writer.push(cloud)
                raise RuntimeError("boom")
        assert not path.exists()
