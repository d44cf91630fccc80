"""Tests for directory (batch) conversion."""

import logging
from pathlib import Path

import pytest

from pcd_tool.batch import BatchResult, convert_directory, matches_format, output_name
from pcd_tool.codecs.pcd import PcdReader
from pcd_tool.codecs.raw_bin import save_raw_bin
from pcd_tool.convert import ConversionOptions, convert
from pcd_tool.errors import DirectoryConflictError, PcdIOError
from pcd_tool.formats import FileFormat


@pytest.fixture
def raw_dir(tmp_path, cloud):
    """Five raw binary files, the third one truncated."""
    src = tmp_path / "bins"
    src.mkdir()
    for i in range(5):
        save_raw_bin(src / f"{i:06d}.bin", cloud)
    with open(src / "000002.bin", "ab") as fh:
        fh.write(b"\x00\x01\x02")
    return src


class TestBatchIsolation:
    def test_one_malformed_file(self, raw_dir, tmp_path, caplog):
        out = tmp_path / "pcds"
        options = ConversionOptions(from_format="raw.bin", to_format="pcd.libpcl", workers=3)
        with caplog.at_level(logging.INFO, logger="pcd_tool"):
            report = convert(raw_dir, out, options)

        result = report.batch
        assert len(result.succeeded) == 4
        assert len(result.failed) == 1
        assert result.failed[0][0] == raw_dir / "000002.bin"
        assert "truncated" in result.failed[0][1]
        assert not result.ok
        assert sorted(p.name for p in out.iterdir()) == [
            "000000.pcd",
            "000001.pcd",
            "000003.pcd",
            "000004.pcd",
        ]
        for path in result.succeeded:
            assert PcdReader(path).points == 5
        assert "4 succeeded, 1 failed" in caplog.text
        assert any(r.levelno == logging.ERROR and "000002.bin" in r.getMessage() for r in caplog.records)

    def test_non_regular_entries_skipped(self, raw_dir, tmp_path, caplog):
        (raw_dir / "nested.bin").mkdir()
        calls = []

        def routine(src, dst):
            calls.append(src.name)

        with caplog.at_level(logging.WARNING, logger="pcd_tool"):
            result = convert_directory(
                raw_dir, tmp_path / "out", routine, FileFormat.RAW_BIN, FileFormat.RAW_BIN, workers=1
            )
        assert result.skipped == [raw_dir / "nested.bin"]
        assert "nested.bin" not in calls
        assert len(calls) == 5
        assert "Skipping" in caplog.text


class TestConvertDirectory:
    def test_output_directory_must_not_exist(self, raw_dir, tmp_path):
        out = tmp_path / "out"
        out.mkdir()
        with pytest.raises(DirectoryConflictError):
            convert_directory(raw_dir, out, lambda s, d: None, FileFormat.RAW_BIN, FileFormat.RAW_BIN)

    def test_missing_input_directory(self, tmp_path):
        with pytest.raises(PcdIOError):
            convert_directory(
                tmp_path / "missing", tmp_path / "out", lambda s, d: None, FileFormat.RAW_BIN, FileFormat.RAW_BIN
            )

    def test_failures_are_collected(self, raw_dir, tmp_path):
        def routine(src, dst):
            if int(src.stem) % 2:
                raise RuntimeError(f"cannot convert {src.name}")
            dst.write_bytes(b"")

        result = convert_directory(raw_dir, tmp_path / "out", routine, FileFormat.RAW_BIN, FileFormat.LIBPCL_PCD)
        assert result.summary() == "3 succeeded, 2 failed"
        assert [src.name for src, _ in result.failed] == ["000001.bin", "000003.bin"]
        assert result.succeeded == [tmp_path / "out" / f"00000{i}.pcd" for i in (0, 2, 4)]


class TestNaming:
    def test_output_name(self):
        assert output_name(Path("a.pcd"), FileFormat.LIBPCL_PCD, FileFormat.RAW_BIN) == "a.bin"
        assert output_name(Path("a.bin"), FileFormat.RAW_BIN, FileFormat.LIBPCL_PCD) == "a.pcd"

    def test_matches_format(self):
        assert matches_format(Path("x.bin"), FileFormat.RAW_BIN)
        assert not matches_format(Path("x.pcd"), FileFormat.RAW_BIN)
        assert matches_format(Path("x.pcd"), FileFormat.LIBPCL_PCD)
        assert not matches_format(Path("x.newslab.pcd"), FileFormat.LIBPCL_PCD)

    def test_empty_result(self):
        assert BatchResult().summary() == "0 succeeded, 0 failed"
        assert BatchResult().ok
