"""Tests for format tokens and suffix guessing."""

import pytest

from pcd_tool.errors import FormatAmbiguousError, UnknownFormatError
from pcd_tool.formats import FileFormat, guess_file_format, resolve_format


class TestGuessFileFormat:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("scan.pcd", FileFormat.LIBPCL_PCD),
            ("/data/run1/scan.newslab.pcd", FileFormat.NEWSLAB_PCD),
            ("drive.pcap", FileFormat.VELODYNE_PCAP),
            ("a.b.pcd", FileFormat.LIBPCL_PCD),
        ],
    )
    def test_known_suffixes(self, path, expected):
        assert guess_file_format(path) is expected

    @pytest.mark.parametrize("path", ["points.bin", "frames", "scan.PCD", "scan.pcd.gz"])
    def test_unknown_suffix(self, path):
        assert guess_file_format(path) is None


class TestResolveFormat:
    def test_explicit_token_wins(self):
        assert resolve_format("scan.pcd", "pcd.newslab") is FileFormat.NEWSLAB_PCD

    def test_explicit_enum(self):
        assert resolve_format("points.bin", FileFormat.RAW_BIN) is FileFormat.RAW_BIN

    def test_guessed(self):
        assert resolve_format("scan.newslab.pcd") is FileFormat.NEWSLAB_PCD

    def test_ambiguous(self):
        with pytest.raises(FormatAmbiguousError, match="points.bin"):
            resolve_format("points.bin")

    def test_unknown_token(self):
        with pytest.raises(UnknownFormatError, match="pcd.ascii"):
            resolve_format("scan.pcd", "pcd.ascii")


class TestFileFormat:
    def test_tokens(self):
        assert [f.token for f in FileFormat] == ["pcd.libpcl", "pcd.newslab", "pcap.velodyne", "raw.bin"]

    def test_extensions(self):
        assert FileFormat.RAW_BIN.extension == ".bin"
        assert FileFormat.NEWSLAB_PCD.extension == ".newslab.pcd"

    def test_str(self):
        assert str(FileFormat.VELODYNE_PCAP) == "pcap.velodyne"
