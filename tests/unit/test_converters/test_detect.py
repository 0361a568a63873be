# SPDX-License-Identifier: LGPL-3.0-or-later
import pytest

from volimporter.converters.detect import HEADER_PEEK, ImageFormat, detect_format

from fixtures.images import make_gzip, make_iso, make_qcow2, make_tar, make_xz, pattern_bytes


@pytest.mark.unit
class TestDetectFormat:
    def test_gzip(self):
        assert detect_format(make_gzip(b"hello")[:HEADER_PEEK]) is ImageFormat.GZIP

    def test_xz(self):
        assert detect_format(make_xz(b"hello")[:HEADER_PEEK]) is ImageFormat.XZ

    def test_qcow2(self):
        assert detect_format(make_qcow2(pattern_bytes(4096))[:HEADER_PEEK]) is ImageFormat.QCOW2

    def test_tar(self):
        assert detect_format(make_tar({"disk/disk.img": b"x"})[:HEADER_PEEK]) is ImageFormat.TAR

    def test_iso(self):
        assert detect_format(make_iso()[:HEADER_PEEK]) is ImageFormat.ISO

    def test_raw_fallback(self):
        assert detect_format(pattern_bytes(HEADER_PEEK)) is ImageFormat.RAW
        assert detect_format(b"") is ImageFormat.RAW

    def test_short_header_fails_long_magics(self):
        # an ISO cut before its volume descriptor is just raw
        assert detect_format(make_iso()[:1024]) is ImageFormat.RAW

    def test_compressed_flag(self):
        assert ImageFormat.GZIP.is_compressed
        assert ImageFormat.XZ.is_compressed
        assert not ImageFormat.QCOW2.is_compressed
