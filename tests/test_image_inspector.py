"""Tests for header-only image inspection."""

import struct

import pytest

from faceswap_api.services.image_inspector import (
    detect_format,
    guess_mime_type,
    inspect_image,
    parse_jpeg,
)
from tests.conftest import (
    make_big_endian_exif_jpeg,
    make_jpeg,
    make_png,
    make_webp_vp8,
    make_webp_vp8l,
    make_webp_vp8x,
)


class TestJpeg:
    """JPEG marker walking and EXIF orientation."""

    def test_plain_jpeg(self) -> None:
        metrics = inspect_image(make_jpeg(1024, 768))

        assert metrics is not None
        assert metrics.format == "jpeg"
        assert (metrics.width, metrics.height) == (1024, 768)
        assert metrics.orientation == 1
        assert metrics.rotated is False

    @pytest.mark.parametrize("orientation", [5, 6, 7, 8])
    def test_rotated_orientation_swaps_dimensions(self, orientation: int) -> None:
        metrics = inspect_image(make_jpeg(640, 480, orientation=orientation))

        assert metrics.orientation == orientation
        assert metrics.rotated is True
        assert (metrics.raw_width, metrics.raw_height) == (640, 480)
        assert (metrics.width, metrics.height) == (480, 640)

    @pytest.mark.parametrize("orientation", [1, 2, 3, 4])
    def test_unrotated_orientation_keeps_dimensions(self, orientation: int) -> None:
        metrics = inspect_image(make_jpeg(640, 480, orientation=orientation))

        assert metrics.orientation == orientation
        assert metrics.rotated is False
        assert (metrics.width, metrics.height) == (640, 480)

    def test_big_endian_exif(self) -> None:
        metrics = inspect_image(make_big_endian_exif_jpeg(300, 200, orientation=6))

        assert metrics.orientation == 6
        assert (metrics.raw_width, metrics.raw_height) == (300, 200)
        assert (metrics.width, metrics.height) == (200, 300)

    def test_out_of_range_orientation_defaults_to_one(self) -> None:
        metrics = inspect_image(make_big_endian_exif_jpeg(300, 200, orientation=9))

        assert metrics.orientation == 1
        assert metrics.rotated is False

    def test_scan_without_frame_header(self) -> None:
        # SOI, APP0 (JFIF-ish), SOS - no SOF before the entropy data
        data = b"\xff\xd8" + b"\xff\xe0" + struct.pack(">H", 16) + bytes(14) + b"\xff\xda" + bytes(10)
        assert parse_jpeg(data) is None

    def test_malformed_segment_length(self) -> None:
        data = b"\xff\xd8" + b"\xff\xe0" + struct.pack(">H", 1) + bytes(30)
        assert inspect_image(data) is None

    def test_truncated_segment(self) -> None:
        data = b"\xff\xd8" + b"\xff\xe0" + struct.pack(">H", 5000) + bytes(30)
        assert inspect_image(data) is None

    def test_zero_dimension_is_rejected(self) -> None:
        assert inspect_image(make_big_endian_exif_jpeg(0, 200, orientation=1)) is None


class TestPng:

    def test_png_dimensions(self) -> None:
        metrics = inspect_image(make_png(320, 240))

        assert metrics.format == "png"
        assert metrics.orientation == 1
        assert (metrics.width, metrics.height) == (metrics.raw_width, metrics.raw_height) == (320, 240)

    def test_header_prefix_is_enough(self) -> None:
        metrics = inspect_image(make_png(77, 55)[:24])
        assert (metrics.width, metrics.height) == (77, 55)

    def test_missing_ihdr(self) -> None:
        data = bytearray(make_png(10, 10))
        data[12:16] = b"XXXX"
        assert inspect_image(bytes(data)) is None


class TestWebp:
    """Each WebP chunk type decodes its fields with a +1 bias."""

    def test_vp8(self) -> None:
        metrics = inspect_image(make_webp_vp8(799, 599))
        assert (metrics.width, metrics.height) == (800, 600)
        assert metrics.orientation == 1

    def test_vp8_ignores_scale_bits(self) -> None:
        metrics = inspect_image(make_webp_vp8(0xC000 | 99, 0x4000 | 49))
        assert (metrics.width, metrics.height) == (100, 50)

    def test_vp8l(self) -> None:
        metrics = inspect_image(make_webp_vp8l(1023, 767))
        assert (metrics.width, metrics.height) == (1024, 768)

    def test_vp8x(self) -> None:
        metrics = inspect_image(make_webp_vp8x(4095, 2159))
        assert (metrics.width, metrics.height) == (4096, 2160)

    def test_unknown_chunk(self) -> None:
        data = bytearray(make_webp_vp8x(10, 10))
        data[12:16] = b"ALPH"
        assert inspect_image(bytes(data)) is None


class TestDetection:

    @pytest.mark.parametrize("data", [b"", b"\xff\xd8", b"GIF89a" + bytes(40), bytes(100)])
    def test_unrecognized_or_short_input(self, data: bytes) -> None:
        assert inspect_image(data) is None

    def test_detect_format(self) -> None:
        assert detect_format(make_jpeg(8, 8)) == "jpeg"
        assert detect_format(make_png(8, 8)) == "png"
        assert detect_format(make_webp_vp8l(7, 7)) == "webp"
        assert detect_format(b"hello") is None

    def test_guess_mime_type(self) -> None:
        assert guess_mime_type(make_png(8, 8)) == "image/png"
        assert guess_mime_type(b"unknown") == "image/jpeg"
