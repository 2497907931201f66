"""
Binary Image Inspector
Reads width, height and EXIF orientation straight from JPEG/PNG/WebP headers.

Only header bytes are needed, so callers can fetch a partial byte range
instead of the whole image. Every parser returns None for input it does not
recognize or cannot read; nothing here raises on malformed data.
"""

import struct
from typing import Optional

from faceswap_api.schemas.image import ImageMetrics

MIN_HEADER_BYTES = 24
MAX_DIMENSION = 2 ** 31

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
EXIF_HEADER = b"Exif\x00\x00"
ORIENTATION_TAG = 0x0112

# Start-Of-Frame markers carrying the frame dimensions (C4, C8, CC are DHT/JPG/DAC)
SOF_MARKERS = frozenset(
    [0xC0, 0xC1, 0xC2, 0xC3, 0xC5, 0xC6, 0xC7, 0xC9, 0xCA, 0xCB, 0xCD, 0xCE, 0xCF]
)
# Markers without a length field
STANDALONE_MARKERS = frozenset([0x01] + list(range(0xD0, 0xD9)))

ROTATED_ORIENTATIONS = frozenset([5, 6, 7, 8])


def detect_format(data: bytes) -> Optional[str]:
    """Identify the container by its magic bytes."""
    if len(data) >= 2 and data[0] == 0xFF and data[1] == 0xD8:
        return "jpeg"
    if data[:8] == PNG_SIGNATURE:
        return "png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def guess_mime_type(data: bytes, default: str = "image/jpeg") -> str:
    fmt = detect_format(data)
    return f"image/{fmt}" if fmt else default


def inspect_image(data: bytes) -> Optional[ImageMetrics]:
    """
    Extract image dimensions and orientation from raw bytes.

    Args:
        data: Image bytes, or a prefix of them starting at offset 0

    Returns:
        ImageMetrics, or None when the format is unrecognized or corrupt
    """
    if not data or len(data) < MIN_HEADER_BYTES:
        return None

    fmt = detect_format(data)
    if fmt == "jpeg":
        return parse_jpeg(data)
    if fmt == "png":
        return parse_png(data)
    if fmt == "webp":
        return parse_webp(data)
    return None


def _metrics(raw_width: int, raw_height: int, orientation: int, fmt: str) -> Optional[ImageMetrics]:
    if not (0 < raw_width < MAX_DIMENSION and 0 < raw_height < MAX_DIMENSION):
        return None

    rotated = orientation in ROTATED_ORIENTATIONS
    width, height = (raw_height, raw_width) if rotated else (raw_width, raw_height)
    return ImageMetrics(
        width=width,
        height=height,
        raw_width=raw_width,
        raw_height=raw_height,
        orientation=orientation,
        rotated=rotated,
        format=fmt,
    )


def parse_jpeg(data: bytes) -> Optional[ImageMetrics]:
    """Walk JPEG marker segments until a Start-Of-Frame is found."""
    size = len(data)
    if size < 4 or data[0] != 0xFF or data[1] != 0xD8:
        return None

    orientation = 1
    offset = 2

    while offset + 4 <= size:
        if data[offset] != 0xFF:
            return None

        marker = data[offset + 1]

        # Fill bytes before a marker
        if marker == 0xFF:
            offset += 1
            continue

        if marker in STANDALONE_MARKERS:
            offset += 2
            continue

        # Entropy-coded data or end of image without a frame header
        if marker in (0xDA, 0xD9):
            return None

        (segment_length,) = struct.unpack_from(">H", data, offset + 2)
        if segment_length < 2:
            return None

        segment_start = offset + 4
        segment_end = offset + 2 + segment_length

        if marker in SOF_MARKERS:
            # FF Cx | length(2) | precision(1) | height(2) | width(2)
            if offset + 9 > size:
                return None
            raw_height, raw_width = struct.unpack_from(">HH", data, offset + 5)
            return _metrics(raw_width, raw_height, orientation, "jpeg")

        if marker == 0xE1 and data[segment_start:segment_start + 6] == EXIF_HEADER:
            orientation = _read_exif_orientation(
                data, segment_start + 6, min(segment_end, size)
            )

        if segment_end > size:
            return None
        offset = segment_end

    return None


def _read_exif_orientation(data: bytes, start: int, end: int) -> int:
    """Read tag 0x0112 from the IFD0 of a TIFF block; 1 when absent or invalid."""
    if end - start < 8:
        return 1

    byte_order = data[start:start + 2]
    if byte_order == b"II":
        endian = "<"
    elif byte_order == b"MM":
        endian = ">"
    else:
        return 1

    (magic,) = struct.unpack_from(endian + "H", data, start + 2)
    if magic != 42:
        return 1

    (ifd_offset,) = struct.unpack_from(endian + "I", data, start + 4)
    ifd = start + ifd_offset
    if ifd_offset < 8 or ifd + 2 > end:
        return 1

    (entry_count,) = struct.unpack_from(endian + "H", data, ifd)
    for index in range(entry_count):
        entry = ifd + 2 + index * 12
        if entry + 12 > end:
            break

        tag, value_type = struct.unpack_from(endian + "HH", data, entry)
        if tag != ORIENTATION_TAG:
            continue

        if value_type == 4:  # LONG
            (value,) = struct.unpack_from(endian + "I", data, entry + 8)
        else:  # SHORT, left-justified in the value field
            (value,) = struct.unpack_from(endian + "H", data, entry + 8)
        return value if 1 <= value <= 8 else 1

    return 1


def parse_png(data: bytes) -> Optional[ImageMetrics]:
    """Read width/height from the IHDR chunk that always follows the signature."""
    if len(data) < MIN_HEADER_BYTES or data[:8] != PNG_SIGNATURE:
        return None
    if data[12:16] != b"IHDR":
        return None

    raw_width, raw_height = struct.unpack_from(">II", data, 16)
    return _metrics(raw_width, raw_height, 1, "png")


def parse_webp(data: bytes) -> Optional[ImageMetrics]:
    """Dispatch on the first chunk FourCC (VP8, VP8L or VP8X)."""
    size = len(data)
    if size < MIN_HEADER_BYTES or data[:4] != b"RIFF" or data[8:12] != b"WEBP":
        return None

    chunk = data[12:16]

    if chunk == b"VP8 ":
        if size < 30:
            return None
        width_field, height_field = struct.unpack_from("<HH", data, 26)
        raw_width = (width_field & 0x3FFF) + 1
        raw_height = (height_field & 0x3FFF) + 1

    elif chunk == b"VP8L":
        if size < 25:
            return None
        (bits,) = struct.unpack_from("<I", data, 21)
        raw_width = (bits & 0x3FFF) + 1
        raw_height = ((bits >> 14) & 0x3FFF) + 1

    elif chunk == b"VP8X":
        if size < 30:
            return None
        raw_width = int.from_bytes(data[24:27], "little") + 1
        raw_height = int.from_bytes(data[27:30], "little") + 1

    else:
        return None

    return _metrics(raw_width, raw_height, 1, "webp")


__all__ = [
    "detect_format",
    "guess_mime_type",
    "inspect_image",
    "parse_jpeg",
    "parse_png",
    "parse_webp",
]
