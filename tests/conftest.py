"""Shared pytest fixtures: image bytes, settings and an RSA test key."""

import io
import struct

import pytest
from PIL import Image
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from faceswap_api.core.config import Settings


def make_jpeg(width: int, height: int, orientation: int = None) -> bytes:
    """Baseline JPEG from Pillow, optionally with an EXIF orientation tag."""
    image = Image.new("RGB", (width, height), (200, 120, 80))
    buffer = io.BytesIO()
    if orientation is None:
        image.save(buffer, format="JPEG")
    else:
        exif = Image.Exif()
        exif[0x0112] = orientation
        image.save(buffer, format="JPEG", exif=exif.tobytes())
    return buffer.getvalue()


def make_png(width: int, height: int) -> bytes:
    image = Image.new("RGB", (width, height), (10, 20, 30))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def make_big_endian_exif_jpeg(width: int, height: int, orientation: int) -> bytes:
    """Hand-built JPEG header: SOI, APP1 with a Motorola-order TIFF block, SOF0, EOI."""
    tiff = b"MM" + struct.pack(">HI", 42, 8)
    tiff += struct.pack(">H", 1)                                   # one IFD0 entry
    tiff += struct.pack(">HHIHH", 0x0112, 3, 1, orientation, 0)    # SHORT, left-justified
    tiff += struct.pack(">I", 0)                                   # no next IFD
    app1_payload = b"Exif\x00\x00" + tiff
    app1 = b"\xff\xe1" + struct.pack(">H", len(app1_payload) + 2) + app1_payload

    sof0_payload = struct.pack(">BHHB", 8, height, width, 3) + b"\x01\x11\x00\x02\x11\x01\x03\x11\x01"
    sof0 = b"\xff\xc0" + struct.pack(">H", len(sof0_payload) + 2) + sof0_payload

    return b"\xff\xd8" + app1 + sof0 + b"\xff\xd9"


def make_webp_vp8(width_field: int, height_field: int) -> bytes:
    """RIFF/WEBP with a lossy VP8 chunk; dimension fields sit at bytes 26-29."""
    body = bytearray(20)
    body[3:6] = b"\x9d\x01\x2a"                      # VP8 frame start code
    struct.pack_into("<HH", body, 6, width_field, height_field)
    chunk = b"VP8 " + struct.pack("<I", len(body)) + bytes(body)
    return b"RIFF" + struct.pack("<I", 4 + len(chunk)) + b"WEBP" + chunk


def make_webp_vp8l(width_field: int, height_field: int) -> bytes:
    """RIFF/WEBP with a lossless VP8L chunk; packed 14-bit fields at byte 21."""
    bits = (width_field & 0x3FFF) | ((height_field & 0x3FFF) << 14)
    body = b"\x2f" + struct.pack("<I", bits) + bytes(7)
    chunk = b"VP8L" + struct.pack("<I", len(body)) + body
    return b"RIFF" + struct.pack("<I", 4 + len(chunk)) + b"WEBP" + chunk


def make_webp_vp8x(width_field: int, height_field: int) -> bytes:
    """RIFF/WEBP with an extended VP8X chunk; 24-bit fields at bytes 24 and 27."""
    body = bytes(4) + width_field.to_bytes(3, "little") + height_field.to_bytes(3, "little")
    chunk = b"VP8X" + struct.pack("<I", len(body)) + body
    return b"RIFF" + struct.pack("<I", 4 + len(chunk)) + b"WEBP" + chunk


@pytest.fixture(scope="session")
def rsa_private_key_pem() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def test_settings(rsa_private_key_pem) -> Settings:
    """Settings with every upstream configured and no .env influence."""
    return Settings(
        _env_file=None,
        RAPIDAPI_KEY="rapid-test-key",
        GOOGLE_VERTEX_PROJECT_ID="test-project",
        GOOGLE_VERTEX_LOCATION="us-central1",
        GOOGLE_SERVICE_ACCOUNT_EMAIL="svc@test-project.iam.gserviceaccount.com",
        GOOGLE_SERVICE_ACCOUNT_PRIVATE_KEY=rsa_private_key_pem,
        GOOGLE_VISION_API_KEY="vision-test-key",
        WAVESPEED_API_KEY="wavespeed-test-key",
        SAFETY_STRICTNESS="lenient",
    )
