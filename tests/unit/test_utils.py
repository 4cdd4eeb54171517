#!/usr/bin/env python3
"""
Tests for image helpers used to attach pictures to requests.
"""

import base64
from io import BytesIO

from PIL import Image

from ollabranch.utils import encode_image_base64, encode_image_file


def _open(encoded: str) -> Image.Image:
    return Image.open(BytesIO(base64.b64decode(encoded)))


def test_encode_image_base64_is_png():
    image = Image.new("RGB", (4, 3), (255, 0, 0))
    restored = _open(encode_image_base64(image))
    assert restored.format == "PNG"
    assert restored.size == (4, 3)
    assert restored.convert("RGB").getpixel((0, 0)) == (255, 0, 0)


def test_encode_image_file_converts_to_png(tmp_path):
    path = tmp_path / "pic.jpg"
    Image.new("RGB", (8, 8), (0, 0, 255)).save(path, format="JPEG")
    restored = _open(encode_image_file(path))
    assert restored.format == "PNG"
    assert restored.mode == "RGB"
    assert restored.size == (8, 8)
