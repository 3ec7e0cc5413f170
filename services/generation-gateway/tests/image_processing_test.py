import base64
import io

import pytest
from PIL import Image

from core.exceptions import ValidationException
from domain.models import ProcessImageOptions
from services.image_processing import process_image_bytes


def _image_bytes(width: int, height: int, mode: str = "RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (width, height)).save(buf, "PNG")
    return buf.getvalue()


def _decode(url: str) -> Image.Image:
    return Image.open(io.BytesIO(base64.b64decode(url.split(",", 1)[1])))


def test_contain_keeps_the_aspect_ratio_inside_the_box():
    processed = process_image_bytes(_image_bytes(200, 100), ProcessImageOptions(width=50, height=50, fit="contain"))

    assert (processed.width, processed.height) == (50, 25)


def test_cover_fills_the_box():
    processed = process_image_bytes(_image_bytes(200, 100), ProcessImageOptions(width=50, height=50, fit="cover"))

    assert (processed.width, processed.height) == (50, 50)


def test_height_only_scales_width():
    processed = process_image_bytes(_image_bytes(200, 100), ProcessImageOptions(height=20, fit="fill"))

    assert (processed.width, processed.height) == (40, 20)


def test_jpeg_flattens_alpha():
    processed = process_image_bytes(_image_bytes(10, 10, "RGBA"), ProcessImageOptions(format="jpeg"))

    assert processed.url.startswith("data:image/jpeg;base64,")
    assert _decode(processed.url).mode == "RGB"


def test_webp_without_resize_keeps_dimensions():
    processed = process_image_bytes(_image_bytes(30, 20), ProcessImageOptions(format="webp"))

    assert _decode(processed.url).format == "WEBP"
    assert (processed.width, processed.height) == (30, 20)
    assert processed.size == len(base64.b64decode(processed.url.split(",", 1)[1]))


def test_unreadable_bytes_are_rejected():
    with pytest.raises(ValidationException):
        process_image_bytes(b"not an image", ProcessImageOptions())
