import base64
from io import BytesIO

import pytest
from PIL import Image

from image_resizer import InvalidImage, MAX_DIMENSION, normalize_photo, to_data_url


def image_bytes(size=(2000, 1000), mode="RGB", fmt="PNG"):
    color = (0, 128, 0, 128) if mode == "RGBA" else (0, 128, 0)
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, fmt)
    return buffer.getvalue()


def test_large_photo_is_shrunk_to_jpeg():
    output = normalize_photo(image_bytes())

    with Image.open(BytesIO(output)) as img:
        assert img.format == "JPEG"
        assert img.size == (MAX_DIMENSION, MAX_DIMENSION // 2)


def test_transparent_png_is_flattened():
    output = normalize_photo(image_bytes(size=(100, 100), mode="RGBA"))

    with Image.open(BytesIO(output)) as img:
        assert img.mode == "RGB"
        assert img.size == (100, 100)


def test_rejects_empty_and_garbage_uploads():
    with pytest.raises(InvalidImage):
        normalize_photo(b"")
    with pytest.raises(InvalidImage):
        normalize_photo(b"definitely not an image")


def test_data_url_round_trip():
    jpeg = normalize_photo(image_bytes(size=(10, 10)))
    url = to_data_url(jpeg)

    assert url.startswith("data:image/jpeg;base64,")
    assert base64.b64decode(url.split(",", 1)[1]) == jpeg
