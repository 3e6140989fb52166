import base64
from io import BytesIO
from PIL import Image, ImageOps, UnidentifiedImageError

MAX_DIMENSION = 1280
JPEG_QUALITY = 80
MAX_UPLOAD_BYTES = 10 * 1024 * 1024


class InvalidImage(Exception):
    pass


def normalize_photo(image_bytes: bytes) -> bytes:
    """
    Re-encodes an uploaded photo as a JPEG no larger than MAX_DIMENSION on
    either side, honouring EXIF orientation and flattening transparency.
    """
    if not image_bytes:
        raise InvalidImage("Empty upload")
    if len(image_bytes) > MAX_UPLOAD_BYTES:
        raise InvalidImage("Photo is larger than 10MB")

    try:
        with Image.open(BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode in ('RGBA', 'LA'):
                background = Image.new('RGB', img.size, (255, 255, 255))
                background.paste(img, mask=img.getchannel('A'))
                img = background

            img.thumbnail((MAX_DIMENSION, MAX_DIMENSION))
            output_buffer = BytesIO()
            img.convert('RGB').save(output_buffer, "JPEG", quality=JPEG_QUALITY)
    except (UnidentifiedImageError, OSError) as e:
        raise InvalidImage(f"Could not read image: {e}") from e

    return output_buffer.getvalue()


def to_data_url(jpeg_bytes: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode('ascii')


def photo_reference_from_upload(file_storage) -> str:
    """Turns a werkzeug FileStorage upload into a data URL photo reference."""
    return to_data_url(normalize_photo(file_storage.read()))
