"""
Photo processing for vCard imports.

Provides utilities for:
- Decoding photos embedded in vCard files (binary or data: URIs)
- Image validation, EXIF orientation and conversion to JPEG
- Size optimization before storing photos in the address book
"""

import base64
import binascii
import io
import logging
import re

from PIL import Image, ImageOps

# Photo processing configuration
MAX_PHOTO_SIZE = 1024 * 1024  # 1MB per stored photo
MAX_PHOTO_DIMENSION = 1024  # pixels
JPEG_QUALITY = 85
MIN_JPEG_QUALITY = 20
JPEG_QUALITY_STEP = 5

# Modes a JPEG can hold without conversion
JPEG_MODES = ("RGB", "L")

EXIF_ORIENTATION = 0x0112

DATA_URI_PATTERN = re.compile(r"^data:[^;,]*(;[^,]*)?,", re.IGNORECASE)

logger = logging.getLogger(__name__)


class PhotoError(Exception):
    """Raised when a photo cannot be decoded or processed."""

    pass


def decode_photo_value(value: object) -> bytes:
    """
    Turn the value of a vCard PHOTO property into raw image bytes.

    vCard 3.0 carries base64 data that the vCard reader already decoded into
    bytes; vCard 4.0 uses data: URIs. Remote photo URLs are not fetched.

    Raises:
        PhotoError: If the value is neither binary data nor a data: URI
    """
    if isinstance(value, bytes):
        return value

    if isinstance(value, str):
        match = DATA_URI_PATTERN.match(value.strip())
        if match is None:
            raise PhotoError("Photo is not embedded in the vCard")
        payload = value.strip()[match.end():]
        try:
            return base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError) as e:
            raise PhotoError(f"Invalid base64 photo data: {e}") from e

    raise PhotoError(f"Unsupported photo value: {type(value).__name__}")


def process_photo(
    photo_data: bytes,
    max_size: int = MAX_PHOTO_SIZE,
    max_dimension: int = MAX_PHOTO_DIMENSION,
) -> bytes:
    """
    Validate photo data and normalize it to a bounded JPEG.

    Camera orientation is applied, transparency is flattened onto white and
    the image is scaled down to max_dimension. JPEGs already within both
    limits are stored without re-encoding.

    Raises:
        PhotoError: If photo is invalid or cannot be made small enough
    """
    if not photo_data:
        raise PhotoError("Photo data cannot be empty")

    try:
        image = Image.open(io.BytesIO(photo_data))
        image.load()
    except Image.UnidentifiedImageError as e:
        raise PhotoError("Invalid or unsupported image format") from e
    except (OSError, ValueError) as e:
        raise PhotoError(f"Failed to read photo: {e}") from e

    if _is_storable_jpeg(image, photo_data, max_size, max_dimension):
        logger.debug(f"Keeping {image.size[0]}x{image.size[1]} JPEG photo as is")
        return photo_data

    try:
        image = _flatten(ImageOps.exif_transpose(image))
        if max(image.size) > max_dimension:
            image.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
        output_data = _compress(image, max_size)
    except (OSError, ValueError) as e:
        raise PhotoError(f"Failed to process photo: {e}") from e

    logger.debug(
        f"Normalized photo to {image.size[0]}x{image.size[1]} JPEG: "
        f"{len(photo_data)} -> {len(output_data)} bytes"
    )
    return output_data


def _is_storable_jpeg(
    image: Image.Image, photo_data: bytes, max_size: int, max_dimension: int
) -> bool:
    if image.format != "JPEG" or image.mode not in JPEG_MODES:
        return False
    if len(photo_data) > max_size or max(image.size) > max_dimension:
        return False
    # Rotated camera photos need their pixels turned
    return image.getexif().get(EXIF_ORIENTATION, 1) == 1


def _flatten(image: Image.Image) -> Image.Image:
    if image.mode in JPEG_MODES:
        return image
    if image.mode == "P" and "transparency" in image.info:
        image = image.convert("RGBA")
    if image.mode in ("RGBA", "LA"):
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image.convert("RGBA"), mask=image.getchannel("A"))
        return background
    return image.convert("RGB")


def _compress(image: Image.Image, max_size: int) -> bytes:
    for quality in range(JPEG_QUALITY, MIN_JPEG_QUALITY - 1, -JPEG_QUALITY_STEP):
        output = io.BytesIO()
        image.save(output, format="JPEG", quality=quality, optimize=True)
        if output.tell() <= max_size:
            return output.getvalue()
    raise PhotoError(
        f"Unable to reduce photo size below {max_size} bytes "
        f"(at quality {MIN_JPEG_QUALITY}: {output.tell()} bytes)"
    )
