import io

from PIL import Image, UnidentifiedImageError

from receipt_ledger.core.config import settings
from receipt_ledger.core.exceptions import InvalidInputError

ALLOWED_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
}


def validate_image(image_bytes: bytes, max_bytes: int = settings.MAX_IMAGE_BYTES) -> str:
    """
    Check an uploaded receipt photo and return its MIME type.

    Raises:
        InvalidInputError: empty, too large, or not a PNG/JPEG image.
    """
    if not image_bytes:
        raise InvalidInputError("Image data is empty.")
    if len(image_bytes) > max_bytes:
        raise InvalidInputError(
            f"Image size exceeds {max_bytes // (1024 * 1024)}MB."
        )

    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            image_format = (image.format or "").upper()
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidInputError(f"Invalid image format: {exc}") from exc

    if image_format not in ALLOWED_FORMATS:
        raise InvalidInputError(f"Unsupported format: {image_format or 'unknown'}")
    return ALLOWED_FORMATS[image_format]
