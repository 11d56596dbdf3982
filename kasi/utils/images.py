from __future__ import annotations

import io
import uuid

from PIL import Image, UnidentifiedImageError

MAX_IMAGE_BYTES = 5 * 1024 * 1024

_FORMAT_EXT = {
    "JPEG": ("jpg", "image/jpeg"),
    "PNG": ("png", "image/png"),
    "WEBP": ("webp", "image/webp"),
    "GIF": ("gif", "image/gif"),
}


class InvalidImageError(ValueError):
    pass


def inspect_image(data: bytes, *, max_bytes: int = MAX_IMAGE_BYTES) -> tuple[str, str]:
    """Return ``(extension, content_type)`` for an uploaded image.

    Raises InvalidImageError for empty, oversized or undecodable payloads.
    """
    if not data:
        raise InvalidImageError("Image file is required")
    if len(data) > max_bytes:
        raise InvalidImageError(f"Image must be less than {max_bytes // (1024 * 1024)}MB")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            fmt = (img.format or "").upper()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise InvalidImageError("File is not a valid image") from exc
    if fmt not in _FORMAT_EXT:
        raise InvalidImageError("Invalid image type. Use jpg, png, webp or gif.")
    return _FORMAT_EXT[fmt]


def read_upload(file_storage) -> bytes:
    if file_storage is None or not getattr(file_storage, "filename", ""):
        return b""
    return file_storage.read()


def object_name(prefix: str, ext: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}.{ext}"
