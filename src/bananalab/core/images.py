"""Image helpers: data URL parsing, reference compression and result saving.

Reference images arrive from the browser as ``data:image/...;base64,...``
URLs.  Before they are forwarded to the model they are decoded with Pillow,
re-oriented according to their EXIF data, stripped of all metadata (EXIF
carries camera serials and GPS positions the user never meant to upload) and
downscaled / re-encoded to the requested quality preset.
"""

from __future__ import annotations

import base64
import binascii
import io
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from PIL import Image, ImageOps, UnidentifiedImageError

from bananalab.core.errors import InvalidImageError, PayloadTooLargeError
from bananalab.core.quality import QualityPreset

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"
MIN_JPEG_QUALITY = 0.3

_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


@dataclass(frozen=True)
class ImageData:
    """A base64-encoded image.

    Attributes:
        base64: Pure base64 payload without the data URL prefix.
        mime_type: MIME type of the image (e.g. ``"image/jpeg"``).
    """

    base64: str
    mime_type: str

    @property
    def preview_url(self) -> str:
        """Full data URL, suitable for an ``<img src>``."""
        return f"data:{self.mime_type};base64,{self.base64}"

    @property
    def size_kb(self) -> float:
        return size_kb(self.base64)

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.base64)


def size_kb(b64: str) -> float:
    """Decoded size in kilobytes of a base64 payload."""
    return len(b64) * 3 / 4 / 1024


def parse_data_url(value: str) -> ImageData:
    """Split a data URL into its MIME type and base64 payload.

    Bare base64 strings (no ``data:`` prefix) are accepted and assumed to be
    JPEG.

    Raises:
        InvalidImageError: The value is not a well-formed base64 image.
    """
    if not isinstance(value, str) or not value:
        raise InvalidImageError("Image must be a non-empty data URL")

    mime_type = DEFAULT_MIME_TYPE
    payload = value
    if value.startswith("data:"):
        header, sep, payload = value.partition(",")
        if not sep or ";base64" not in header:
            raise InvalidImageError("Image data URL must be base64 encoded")
        mime_type = header[len("data:") :].split(";")[0] or DEFAULT_MIME_TYPE

    if not mime_type.startswith("image/"):
        raise InvalidImageError(f"Unsupported content type: {mime_type}")

    try:
        base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidImageError("Image data is not valid base64") from None

    return ImageData(base64=payload, mime_type=mime_type)


def _open(image: ImageData) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(image.to_bytes()))
        img.load()
    except Image.DecompressionBombError as exc:
        raise PayloadTooLargeError(f"Reference image has too many pixels: {exc}") from exc
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImageError(f"Could not decode image: {exc}") from exc
    return img


def compress_for_quality(image: ImageData, quality: QualityPreset) -> ImageData:
    """Re-encode a reference image for the given quality preset.

    The image is rotated upright, converted to RGB, shrunk so its long edge
    is at most ``quality.max_size`` and saved as JPEG without metadata.  The
    JPEG quality steps down by 0.1 (never below 0.3) until the output fits
    ``quality.max_file_size_kb``.

    Args:
        image: Parsed reference image.
        quality: Target quality preset.

    Returns:
        The compressed JPEG image.

    Raises:
        InvalidImageError: The payload cannot be decoded as an image.
        PayloadTooLargeError: The image exceeds Pillow's decompression bomb
            pixel limit.
    """
    img = ImageOps.exif_transpose(_open(image)).convert("RGB")
    img.thumbnail((quality.max_size, quality.max_size), Image.LANCZOS)

    jpeg_quality = quality.jpeg_quality
    while True:
        buffer = io.BytesIO()
        img.save(buffer, format="JPEG", quality=round(jpeg_quality * 100), optimize=True)
        encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
        if size_kb(encoded) <= quality.max_file_size_kb or jpeg_quality - 0.1 < MIN_JPEG_QUALITY:
            break
        jpeg_quality -= 0.1

    result = ImageData(base64=encoded, mime_type="image/jpeg")
    logger.debug(
        f"Compressed reference image {image.size_kb:.0f}KB -> {result.size_kb:.0f}KB "
        f"({img.width}x{img.height}, q={jpeg_quality:.2f})"
    )
    return result


def save_result(data: bytes, mime_type: str, outputs_dir: Path) -> str:
    """Verify generated image bytes and write them to *outputs_dir*.

    Returns:
        The generated file name (relative to *outputs_dir*).

    Raises:
        InvalidImageError: The bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InvalidImageError(f"Model returned undecodable image data: {exc}") from exc

    extension = _EXTENSIONS.get(mime_type, ".png")
    filename = f"{uuid.uuid4()}{extension}"
    (outputs_dir / filename).write_bytes(data)
    return filename
