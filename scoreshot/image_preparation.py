from __future__ import annotations

import io
import logging
import os
from dataclasses import dataclass

from PIL import Image, ImageOps, UnidentifiedImageError

from .score_models import PreparedImage, RawUpload

logger = logging.getLogger(__name__)

ALLOWED_MEDIA_TYPES = {"image/png", "image/jpeg", "image/jpg"}
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg"}

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"

MEDIA_TYPE_FORMATS = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/jpg": "jpeg",
}
EXTENSION_FORMATS = {
    ".png": "png",
    ".jpg": "jpeg",
    ".jpeg": "jpeg",
}
FORMAT_MEDIA_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
}

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
# The vision service caps the base64-encoded image at 5 MB.
DEFAULT_MAX_BASE64_BYTES = 5 * 1024 * 1024
DEFAULT_RAW_SAFETY_MARGIN_BYTES = 100 * 1024

RESIZE_ATTEMPTS = 8
RESIZE_MAX_DIMENSION = 2048
RESIZE_START_QUALITY = 85
RESIZE_MIN_QUALITY = 50
RESIZE_QUALITY_STEP = 10
RESIZE_SCALE_STEP = 0.75
LAST_RESORT_BOX = (1280, 720)
LAST_RESORT_QUALITY = 70


class ImageValidationError(RuntimeError):
    pass


def raw_byte_ceiling(max_base64_bytes: int, margin_bytes: int) -> int:
    return (max_base64_bytes * 3) // 4 - margin_bytes


@dataclass(frozen=True)
class ImageLimits:
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    max_base64_bytes: int = DEFAULT_MAX_BASE64_BYTES
    raw_safety_margin_bytes: int = DEFAULT_RAW_SAFETY_MARGIN_BYTES

    @property
    def max_raw_bytes(self) -> int:
        return raw_byte_ceiling(self.max_base64_bytes, self.raw_safety_margin_bytes)

    @classmethod
    def from_env(cls) -> "ImageLimits":
        return cls(
            max_upload_bytes=_parse_positive_int(
                os.getenv("SCORESHOT_MAX_UPLOAD_BYTES"),
                fallback=DEFAULT_MAX_UPLOAD_BYTES,
            ),
        )


def validate_image_upload(upload: RawUpload, limits: ImageLimits | None = None) -> None:
    limits = limits or ImageLimits()

    media_type = (upload.media_type or "").strip().lower()
    if media_type not in ALLOWED_MEDIA_TYPES:
        raise ImageValidationError("Invalid file type. Only PNG and JPEG images are allowed.")

    extension = _file_extension(upload.filename)
    if extension not in ALLOWED_EXTENSIONS:
        raise ImageValidationError("Invalid file extension.")

    if upload.size > limits.max_upload_bytes:
        limit_mb = limits.max_upload_bytes / 1024 / 1024
        raise ImageValidationError(f"File size exceeds {limit_mb:g}MB limit.")


def detect_image_format(content: bytes) -> str | None:
    if content[:8] == PNG_SIGNATURE:
        return "png"
    if content[:3] == JPEG_SIGNATURE:
        return "jpeg"
    return None


def validate_image_signature(content: bytes, *, media_type: str | None = None, filename: str | None = None) -> str:
    """Check magic bytes and return the detected format ("png" or "jpeg").

    The declared media type and extension, when given, must name the same
    format the bytes actually carry.
    """
    detected = detect_image_format(content)
    if detected is None:
        raise ImageValidationError("File header does not match image format.")

    if media_type is not None:
        declared = MEDIA_TYPE_FORMATS.get(media_type.strip().lower())
        if declared != detected:
            raise ImageValidationError("File header does not match the declared image type.")

    if filename is not None:
        declared = EXTENSION_FORMATS.get(_file_extension(filename))
        if declared != detected:
            raise ImageValidationError("File header does not match the file extension.")

    return detected


def prepare_image(upload: RawUpload, limits: ImageLimits | None = None) -> PreparedImage:
    limits = limits or ImageLimits()
    validate_image_upload(upload, limits)
    detected = validate_image_signature(
        upload.content,
        media_type=upload.media_type,
        filename=upload.filename,
    )

    if upload.size <= limits.max_raw_bytes:
        return PreparedImage(content=upload.content, media_type=FORMAT_MEDIA_TYPES[detected])

    return resize_to_fit_limit(upload.content, max_raw_bytes=limits.max_raw_bytes)


def resize_to_fit_limit(content: bytes, *, max_raw_bytes: int) -> PreparedImage:
    image = _load_rgb_image(content)
    width, height = image.size
    quality = RESIZE_START_QUALITY

    for attempt in range(RESIZE_ATTEMPTS):
        box = (min(width, RESIZE_MAX_DIMENSION), min(height, RESIZE_MAX_DIMENSION))
        encoded, size = _encode_jpeg(image, box=box, quality=quality)
        if len(encoded) <= max_raw_bytes:
            logger.info(
                "Resized image from %s to %s bytes (%sx%s, q%s, attempt %s)",
                len(content),
                len(encoded),
                size[0],
                size[1],
                quality,
                attempt + 1,
            )
            return PreparedImage(
                content=encoded,
                media_type="image/jpeg",
                resized=True,
                width=size[0],
                height=size[1],
            )
        width = max(1, int(width * RESIZE_SCALE_STEP))
        height = max(1, int(height * RESIZE_SCALE_STEP))
        quality = max(RESIZE_MIN_QUALITY, quality - RESIZE_QUALITY_STEP)

    encoded, size = _encode_jpeg(image, box=LAST_RESORT_BOX, quality=LAST_RESORT_QUALITY)
    logger.warning(
        "Image still above %s bytes after %s attempts; aggressive resize to %s bytes",
        max_raw_bytes,
        RESIZE_ATTEMPTS,
        len(encoded),
    )
    return PreparedImage(
        content=encoded,
        media_type="image/jpeg",
        resized=True,
        width=size[0],
        height=size[1],
    )


def _load_rgb_image(content: bytes) -> Image.Image:
    try:
        with Image.open(io.BytesIO(content)) as source:
            source.load()
            image = ImageOps.exif_transpose(source) or source
            if image.mode != "RGB":
                image = image.convert("RGB")
            else:
                image = image.copy()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise ImageValidationError(f"Image could not be decoded: {exc}") from exc
    return image


def _encode_jpeg(image: Image.Image, *, box: tuple[int, int], quality: int) -> tuple[bytes, tuple[int, int]]:
    resized = image.copy()
    # thumbnail() keeps the aspect ratio and never enlarges.
    resized.thumbnail(box, Image.Resampling.LANCZOS)
    buffer = io.BytesIO()
    resized.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue(), resized.size


def _file_extension(filename: str | None) -> str:
    name = (filename or "").strip().lower()
    dot = name.rfind(".")
    if dot < 0:
        return ""
    return name[dot:]


def _parse_positive_int(raw_value: str | None, *, fallback: int) -> int:
    if raw_value is None:
        return fallback
    try:
        parsed = int(raw_value)
    except ValueError:
        return fallback
    if parsed <= 0:
        return fallback
    return parsed
