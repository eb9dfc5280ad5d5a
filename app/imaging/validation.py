"""Upload validation.

Checks run in order of cost: presence, emptiness, declared type, size,
then the file signature. The declared MIME type alone is never trusted:
a "photo.jpg" that starts with ``<?php`` is rejected here, before any
decoder touches it.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional, Union

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE_BYTES = 10 * 1024 * 1024

DEFAULT_ALLOWED_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
)

# Leading signatures of the raster formats we accept
IMAGE_MAGIC_BYTES = {
    "JPEG": [b"\xFF\xD8\xFF"],
    "PNG": [b"\x89PNG\r\n\x1a\n"],
    "WebP": [b"RIFF"],
}

MIME_TO_FORMAT = {
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/png": "PNG",
    "image/webp": "WebP",
}

EXTENSION_TO_MIME = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}


class ImageValidationError(Exception):
    """Raised when an image cannot be accepted for upload."""


@dataclass(frozen=True)
class ImageAsset:
    """An image held in memory between selection and upload.

    Attributes:
        data: Raw file bytes.
        content_type: Declared MIME type.
        filename: Original file name, if known.
    """

    data: bytes
    content_type: str
    filename: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(
        cls,
        path: Union[str, Path],
        content_type: Optional[str] = None,
    ) -> "ImageAsset":
        """Load an asset from disk, guessing the type from the extension."""
        path = Path(path)
        if content_type is None:
            content_type = EXTENSION_TO_MIME.get(
                path.suffix.lower(), "application/octet-stream"
            )
        return cls(data=path.read_bytes(), content_type=content_type, filename=path.name)


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.valid


def detect_format(data: bytes) -> Optional[str]:
    """Identify the raster format from the file signature.

    Returns:
        ``"JPEG"``, ``"PNG"``, ``"WebP"`` or None.
    """
    for format_name, signatures in IMAGE_MAGIC_BYTES.items():
        for signature in signatures:
            if data.startswith(signature):
                # RIFF is shared with WAV/AVI; WebP says so at offset 8
                if format_name == "WebP" and data[8:12] != b"WEBP":
                    continue
                return format_name
    return None


def validate_image(
    asset: Optional[ImageAsset],
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
    allowed_types: Iterable[str] = DEFAULT_ALLOWED_TYPES,
) -> ValidationResult:
    """Decide whether an asset may be previewed and uploaded.

    Args:
        asset: The selected image, or None.
        max_size_bytes: Largest accepted file.
        allowed_types: Accepted MIME types.

    Returns:
        ValidationResult; ``error`` describes the first failed check.
    """
    if asset is None:
        return ValidationResult(False, "No file selected")

    if asset.size == 0:
        return ValidationResult(False, "File is empty")

    content_type = (asset.content_type or "").lower()
    allowed = {mime.lower() for mime in allowed_types}
    if content_type not in allowed:
        return ValidationResult(
            False,
            f"Unsupported file type: {asset.content_type or 'unknown'}. "
            f"Allowed types: {', '.join(sorted(allowed))}",
        )

    if asset.size > max_size_bytes:
        return ValidationResult(
            False,
            f"File too large: {asset.size / (1024 * 1024):.1f}MB "
            f"(max: {max_size_bytes / (1024 * 1024):.1f}MB)",
        )

    detected = detect_format(asset.data)
    if detected is None:
        logger.warning(f"Rejected {asset.filename or 'upload'}: unknown file signature")
        return ValidationResult(False, "File content is not a recognised image")

    expected = MIME_TO_FORMAT.get(content_type)
    if expected is not None and expected != detected:
        logger.warning(
            f"Rejected {asset.filename or 'upload'}: declared {content_type}, "
            f"content is {detected}"
        )
        return ValidationResult(
            False,
            f"File content ({detected}) does not match declared type {content_type}",
        )

    return ValidationResult(True)


def ensure_valid_image(
    asset: Optional[ImageAsset],
    max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
    allowed_types: Iterable[str] = DEFAULT_ALLOWED_TYPES,
) -> ImageAsset:
    """Like ``validate_image`` but raises ``ImageValidationError``."""
    result = validate_image(asset, max_size_bytes, allowed_types)
    if not result.valid:
        raise ImageValidationError(result.error)
    return asset
