"""Preview generation for selected images.

Previews are small JPEG data URIs that a UI can display before the
upload happens. ``PreviewRegistry`` keeps track of the live ones so the
owner can release them when a selection is replaced or cancelled.
"""

import base64
import io
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from app.imaging.validation import ImageAsset

logger = logging.getLogger(__name__)

DEFAULT_PREVIEW_SIZE = 400
DEFAULT_PREVIEW_QUALITY = 80


class PreviewError(Exception):
    """Raised when an image cannot be decoded into a preview."""


def scaled_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Fit ``width x height`` inside a bounding box, keeping the aspect ratio.

    Images are never enlarged, and neither side drops below one pixel.
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")
    ratio = min(max_width / width, max_height / height, 1.0)
    return max(1, round(width * ratio)), max(1, round(height * ratio))


def render_jpeg(
    data: bytes,
    max_width: int,
    max_height: int,
    quality: int,
) -> Tuple[bytes, int, int]:
    """Decode, orient, shrink and re-encode an image as JPEG.

    Shared by previews and by server-side storage of uploads.

    Returns:
        ``(jpeg_bytes, width, height)``.

    Raises:
        PreviewError: If Pillow cannot decode the input, or its pixel
            count exceeds Pillow's decompression bomb limit.
    """
    try:
        with Image.open(io.BytesIO(data)) as source:
            image = ImageOps.exif_transpose(source)
            image.load()
    except Image.DecompressionBombError as e:
        raise PreviewError(f"Image dimensions too large: {e}") from e
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as e:
        raise PreviewError(f"Cannot decode image: {e}") from e

    size = scaled_size(image.width, image.height, max_width, max_height)
    if size != image.size:
        image = image.resize(size, Image.Resampling.LANCZOS)

    if image.mode in ("RGBA", "LA") or (image.mode == "P" and "transparency" in image.info):
        # JPEG has no alpha; flatten onto white
        rgba = image.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.split()[3])
        image = background
    elif image.mode != "RGB":
        image = image.convert("RGB")

    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue(), image.width, image.height


def generate_preview(
    asset: ImageAsset,
    max_width: int = DEFAULT_PREVIEW_SIZE,
    max_height: int = DEFAULT_PREVIEW_SIZE,
    quality: int = DEFAULT_PREVIEW_QUALITY,
) -> str:
    """Return a ``data:image/jpeg;base64,...`` preview of the asset."""
    jpeg, _, _ = render_jpeg(asset.data, max_width, max_height, quality)
    return "data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii")


@dataclass(frozen=True)
class PreviewHandle:
    key: str
    data_uri: str
    width: int
    height: int


class PreviewRegistry:
    """Registry of live previews.

    A handle stays registered until ``release`` or ``release_all`` is
    called; ``len(registry)`` is the number still held.
    """

    def __init__(self) -> None:
        self._handles: Dict[str, PreviewHandle] = {}

    def create(
        self,
        asset: ImageAsset,
        max_width: int = DEFAULT_PREVIEW_SIZE,
        max_height: int = DEFAULT_PREVIEW_SIZE,
        quality: int = DEFAULT_PREVIEW_QUALITY,
    ) -> PreviewHandle:
        jpeg, width, height = render_jpeg(asset.data, max_width, max_height, quality)
        handle = PreviewHandle(
            key=uuid.uuid4().hex,
            data_uri="data:image/jpeg;base64," + base64.b64encode(jpeg).decode("ascii"),
            width=width,
            height=height,
        )
        self._handles[handle.key] = handle
        return handle

    def release(self, key: str) -> bool:
        """Drop a preview. Returns False if it was already released."""
        return self._handles.pop(key, None) is not None

    def release_all(self) -> int:
        count = len(self._handles)
        self._handles.clear()
        if count:
            logger.debug(f"Released {count} previews")
        return count

    def __len__(self) -> int:
        return len(self._handles)

    def __contains__(self, key: object) -> bool:
        return key in self._handles
