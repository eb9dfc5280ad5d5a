"""Local file storage for uploaded tree photos.

Layout::

    {UPLOAD_DIR}/{year}/{month}/tree-{uuid}.jpg

served publicly as ``{UPLOAD_URL_PREFIX}/{year}/{month}/tree-{uuid}.jpg``.
Every stored file is a re-encoded JPEG fitted inside the configured
bounding box, so nothing the client sent is written verbatim.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from app.imaging.preview import render_jpeg

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a file cannot be written or removed."""


class DiskSpaceError(StorageError):
    """Raised when the disk is full."""


@dataclass(frozen=True)
class StoredImage:
    filename: str
    url: str
    path: Path
    width: int
    height: int
    size_bytes: int


class StorageManager:
    """Stores processed uploads and resolves their public URLs.

    Attributes:
        base_path: Root directory of stored images.
        url_prefix: Public URL prefix the directory is served under.
        max_width: Stored images are fitted inside this width.
        max_height: Stored images are fitted inside this height.
        quality: JPEG quality of stored images.
    """

    def __init__(
        self,
        base_path: Union[str, Path],
        url_prefix: str = "/uploads",
        max_width: int = 800,
        max_height: int = 600,
        quality: int = 80,
    ) -> None:
        self.base_path = Path(base_path)
        self.url_prefix = "/" + url_prefix.strip("/")
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory at {self.base_path}: {e}")

    def organize_file_path(self, extension: str = "jpg") -> Path:
        """Return a fresh, unique path under ``{year}/{month}``."""
        now = datetime.now()
        directory = self.base_path / str(now.year) / f"{now.month:02d}"
        directory.mkdir(parents=True, exist_ok=True)
        return directory / f"tree-{uuid.uuid4().hex}.{extension.lstrip('.')}"

    def save_upload(self, data: bytes) -> StoredImage:
        """Resize, re-encode and store an uploaded image.

        Raises:
            PreviewError: If the bytes are not a decodable image.
            StorageError: If the file cannot be written.
        """
        jpeg, width, height = render_jpeg(data, self.max_width, self.max_height, self.quality)
        file_path = self.organize_file_path("jpg")

        try:
            file_path.write_bytes(jpeg)
        except OSError as e:
            if "No space left" in str(e):
                raise DiskSpaceError(f"Disk full, cannot save: {file_path}")
            raise StorageError(f"Failed to save image: {e}")

        logger.info(f"Saved image: {file_path} ({len(jpeg)} bytes, {width}x{height})")
        return StoredImage(
            filename=file_path.name,
            url=self.path_to_url(file_path),
            path=file_path,
            width=width,
            height=height,
            size_bytes=len(jpeg),
        )

    def path_to_url(self, file_path: Path) -> str:
        relative = file_path.relative_to(self.base_path)
        return f"{self.url_prefix}/{relative.as_posix()}"

    def url_to_path(self, url: str) -> Optional[Path]:
        """Map a public URL back to a file inside the storage root.

        Returns:
            The path, or None if the URL is outside this storage.
        """
        if not url or not url.startswith(self.url_prefix + "/"):
            return None
        relative = url[len(self.url_prefix) + 1:]
        candidate = (self.base_path / relative).resolve()
        root = self.base_path.resolve()
        if candidate == root or root not in candidate.parents:
            return None
        return candidate

    def exists(self, url: str) -> bool:
        """True when ``url`` names a file this storage holds."""
        path = self.url_to_path(url)
        return path is not None and path.is_file()
