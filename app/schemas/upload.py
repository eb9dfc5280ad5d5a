"""Image upload response schemas."""

from datetime import datetime
from typing import Optional

from app.schemas.base import CamelModel


class UploadLocation(CamelModel):
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    timestamp: Optional[datetime] = None


class UploadResponse(CamelModel):
    """Returned by ``POST /upload/image``.

    ``location`` is the GPS position read from the original file, or
    None when the photo carries none.
    """

    image_url: str
    filename: str
    location: Optional[UploadLocation] = None
