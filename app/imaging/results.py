"""Result types produced by the metadata extraction pipeline.

A strategy returns exactly one of three outcomes:

- ``Found``: a complete GPS fix (plus whatever camera metadata was read)
- ``NotFound``: the image parsed but carries no usable GPS block
- ``Failed``: the strategy could not interpret the buffer at all

The orchestrator folds those into a single ``ExtractionResult``.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from app.imaging.coordinates import CoordinateError, validate_coordinates


@dataclass(frozen=True)
class ExtractedLocation:
    """A complete GPS fix in signed decimal degrees.

    Attributes:
        latitude: -90..90, negative south of the equator.
        longitude: -180..180, negative west of Greenwich.
        altitude: Metres above sea level (negative below), if recorded.
        captured_at: When the photo was taken, if recorded.
    """

    latitude: float
    longitude: float
    altitude: Optional[float] = None
    captured_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        lat, lon = validate_coordinates(self.latitude, self.longitude)
        object.__setattr__(self, "latitude", lat)
        object.__setattr__(self, "longitude", lon)
        if self.altitude is not None and not math.isfinite(self.altitude):
            raise CoordinateError(f"Altitude must be finite, got {self.altitude}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "timestamp": self.captured_at.isoformat() if self.captured_at else None,
        }


@dataclass(frozen=True)
class ImageMetadata:
    """Camera metadata read alongside (or instead of) the GPS block."""

    make: Optional[str] = None
    model: Optional[str] = None
    software: Optional[str] = None
    taken_at: Optional[datetime] = None

    @property
    def field_count(self) -> int:
        """Number of populated fields, used to rank partial results."""
        return sum(
            value is not None
            for value in (self.make, self.model, self.software, self.taken_at)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "make": self.make,
            "model": self.model,
            "software": self.software,
            "dateTime": self.taken_at.isoformat() if self.taken_at else None,
        }


@dataclass(frozen=True)
class Found:
    location: ExtractedLocation
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    strategy: str = ""


@dataclass(frozen=True)
class NotFound:
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    strategy: str = ""


@dataclass(frozen=True)
class Failed:
    reason: str
    strategy: str = ""


ExtractionOutcome = Union[Found, NotFound, Failed]


@dataclass(frozen=True)
class ExtractionResult:
    """Final answer of the extraction orchestrator.

    ``has_gps`` is True exactly when ``gps`` is set.
    """

    exif: ImageMetadata = field(default_factory=ImageMetadata)
    gps: Optional[ExtractedLocation] = None
    strategy: Optional[str] = None

    @property
    def has_gps(self) -> bool:
        return self.gps is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the camelCase shape the API returns."""
        return {
            "exif": self.exif.to_dict(),
            "gps": self.gps.to_dict() if self.gps else None,
            "hasGps": self.has_gps,
        }
