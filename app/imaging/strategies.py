"""Metadata extraction strategies.

Two independent readers for the EXIF GPS block, plus a deterministic
mock for demos and tests:

- ``StructuredParseStrategy`` hands the whole buffer to Pillow, which
  understands JPEG, TIFF, WebP and PNG ``eXIf`` containers.
- ``SegmentScanStrategy`` walks the JPEG marker segments by hand and
  only decodes the first ``APP1``/``Exif`` payload (with piexif). It
  still works on files whose image data Pillow refuses to open.
- ``MockStrategy`` invents a fix inside the continental US, seeded by
  the image bytes so the same photo always gets the same answer.

Every strategy converts its own exceptions into ``Failed``; nothing
escapes ``extract()``.
"""

import hashlib
import io
import logging
import random
import struct
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping, Optional

import piexif
from PIL import Image

from app.imaging.coordinates import CoordinateError, dms_to_decimal, rational_to_float
from app.imaging.results import (
    ExtractedLocation,
    ExtractionOutcome,
    Failed,
    Found,
    ImageMetadata,
    NotFound,
)

logger = logging.getLogger(__name__)

# IFD pointers
EXIF_IFD_POINTER = 0x8769
GPS_IFD_POINTER = 0x8825

# IFD0 tags
TAG_MAKE = 271
TAG_MODEL = 272
TAG_SOFTWARE = 305
TAG_DATETIME = 306

# Exif IFD tags
TAG_DATETIME_ORIGINAL = 36867
TAG_DATETIME_DIGITIZED = 36868

# GPS IFD tags
GPS_LATITUDE_REF = 1
GPS_LATITUDE = 2
GPS_LONGITUDE_REF = 3
GPS_LONGITUDE = 4
GPS_ALTITUDE_REF = 5
GPS_ALTITUDE = 6
GPS_TIMESTAMP = 7
GPS_DATESTAMP = 29

EXIF_HEADER = b"Exif\x00\x00"

# JPEG markers
SOI = 0xD8
EOI = 0xD9
SOS = 0xDA
APP1 = 0xE1
# TEM and RST0-7 carry no length field
STANDALONE_MARKERS = frozenset([0x01, *range(0xD0, 0xD8)])

DATETIME_FORMATS = (
    "%Y:%m:%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
)


class ExtractionStrategy(ABC):
    """A single way of reading GPS metadata out of an image buffer."""

    name: str = "strategy"

    def extract(self, data: bytes) -> ExtractionOutcome:
        """Run the strategy, converting any error into ``Failed``.

        Args:
            data: Raw image bytes.

        Returns:
            Found, NotFound or Failed, tagged with this strategy's name.
        """
        if not data:
            return Failed(reason="Empty image buffer", strategy=self.name)
        try:
            return self._extract(data)
        except CoordinateError as e:
            logger.debug(f"{self.name}: malformed GPS block: {e}")
            return Failed(reason=f"Malformed GPS data: {e}", strategy=self.name)
        except Exception as e:
            logger.debug(f"{self.name}: extraction failed: {e}")
            return Failed(reason=str(e) or type(e).__name__, strategy=self.name)

    @abstractmethod
    def _extract(self, data: bytes) -> ExtractionOutcome:
        ...


def _text(value: Any) -> Optional[str]:
    """Decode an EXIF ASCII value, dropping NUL padding."""
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).strip("\x00 \t\r\n")
    return text or None


def parse_exif_datetime(value: Any) -> Optional[datetime]:
    """Parse an EXIF datetime (``YYYY:MM:DD HH:MM:SS``) or an ISO variant.

    Returns:
        The naive datetime, or None if the value is absent or unparseable.
    """
    text = _text(value)
    if not text:
        return None
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def _gps_datetime(gps: Mapping[int, Any]) -> Optional[datetime]:
    """Combine GPSDateStamp and GPSTimeStamp (UTC) when both are present.

    Returns None for any malformed stamp, so a bad optional tag never
    costs the caller its position.
    """
    date_text = _text(gps.get(GPS_DATESTAMP))
    stamp = gps.get(GPS_TIMESTAMP)
    if not date_text or not stamp:
        return None
    try:
        day = datetime.strptime(date_text, "%Y:%m:%d")
        hours, minutes, seconds = (rational_to_float(part) for part in stamp)
        return day.replace(hour=int(hours), minute=int(minutes), second=int(seconds))
    except (ValueError, TypeError) as e:
        logger.debug(f"Ignoring malformed GPS timestamp: {e}")
        return None


def _altitude(gps: Mapping[int, Any]) -> Optional[float]:
    raw = gps.get(GPS_ALTITUDE)
    if raw is None:
        return None
    try:
        altitude = rational_to_float(raw)
    except CoordinateError as e:
        # Some devices write 0/0 when they have no altitude
        logger.debug(f"Ignoring malformed GPS altitude: {e}")
        return None

    ref = gps.get(GPS_ALTITUDE_REF, 0)
    if isinstance(ref, (bytes, tuple, list)):
        ref = ref[0] if len(ref) else 0
    # 1 = below sea level
    return -altitude if ref == 1 else altitude


def location_from_gps(
    gps: Mapping[int, Any],
    taken_at: Optional[datetime] = None,
) -> Optional[ExtractedLocation]:
    """Build a location from a GPS IFD keyed by numeric tag.

    Args:
        gps: GPS IFD mapping (Pillow or piexif flavour).
        taken_at: Capture time from the image's DateTime tags.

    Returns:
        The location, or None if any of the four required tags is missing.

    Raises:
        CoordinateError: If the tags are present but malformed.
    """
    required = (GPS_LATITUDE, GPS_LATITUDE_REF, GPS_LONGITUDE, GPS_LONGITUDE_REF)
    if not gps or any(gps.get(tag) in (None, b"", "") for tag in required):
        return None

    lat_ref = _text(gps[GPS_LATITUDE_REF])
    lon_ref = _text(gps[GPS_LONGITUDE_REF])
    if lat_ref not in ("N", "S") or lon_ref not in ("E", "W"):
        raise CoordinateError(f"Inconsistent references: {lat_ref!r}/{lon_ref!r}")

    latitude = dms_to_decimal(gps[GPS_LATITUDE], lat_ref)
    longitude = dms_to_decimal(gps[GPS_LONGITUDE], lon_ref)

    return ExtractedLocation(
        latitude=latitude,
        longitude=longitude,
        altitude=_altitude(gps),
        captured_at=taken_at or _gps_datetime(gps),
    )


def _outcome(
    gps: Mapping[int, Any],
    metadata: ImageMetadata,
    strategy: str,
) -> ExtractionOutcome:
    location = location_from_gps(gps, metadata.taken_at)
    if location is None:
        return NotFound(metadata=metadata, strategy=strategy)
    return Found(location=location, metadata=metadata, strategy=strategy)


class StructuredParseStrategy(ExtractionStrategy):
    """Read EXIF through Pillow's full container parser."""

    name = "structured"

    def _extract(self, data: bytes) -> ExtractionOutcome:
        with Image.open(io.BytesIO(data)) as image:
            exif = image.getexif()
            exif_ifd = exif.get_ifd(EXIF_IFD_POINTER)
            gps = exif.get_ifd(GPS_IFD_POINTER)

        taken_at = (
            parse_exif_datetime(exif_ifd.get(TAG_DATETIME_ORIGINAL))
            or parse_exif_datetime(exif_ifd.get(TAG_DATETIME_DIGITIZED))
            or parse_exif_datetime(exif.get(TAG_DATETIME))
        )
        metadata = ImageMetadata(
            make=_text(exif.get(TAG_MAKE)),
            model=_text(exif.get(TAG_MODEL)),
            software=_text(exif.get(TAG_SOFTWARE)),
            taken_at=taken_at,
        )
        return _outcome(gps, metadata, self.name)


class SegmentScanStrategy(ExtractionStrategy):
    """Locate the APP1/Exif segment by walking JPEG markers.

    Only JPEG input is supported; anything without the ``FF D8`` start
    of image marker fails immediately.
    """

    name = "segment-scan"

    def _extract(self, data: bytes) -> ExtractionOutcome:
        payload = self.find_exif_segment(data)
        if payload is None:
            return NotFound(strategy=self.name)

        exif = piexif.load(payload)
        zeroth = exif.get("0th") or {}
        exif_ifd = exif.get("Exif") or {}
        gps = exif.get("GPS") or {}

        taken_at = (
            parse_exif_datetime(exif_ifd.get(piexif.ExifIFD.DateTimeOriginal))
            or parse_exif_datetime(exif_ifd.get(piexif.ExifIFD.DateTimeDigitized))
            or parse_exif_datetime(zeroth.get(piexif.ImageIFD.DateTime))
        )
        metadata = ImageMetadata(
            make=_text(zeroth.get(piexif.ImageIFD.Make)),
            model=_text(zeroth.get(piexif.ImageIFD.Model)),
            software=_text(zeroth.get(piexif.ImageIFD.Software)),
            taken_at=taken_at,
        )
        return _outcome(gps, metadata, self.name)

    @staticmethod
    def find_exif_segment(data: bytes) -> Optional[bytes]:
        """Return the first APP1 payload starting with ``Exif\\0\\0``.

        Raises:
            ValueError: If the buffer is not a JPEG or a segment is
                truncated or carries an invalid length.
        """
        if len(data) < 2 or data[0] != 0xFF or data[1] != SOI:
            raise ValueError("Not a JPEG (missing SOI marker)")

        offset = 2
        size = len(data)
        while offset < size:
            if data[offset] != 0xFF:
                raise ValueError(f"Expected marker at offset {offset}")
            # Any number of 0xFF fill bytes may precede a marker
            while offset < size and data[offset] == 0xFF:
                offset += 1
            if offset >= size:
                break
            marker = data[offset]
            offset += 1

            if marker in (SOS, EOI):
                break
            if marker in STANDALONE_MARKERS:
                continue

            if offset + 2 > size:
                raise ValueError("Truncated segment length")
            (length,) = struct.unpack(">H", data[offset:offset + 2])
            if length < 2:
                raise ValueError(f"Invalid segment length {length}")
            end = offset + length
            if end > size:
                raise ValueError("Segment extends past end of file")

            payload = data[offset + 2:end]
            if marker == APP1 and payload.startswith(EXIF_HEADER):
                return payload
            offset = end

        return None


class MockStrategy(ExtractionStrategy):
    """Deterministic stand-in used when real extraction is switched off.

    Args:
        gps_probability: Share of images that receive a fix.
    """

    name = "mock"

    CENTER_LATITUDE = 39.8283
    CENTER_LONGITUDE = -98.5795
    LATITUDE_SPREAD = 5.0
    LONGITUDE_SPREAD = 20.0

    def __init__(self, gps_probability: float = 0.5) -> None:
        if not 0.0 <= gps_probability <= 1.0:
            raise ValueError("gps_probability must be between 0 and 1")
        self.gps_probability = gps_probability

    def _extract(self, data: bytes) -> ExtractionOutcome:
        seed = int.from_bytes(hashlib.sha256(data).digest()[:8], "big")
        rng = random.Random(seed)

        metadata = ImageMetadata(make="Mock Camera", model="Demo Model")
        if rng.random() >= self.gps_probability:
            return NotFound(metadata=metadata, strategy=self.name)

        location = ExtractedLocation(
            latitude=self.CENTER_LATITUDE
            + rng.uniform(-self.LATITUDE_SPREAD, self.LATITUDE_SPREAD),
            longitude=self.CENTER_LONGITUDE
            + rng.uniform(-self.LONGITUDE_SPREAD, self.LONGITUDE_SPREAD),
            altitude=rng.uniform(0, 1000),
        )
        return Found(location=location, metadata=metadata, strategy=self.name)
