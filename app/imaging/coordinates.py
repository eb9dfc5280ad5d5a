"""Coordinate conversion and geographic helpers.

EXIF stores GPS positions as three unsigned rationals (degrees, minutes,
seconds) plus a hemisphere reference:

```
GPSLatitudeRef:  'N'
GPSLatitude:     ((40, 1), (43, 1), (2854, 100))   # 40° 43' 28.54"
GPSLongitudeRef: 'W'
GPSLongitude:    ((74, 1), (0, 1), (2160, 100))    # 74° 0' 21.6"
```

Maps want signed decimal degrees:

    decimal = degrees + minutes / 60 + seconds / 3600

negated for the southern and western hemispheres.

Malformed input raises ``CoordinateError`` rather than producing 0.0:
0°, 0° is a real point in the Gulf of Guinea, and a silent default would
drop a pin there.
"""

import math
from numbers import Number
from typing import Any, Optional, Sequence, Tuple, Union

LATITUDE_REFS = ("N", "S")
LONGITUDE_REFS = ("E", "W")
NEGATIVE_REFS = ("S", "W")

EARTH_RADIUS_KM = 6371.0
EARTH_RADIUS_MI = 3958.8

Rational = Union[Tuple[int, int], Number, Any]


class CoordinateError(ValueError):
    """Raised when a coordinate or DMS triple cannot be interpreted."""


def rational_to_float(value: Rational) -> float:
    """Convert an EXIF rational to a float.

    Accepts the shapes the different EXIF libraries hand back:
    ``(numerator, denominator)`` pairs (piexif), ``Fraction``-like objects
    such as Pillow's ``IFDRational``, and plain numbers.

    Raises:
        CoordinateError: On a zero denominator, a non-numeric value or a
            non-finite result.
    """
    try:
        if isinstance(value, (tuple, list)):
            if len(value) != 2:
                raise CoordinateError(f"Rational must be a pair, got {value!r}")
            numerator, denominator = value
            if denominator == 0:
                raise CoordinateError("Rational has a zero denominator")
            result = float(numerator) / float(denominator)
        elif hasattr(value, "numerator") and hasattr(value, "denominator"):
            if value.denominator == 0:
                raise CoordinateError("Rational has a zero denominator")
            result = float(value.numerator) / float(value.denominator)
        else:
            result = float(value)
    except CoordinateError:
        raise
    except (TypeError, ValueError, ZeroDivisionError) as e:
        raise CoordinateError(f"Not a number: {value!r}") from e

    if not math.isfinite(result):
        raise CoordinateError(f"Non-finite value: {value!r}")
    return result


def normalize_ref(ref: Union[str, bytes, None]) -> str:
    """Normalize a hemisphere reference to a single upper-case letter.

    EXIF ASCII values often arrive as bytes with a trailing NUL
    (``b'N\\x00'``).
    """
    if ref is None:
        raise CoordinateError("Missing hemisphere reference")
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    ref = str(ref).strip("\x00 \t\r\n").upper()
    if ref not in LATITUDE_REFS + LONGITUDE_REFS:
        raise CoordinateError(f"Unknown hemisphere reference: {ref!r}")
    return ref


def dms_to_decimal(dms: Sequence[Rational], ref: Union[str, bytes]) -> float:
    """Convert degrees/minutes/seconds plus a hemisphere to decimal degrees.

    Args:
        dms: Three rationals (degrees, minutes, seconds).
        ref: ``N``, ``S``, ``E`` or ``W`` (str or bytes).

    Returns:
        Signed decimal degrees.

    Raises:
        CoordinateError: If fewer than three components are given, a
            component is negative or non-finite, the reference is unknown,
            or the result lies outside the range of its axis.

    Example:
        >>> round(dms_to_decimal(((74, 1), (0, 1), (216, 10)), "W"), 5)
        -74.006
    """
    if dms is None or isinstance(dms, (str, bytes)):
        raise CoordinateError(f"DMS must be a sequence, got {dms!r}")
    try:
        components = list(dms)
    except TypeError as e:
        raise CoordinateError(f"DMS must be a sequence, got {dms!r}") from e
    if len(components) < 3:
        raise CoordinateError(f"DMS needs 3 components, got {len(components)}")

    degrees, minutes, seconds = (rational_to_float(c) for c in components[:3])
    if degrees < 0 or minutes < 0 or seconds < 0:
        raise CoordinateError("DMS components must be non-negative")

    hemisphere = normalize_ref(ref)
    decimal = degrees + minutes / 60.0 + seconds / 3600.0

    limit = 90.0 if hemisphere in LATITUDE_REFS else 180.0
    if decimal > limit:
        raise CoordinateError(f"{decimal} exceeds {limit} for reference {hemisphere}")

    return -decimal if hemisphere in NEGATIVE_REFS else decimal


def decimal_to_dms(value: float, axis: str) -> Tuple[int, int, float, str]:
    """Convert signed decimal degrees back to DMS.

    Args:
        value: Signed decimal degrees.
        axis: ``"lat"`` or ``"lon"``.

    Returns:
        ``(degrees, minutes, seconds, ref)``.
    """
    if axis not in ("lat", "lon"):
        raise CoordinateError(f"Unknown axis: {axis!r}")
    if axis == "lat":
        validate_latitude(value)
        ref = "N" if value >= 0 else "S"
    else:
        validate_longitude(value)
        ref = "E" if value >= 0 else "W"

    magnitude = abs(value)
    degrees = int(magnitude)
    remainder = (magnitude - degrees) * 60.0
    minutes = int(remainder)
    seconds = (remainder - minutes) * 60.0
    return degrees, minutes, seconds, ref


def validate_latitude(lat: float) -> float:
    """Validate a latitude in decimal degrees."""
    if isinstance(lat, bool) or not isinstance(lat, (int, float)):
        raise CoordinateError(f"Latitude must be a number, got {type(lat).__name__}")
    if not math.isfinite(lat) or lat < -90 or lat > 90:
        raise CoordinateError(f"Latitude must be between -90 and 90, got {lat}")
    return float(lat)


def validate_longitude(lon: float) -> float:
    """Validate a longitude in decimal degrees."""
    if isinstance(lon, bool) or not isinstance(lon, (int, float)):
        raise CoordinateError(f"Longitude must be a number, got {type(lon).__name__}")
    if not math.isfinite(lon) or lon < -180 or lon > 180:
        raise CoordinateError(f"Longitude must be between -180 and 180, got {lon}")
    return float(lon)


def validate_coordinates(lat: float, lon: float) -> Tuple[float, float]:
    """Validate a coordinate pair.

    Returns:
        ``(latitude, longitude)`` as floats.

    Raises:
        CoordinateError: If either value is out of range.
    """
    return validate_latitude(lat), validate_longitude(lon)


def is_valid_coordinates(lat: Optional[float], lon: Optional[float]) -> bool:
    """Return True when both values form a valid geographic position."""
    try:
        validate_coordinates(lat, lon)
    except CoordinateError:
        return False
    return True


def calculate_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    unit: str = "km",
) -> float:
    """Great-circle distance between two points (haversine formula).

    Args:
        lat1: Latitude of the first point.
        lon1: Longitude of the first point.
        lat2: Latitude of the second point.
        lon2: Longitude of the second point.
        unit: ``"km"`` or ``"mi"``.

    Returns:
        Distance in the requested unit.
    """
    if unit not in ("km", "mi"):
        raise ValueError(f"Unknown distance unit: {unit!r}")
    radius = EARTH_RADIUS_KM if unit == "km" else EARTH_RADIUS_MI

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return radius * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def format_coordinates(lat: float, lon: float, precision: int = 4) -> str:
    """Format a position for display, e.g. ``40.7128° N, 74.0060° W``."""
    lat_ref = "N" if lat >= 0 else "S"
    lon_ref = "E" if lon >= 0 else "W"
    return (
        f"{abs(lat):.{precision}f}° {lat_ref}, "
        f"{abs(lon):.{precision}f}° {lon_ref}"
    )
