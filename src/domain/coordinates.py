"""
Coordinate validation for ride creation.

Coordinates come from the third-party geocoding / autocomplete provider.
When that provider fails, clients have been seen to fall back to
placeholder points such as (0, 0) or (1, 1); those are rejected here,
as is anything outside the US service area.
"""

import math

from .entities import Location
from .errors import ValidationError

# Continental US including Alaska and Hawaii
US_BOUNDS = {
    "north": 71.5,
    "south": 18.9,
    "east": -66.9,
    "west": -179.1,
}

SENTINELS = frozenset({(0.0, 0.0), (1.0, 1.0)})


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value)


def validate_coordinates(lat, lng, label: str = "Location") -> Location:
    """Return a sanitised ``Location`` or raise ``ValidationError``."""
    if not _is_number(lat) or not _is_number(lng):
        raise ValidationError(f"{label}: invalid coordinate format")
    if not -90 <= lat <= 90:
        raise ValidationError(f"{label}: latitude out of valid range")
    if not -180 <= lng <= 180:
        raise ValidationError(f"{label}: longitude out of valid range")
    if (float(lat), float(lng)) in SENTINELS:
        raise ValidationError(f"{label}: invalid location coordinates detected")
    if not (
        US_BOUNDS["south"] <= lat <= US_BOUNDS["north"]
        and US_BOUNDS["west"] <= lng <= US_BOUNDS["east"]
    ):
        raise ValidationError(f"{label}: location outside US service area")
    return Location(round(lat, 6), round(lng, 6))
