import math
import sys
from typing import Optional

EARTH_RADIUS_M = 6371000.0

# sort key for departure times that cannot be parsed
MAX_TIME_SECONDS = sys.maxsize


def haversine_distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters on a spherical Earth of mean radius."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (math.sin(dlat / 2) ** 2 + math.cos(math.radians(lat1)) *
         math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def hhmmss_to_seconds(timestr: str) -> Optional[int]:
    # GTFS clock values may run past 24:00:00 for trips after midnight
    if timestr is None:
        return None
    parts = str(timestr).strip().split(':')
    if len(parts) != 3:
        return None
    try:
        hours, minutes, seconds = map(int, parts)
    except ValueError:
        return None
    return hours * 3600 + minutes * 60 + seconds


def departure_sort_key(timestr: str) -> int:
    seconds = hhmmss_to_seconds(timestr)
    return MAX_TIME_SECONDS if seconds is None else seconds


def parse_float(value: str) -> Optional[float]:
    """Float from a GTFS field; None for blanks, garbage, nan and infinities."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number
