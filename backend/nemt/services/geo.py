"""Great-circle distance helpers."""
from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

EARTH_RADIUS_MILES = 3959.0
MINUTES_PER_MILE = 2


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def eta_minutes(distance_miles: float) -> int:
    """Rough drive time at 30 mph."""
    return int(math.floor(distance_miles * MINUTES_PER_MILE + 0.5))


def point(row: Dict[str, Any], lat_key: str, lng_key: str) -> Optional[Tuple[float, float]]:
    """Return (lat, lng) from a record, or None when either coordinate is missing."""
    lat = row.get(lat_key)
    lng = row.get(lng_key)
    if lat is None or lng is None:
        return None
    return float(lat), float(lng)
