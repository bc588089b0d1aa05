from typing import Any, Dict, Optional, Tuple

from geopy.distance import geodesic

from tourbook.core.errors import AppError

UNITS = ("mi", "km")


def parse_latlng(latlng: str) -> Tuple[float, float]:
    """'34.11,-118.11' -> (34.11, -118.11)"""
    try:
        lat_raw, lng_raw = latlng.split(",")
        lat, lng = float(lat_raw), float(lng_raw)
    except ValueError:
        raise AppError("Please provide latitude and longitude in the format lat,lng.", 400)
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise AppError("Latitude must be within [-90, 90] and longitude within [-180, 180].", 400)
    return lat, lng


def parse_unit(unit: str) -> str:
    if unit not in UNITS:
        raise AppError("Unit must be either 'mi' or 'km'.", 400)
    return unit


def point_of(location: Optional[Dict[str, Any]]) -> Optional[Tuple[float, float]]:
    """(lat, lng) of a GeoJSON point, whose coordinates are [lng, lat]"""
    if not location:
        return None
    coordinates = location.get("coordinates") or []
    if len(coordinates) != 2:
        return None
    lng, lat = coordinates
    return float(lat), float(lng)


def distance_between(origin: Tuple[float, float], target: Tuple[float, float], unit: str) -> float:
    distance = geodesic(origin, target)
    return distance.miles if unit == "mi" else distance.km
