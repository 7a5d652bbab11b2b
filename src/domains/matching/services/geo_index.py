"""
GeoIndex - geohash spatial keys and range bounds for proximity search

Radius search without a native geo index: every point carries a geohash
string, a disc is covered by a handful of geohash prefix ranges, each range
is queried on the single sortable ``spatial_key`` field, and the union is
post-filtered by exact great-circle distance. Ranges over-include (corners
of the covering cells) but never miss a point inside the disc.
"""

import math
from typing import List, Optional, Tuple

from core.errors import NotLocatable

Point = Tuple[float, float]
KeyRange = Tuple[str, str]

BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
BITS_PER_CHAR = 5
DEFAULT_PRECISION = 10
MAXIMUM_BITS_PRECISION = 22 * BITS_PER_CHAR

EARTH_RADIUS_METERS = 6371000.0
EARTH_MERIDIONAL_CIRCUMFERENCE = 40007860.0
METERS_PER_DEGREE_LATITUDE = 110574.0
EPSILON = 1e-12


def validate_point(latitude: Optional[float], longitude: Optional[float]) -> Point:
    """Return the point as floats or raise NotLocatable"""
    if latitude is None or longitude is None:
        raise NotLocatable("Latitude and longitude are required")
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise NotLocatable(f"Invalid coordinates: ({latitude}, {longitude})")
    if math.isnan(lat) or math.isnan(lon):
        raise NotLocatable("Coordinates must be numbers")
    if not -90.0 <= lat <= 90.0:
        raise NotLocatable(f"Latitude {lat} outside [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise NotLocatable(f"Longitude {lon} outside [-180, 180]")
    return lat, lon


def encode(latitude: float, longitude: float, precision: int = DEFAULT_PRECISION) -> str:
    """Geohash of the point. Nearby points share long common prefixes."""
    lat, lon = validate_point(latitude, longitude)
    if not 0 < precision <= 22:
        raise ValueError("precision must be between 1 and 22")

    lat_range = [-90.0, 90.0]
    lon_range = [-180.0, 180.0]
    chars: List[str] = []
    value = 0
    bits = 0
    even = True

    while len(chars) < precision:
        if even:
            mid = (lon_range[0] + lon_range[1]) / 2
            if lon > mid:
                value = (value << 1) + 1
                lon_range[0] = mid
            else:
                value = value << 1
                lon_range[1] = mid
        else:
            mid = (lat_range[0] + lat_range[1]) / 2
            if lat > mid:
                value = (value << 1) + 1
                lat_range[0] = mid
            else:
                value = value << 1
                lat_range[1] = mid
        even = not even

        if bits < BITS_PER_CHAR - 1:
            bits += 1
        else:
            chars.append(BASE32[value])
            bits = 0
            value = 0

    return "".join(chars)


def distance(point_a: Point, point_b: Point) -> float:
    """Great-circle (haversine) distance in meters"""
    lat1, lon1 = validate_point(*point_a)
    lat2, lon2 = validate_point(*point_b)

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(max(0.0, 1 - a)))
    return EARTH_RADIUS_METERS * c


def _meters_to_longitude_degrees(meters: float, latitude: float) -> float:
    # Same sphere as distance() so the box always contains the whole disc
    delta_deg = math.cos(math.radians(latitude)) * EARTH_RADIUS_METERS * math.pi / 180
    if delta_deg < EPSILON:
        return 360.0 if meters > 0 else 0.0
    return min(360.0, meters / delta_deg)


def _longitude_bits_for_resolution(resolution: float, latitude: float) -> float:
    degrees = _meters_to_longitude_degrees(resolution, latitude)
    return max(1.0, math.log2(360 / degrees)) if abs(degrees) > 0.000001 else 1.0


def _latitude_bits_for_resolution(resolution: float) -> float:
    return min(math.log2(EARTH_MERIDIONAL_CIRCUMFERENCE / 2 / resolution), MAXIMUM_BITS_PRECISION)


def _wrap_longitude(longitude: float) -> float:
    if -180 <= longitude <= 180:
        return longitude
    adjusted = longitude + 180
    if adjusted > 0:
        return (adjusted % 360) - 180
    return 180 - (-adjusted % 360)


def _bounding_box_bits(center: Point, radius: float) -> int:
    lat_delta = radius / METERS_PER_DEGREE_LATITUDE
    latitude_north = min(90.0, center[0] + lat_delta)
    latitude_south = max(-90.0, center[0] - lat_delta)
    bits_lat = math.floor(_latitude_bits_for_resolution(radius)) * 2
    bits_long_north = math.floor(_longitude_bits_for_resolution(radius, latitude_north)) * 2 - 1
    bits_long_south = math.floor(_longitude_bits_for_resolution(radius, latitude_south)) * 2 - 1
    return min(bits_lat, bits_long_north, bits_long_south, MAXIMUM_BITS_PRECISION)


def _bounding_box_points(center: Point, radius: float) -> List[Point]:
    lat_degrees = radius / METERS_PER_DEGREE_LATITUDE
    latitude_north = min(90.0, center[0] + lat_degrees)
    latitude_south = max(-90.0, center[0] - lat_degrees)
    long_degrees = max(
        _meters_to_longitude_degrees(radius, latitude_north),
        _meters_to_longitude_degrees(radius, latitude_south)
    )
    west = _wrap_longitude(center[1] - long_degrees)
    east = _wrap_longitude(center[1] + long_degrees)
    return [
        (center[0], center[1]),
        (center[0], west),
        (center[0], east),
        (latitude_north, center[1]),
        (latitude_north, west),
        (latitude_north, east),
        (latitude_south, center[1]),
        (latitude_south, west),
        (latitude_south, east),
    ]


def _range_for_geohash(geohash: str, bits: int) -> KeyRange:
    precision = math.ceil(bits / BITS_PER_CHAR)
    if len(geohash) < precision:
        return geohash, geohash + "~"

    prefix = geohash[:precision]
    base = prefix[:-1]
    last_value = BASE32.index(prefix[-1])
    significant_bits = bits - len(base) * BITS_PER_CHAR
    unused_bits = BITS_PER_CHAR - significant_bits

    start_value = (last_value >> unused_bits) << unused_bits
    end_value = start_value + (1 << unused_bits)
    if end_value > 31:
        return base + BASE32[start_value], base + "~"
    return base + BASE32[start_value], base + BASE32[end_value]


def bounds_for_radius(center: Point, radius_meters: float) -> List[KeyRange]:
    """
    Key ranges [low, high] whose union covers every point within
    ``radius_meters`` of ``center``. Duplicates are removed; order is stable.
    """
    center = validate_point(*center)
    if radius_meters <= 0:
        raise ValueError("radius_meters must be positive")

    query_bits = max(1, _bounding_box_bits(center, radius_meters))
    precision = math.ceil(query_bits / BITS_PER_CHAR)

    ranges: List[KeyRange] = []
    for point in _bounding_box_points(center, radius_meters):
        key_range = _range_for_geohash(encode(point[0], point[1], precision), query_bits)
        if key_range not in ranges:
            ranges.append(key_range)
    return ranges


def in_ranges(spatial_key: str, ranges: List[KeyRange]) -> bool:
    """True when ``spatial_key`` falls inside any of the inclusive ranges"""
    return any(low <= spatial_key <= high for low, high in ranges)


class GeoIndex:
    """Spatial keys at a fixed precision"""

    def __init__(self, precision: int = DEFAULT_PRECISION):
        self.precision = precision

    def encode(self, latitude: Optional[float], longitude: Optional[float]) -> str:
        return encode(latitude, longitude, self.precision)

    def bounds_for_radius(self, center: Point, radius_meters: float) -> List[KeyRange]:
        return bounds_for_radius(center, radius_meters)

    def distance(self, point_a: Point, point_b: Point) -> float:
        return distance(point_a, point_b)
