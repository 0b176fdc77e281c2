"""
Route geometry for proximity matching.

All coordinates are [lng, lat] pairs in degrees (GeoJSON order).
Distances on the sphere use the haversine formula; polygon tests treat
lng/lat as planar, which is accurate enough for search radii of a few
tens of kilometers.
"""
import math
from typing import List, Sequence, Tuple


EARTH_RADIUS_M = 6371000.0

Coordinate = Tuple[float, float]


def is_valid_coordinate(lng: float, lat: float) -> bool:
    """Check that lng/lat are finite and inside WGS84 bounds."""
    if not (isinstance(lng, (int, float)) and isinstance(lat, (int, float))):
        return False
    if not (math.isfinite(lng) and math.isfinite(lat)):
        return False
    return -180 <= lng <= 180 and -90 <= lat <= 90


def central_angle(lng1: float, lat1: float, lng2: float, lat2: float) -> float:
    """Angular distance in radians between two points on the sphere."""
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = math.sin(delta_lat / 2) ** 2 + \
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_distance(
    lng1: float,
    lat1: float,
    lng2: float,
    lat2: float,
    earth_radius_m: float = EARTH_RADIUS_M
) -> float:
    """
    Calculate the great circle distance between two points on Earth (in meters).
    """
    return earth_radius_m * central_angle(lng1, lat1, lng2, lat2)


def _normalize_lng(lng: float) -> float:
    return (lng + 540) % 360 - 180


def destination_point(
    lng: float,
    lat: float,
    bearing_rad: float,
    angular_distance: float
) -> Coordinate:
    """
    Solve the direct geodesic problem on a sphere.

    Returns the point reached from (lng, lat) travelling `angular_distance`
    radians along the initial bearing `bearing_rad` (0 = north, clockwise).
    """
    lat1 = math.radians(lat)
    lng1 = math.radians(lng)

    sin_lat2 = math.sin(lat1) * math.cos(angular_distance) + \
        math.cos(lat1) * math.sin(angular_distance) * math.cos(bearing_rad)
    lat2 = math.asin(max(-1.0, min(1.0, sin_lat2)))
    lng2 = lng1 + math.atan2(
        math.sin(bearing_rad) * math.sin(angular_distance) * math.cos(lat1),
        math.cos(angular_distance) - math.sin(lat1) * math.sin(lat2)
    )

    return (_normalize_lng(math.degrees(lng2)), math.degrees(lat2))


def circle_polygon(
    lng: float,
    lat: float,
    radius_m: float,
    vertices: int = 64,
    earth_radius_m: float = EARTH_RADIUS_M
) -> List[List[float]]:
    """
    Approximate a spherical circle with a closed ring of `vertices` points.

    The ring has `vertices + 1` entries; the first vertex is repeated at the
    end so the result is a valid GeoJSON linear ring.
    """
    angular_distance = radius_m / earth_radius_m
    ring = []
    for i in range(vertices):
        bearing = 2 * math.pi * i / vertices
        v_lng, v_lat = destination_point(lng, lat, bearing, angular_distance)
        ring.append([v_lng, v_lat])
    ring.append(list(ring[0]))
    return ring


def point_in_polygon(lng: float, lat: float, ring: Sequence[Sequence[float]]) -> bool:
    """Ray casting test of a point against a closed ring."""
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i
    return inside


def _orientation(p: Sequence[float], q: Sequence[float], r: Sequence[float]) -> float:
    return (q[0] - p[0]) * (r[1] - p[1]) - (q[1] - p[1]) * (r[0] - p[0])


def _on_segment(p: Sequence[float], q: Sequence[float], r: Sequence[float]) -> bool:
    return min(p[0], r[0]) <= q[0] <= max(p[0], r[0]) and \
        min(p[1], r[1]) <= q[1] <= max(p[1], r[1])


def segments_intersect(
    p1: Sequence[float],
    p2: Sequence[float],
    q1: Sequence[float],
    q2: Sequence[float]
) -> bool:
    """Check whether segment p1-p2 touches or crosses segment q1-q2."""
    d1 = _orientation(q1, q2, p1)
    d2 = _orientation(q1, q2, p2)
    d3 = _orientation(p1, p2, q1)
    d4 = _orientation(p1, p2, q2)

    if ((d1 > 0 and d2 < 0) or (d1 < 0 and d2 > 0)) and \
            ((d3 > 0 and d4 < 0) or (d3 < 0 and d4 > 0)):
        return True

    # Collinear touching cases
    if d1 == 0 and _on_segment(q1, p1, q2):
        return True
    if d2 == 0 and _on_segment(q1, p2, q2):
        return True
    if d3 == 0 and _on_segment(p1, q1, p2):
        return True
    if d4 == 0 and _on_segment(p1, q2, p2):
        return True
    return False


def polyline_intersects_polygon(
    polyline: Sequence[Sequence[float]],
    ring: Sequence[Sequence[float]]
) -> bool:
    """
    Check if a polyline touches a polygon: either a vertex lies inside the
    ring or one of its segments crosses a ring edge.
    """
    if not polyline or len(ring) < 4:
        return False

    for point in polyline:
        if point_in_polygon(point[0], point[1], ring):
            return True

    for i in range(len(polyline) - 1):
        for j in range(len(ring) - 1):
            if segments_intersect(polyline[i], polyline[i + 1], ring[j], ring[j + 1]):
                return True

    return False
