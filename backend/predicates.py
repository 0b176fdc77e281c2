"""
Query predicates over stored documents.

A predicate is an immutable tree of leaf conditions joined by AllOf/AnyOf.
It can be compiled into a MongoDB filter (`to_mongo`) for the spatial
store, or evaluated directly against a document (`evaluate`) with pure
geometry, which is how already-fetched candidate sets are narrowed.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

from route_service import (
    EARTH_RADIUS_M,
    central_angle,
    point_in_polygon,
    polyline_intersects_polygon,
)


class Predicate:
    """Base class for predicate nodes."""

    def __and__(self, other: "Predicate") -> "Predicate":
        return all_of(self, other)

    def __or__(self, other: "Predicate") -> "Predicate":
        return any_of(self, other)


@dataclass(frozen=True)
class FieldEquals(Predicate):
    field: str
    value: Any


@dataclass(frozen=True)
class WithinSphere(Predicate):
    """Point stored at `field` lies within `radius_rad` radians of `center`."""
    field: str
    center: Tuple[float, float]
    radius_rad: float


@dataclass(frozen=True)
class IntersectsPolygon(Predicate):
    """Geometry stored at `field` touches the closed `ring`."""
    field: str
    ring: Tuple[Tuple[float, float], ...]


@dataclass(frozen=True)
class AllOf(Predicate):
    predicates: Tuple[Predicate, ...]


@dataclass(frozen=True)
class AnyOf(Predicate):
    predicates: Tuple[Predicate, ...]


def _flatten(kind, predicates: Sequence[Predicate]) -> Tuple[Predicate, ...]:
    flat: List[Predicate] = []
    for predicate in predicates:
        if predicate is None:
            continue
        if isinstance(predicate, kind):
            flat.extend(predicate.predicates)
        else:
            flat.append(predicate)
    return tuple(flat)


def all_of(*predicates: Predicate) -> Predicate:
    """Intersect predicates. Nested AllOf nodes are flattened."""
    flat = _flatten(AllOf, predicates)
    if not flat:
        raise ValueError("all_of needs at least one predicate")
    return flat[0] if len(flat) == 1 else AllOf(flat)


def any_of(*predicates: Predicate) -> Predicate:
    """Union predicates. Nested AnyOf nodes are flattened."""
    flat = _flatten(AnyOf, predicates)
    if not flat:
        raise ValueError("any_of needs at least one predicate")
    return flat[0] if len(flat) == 1 else AnyOf(flat)


# ============================================================
# MONGODB COMPILATION
# ============================================================

def to_mongo(predicate: Predicate) -> Dict[str, Any]:
    """Compile a predicate into a MongoDB filter document."""
    if isinstance(predicate, FieldEquals):
        return {predicate.field: predicate.value}

    if isinstance(predicate, WithinSphere):
        return {
            predicate.field: {
                "$geoWithin": {
                    "$centerSphere": [list(predicate.center), predicate.radius_rad]
                }
            }
        }

    if isinstance(predicate, IntersectsPolygon):
        return {
            predicate.field: {
                "$geoIntersects": {
                    "$geometry": {
                        "type": "Polygon",
                        "coordinates": [[list(vertex) for vertex in predicate.ring]]
                    }
                }
            }
        }

    if isinstance(predicate, AllOf):
        return {"$and": [to_mongo(p) for p in predicate.predicates]}

    if isinstance(predicate, AnyOf):
        return {"$or": [to_mongo(p) for p in predicate.predicates]}

    raise TypeError(f"Unsupported predicate: {predicate!r}")


# ============================================================
# IN-PROCESS EVALUATION
# ============================================================

def _resolve(value: Any, parts: Sequence[str]) -> List[Any]:
    if not parts:
        return [value]
    if isinstance(value, list):
        return [v for item in value for v in _resolve(item, parts)]
    if isinstance(value, dict) and parts[0] in value:
        return _resolve(value[parts[0]], parts[1:])
    return []


def resolve_field(document: Dict[str, Any], path: str) -> List[Any]:
    """
    Collect every value reachable at a dotted path, descending into arrays
    of sub-documents the way MongoDB does (e.g. "viaRoutes.coordinates").
    """
    return _resolve(document, path.split("."))


def _is_pair(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) == 2 and \
        all(isinstance(c, (int, float)) for c in value)


def _geometry_touches_ring(value: Any, ring: Sequence[Sequence[float]]) -> bool:
    if _is_pair(value):
        return point_in_polygon(value[0], value[1], ring)
    if isinstance(value, dict):
        coordinates = value.get("coordinates")
        if value.get("type") == "Point" and _is_pair(coordinates):
            return point_in_polygon(coordinates[0], coordinates[1], ring)
        if value.get("type") == "LineString" and coordinates:
            return polyline_intersects_polygon(coordinates, ring)
    return False


def evaluate(predicate: Predicate, document: Dict[str, Any]) -> bool:
    """Evaluate a predicate against a single document using pure geometry."""
    if isinstance(predicate, FieldEquals):
        return any(v == predicate.value for v in resolve_field(document, predicate.field))

    if isinstance(predicate, WithinSphere):
        c_lng, c_lat = predicate.center
        for value in resolve_field(document, predicate.field):
            if _is_pair(value) and \
                    central_angle(c_lng, c_lat, value[0], value[1]) <= predicate.radius_rad:
                return True
        return False

    if isinstance(predicate, IntersectsPolygon):
        return any(
            _geometry_touches_ring(value, predicate.ring)
            for value in resolve_field(document, predicate.field)
        )

    if isinstance(predicate, AllOf):
        return all(evaluate(p, document) for p in predicate.predicates)

    if isinstance(predicate, AnyOf):
        return any(evaluate(p, document) for p in predicate.predicates)

    raise TypeError(f"Unsupported predicate: {predicate!r}")


def radius_to_radians(radius_m: float, earth_radius_m: float = EARTH_RADIUS_M) -> float:
    """Convert a ground distance into the angular radius used by $centerSphere."""
    return radius_m / earth_radius_m
