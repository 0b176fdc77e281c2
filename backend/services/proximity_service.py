"""
Proximity Matcher

Builds the store predicates used by the trip and lead listings to find
candidates near one or two reference points.

A trip matches a point when its start, its destination, any via point, or
its route polyline is within the search radius. The store only answers
point-in-circle natively, so the route test uses a 64-gon approximation of
the circle with $geoIntersects.

Dual-point searches come in two named modes:
- REQUIRE_BOTH: pickup AND dropoff are evaluated together by the store.
- REFINE_BY_DROPOFF: pickup is the store query; dropoff narrows the fetched
  candidates in-process, keeping their order.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Union
import logging
import math

from core.config import settings
from core.exceptions import ValidationError
from models import GeoPoint
from predicates import (
    Predicate,
    FieldEquals,
    WithinSphere,
    IntersectsPolygon,
    all_of,
    any_of,
    evaluate,
    radius_to_radians,
)
from route_service import circle_polygon, is_valid_coordinate

logger = logging.getLogger(__name__)


class SearchMode(str, Enum):
    SINGLE_POINT = "single_point"
    REQUIRE_BOTH = "require_both"
    REFINE_BY_DROPOFF = "refine_by_dropoff"


@dataclass(frozen=True)
class TripGeometryFields:
    """Where a trip document stores the geometry tested by the matcher."""
    start: str = "tripStartLocation.coordinates"
    destination: str = "tripDestination.coordinates"
    via: str = "viaRoutes.coordinates"
    route: str = "routeGeoJSON"


TRIP_FIELDS = TripGeometryFields()

LEAD_PICKUP_FIELD = "pickupLocation.coordinates"
LEAD_DROPOFF_FIELD = "dropoffLocation.coordinates"


@dataclass(frozen=True)
class SearchPlan:
    """
    query: predicate the store evaluates.
    refine: optional predicate applied in-process to the fetched results.
    """
    query: Predicate
    refine: Optional[Predicate] = None
    mode: SearchMode = SearchMode.SINGLE_POINT


def active_filter() -> Predicate:
    """Soft-deleted records never match."""
    return FieldEquals("isActive", True)


PointLike = Union[GeoPoint, Sequence[float]]


class ProximityMatcher:
    """Pure query construction: no I/O."""

    def __init__(
        self,
        earth_radius_m: Optional[float] = None,
        vertices: Optional[int] = None,
        default_radius_m: Optional[float] = None
    ):
        self.earth_radius_m = earth_radius_m or settings.earth_radius_m
        self.vertices = vertices or settings.circle_polygon_vertices
        self.default_radius_m = default_radius_m or settings.default_search_radius_m

    # ------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------

    @staticmethod
    def parse_point(raw: Optional[str]) -> Optional[GeoPoint]:
        """Parse a "lng,lat" query parameter. Empty input means no point."""
        if raw is None or not str(raw).strip():
            return None
        parts = [p.strip() for p in str(raw).split(",")]
        if len(parts) != 2:
            raise ValidationError(f"Invalid location '{raw}': expected 'lng,lat'")
        try:
            lng, lat = float(parts[0]), float(parts[1])
        except ValueError:
            raise ValidationError(f"Invalid location '{raw}': coordinates must be numbers")
        if not is_valid_coordinate(lng, lat):
            raise ValidationError(f"Invalid location '{raw}': coordinates out of range")
        return GeoPoint(coordinates=[lng, lat])

    def resolve_radius(self, raw) -> float:
        """Positive radius in meters, falling back to the default."""
        if raw is None:
            return float(self.default_radius_m)
        try:
            radius = float(raw)
        except (TypeError, ValueError):
            return float(self.default_radius_m)
        if not math.isfinite(radius) or radius <= 0:
            return float(self.default_radius_m)
        return radius

    def _center(self, center: PointLike) -> tuple:
        if isinstance(center, GeoPoint):
            lng, lat = center.lng, center.lat
        else:
            if center is None or len(center) != 2:
                raise ValidationError("Center must be a [lng, lat] pair")
            lng, lat = center[0], center[1]
        if not is_valid_coordinate(lng, lat):
            raise ValidationError(f"Invalid center coordinates: ({lng}, {lat})")
        return (float(lng), float(lat))

    # ------------------------------------------------------------
    # Predicate construction
    # ------------------------------------------------------------

    def angular_radius(self, radius_m: float) -> float:
        return radius_to_radians(radius_m, self.earth_radius_m)

    def circle_ring(self, center: PointLike, radius_meters) -> List[List[float]]:
        lng, lat = self._center(center)
        return circle_polygon(
            lng, lat, self.resolve_radius(radius_meters),
            vertices=self.vertices, earth_radius_m=self.earth_radius_m
        )

    def within(self, field: str, center: PointLike, radius_meters) -> Predicate:
        radius = self.resolve_radius(radius_meters)
        return WithinSphere(field, self._center(center), self.angular_radius(radius))

    def build_match_predicate(
        self,
        center: PointLike,
        radius_meters=None,
        fields: TripGeometryFields = TRIP_FIELDS
    ) -> Predicate:
        """
        Trip candidates near `center`: start, destination, any via point or
        the route polyline within `radius_meters`.
        """
        radius = self.resolve_radius(radius_meters)
        ring = self.circle_ring(center, radius)
        leaves = [
            self.within(fields.start, center, radius),
            self.within(fields.destination, center, radius),
            self.within(fields.via, center, radius),
            IntersectsPolygon(fields.route, tuple(tuple(v) for v in ring)),
        ]
        return self.combine(leaves, "any")

    @staticmethod
    def combine(predicates: Iterable[Predicate], mode: str = "any") -> Predicate:
        """Union ("any") or intersect ("all") predicates."""
        predicates = list(predicates)
        if mode == "any":
            return any_of(*predicates)
        if mode == "all":
            return all_of(*predicates)
        raise ValueError(f"Unknown combine mode: {mode}")

    # ------------------------------------------------------------
    # Listing plans
    # ------------------------------------------------------------

    def build_trip_search(
        self,
        pickup: Optional[GeoPoint] = None,
        dropoff: Optional[GeoPoint] = None,
        current: Optional[GeoPoint] = None,
        radius_meters=None,
        require_both: bool = False
    ) -> SearchPlan:
        """
        Trip listing plan.

        pickupDropoffBoth=true maps to REQUIRE_BOTH; otherwise a dual-point
        search uses REFINE_BY_DROPOFF.
        """
        radius = self.resolve_radius(radius_meters)
        conditions: List[Predicate] = [active_filter()]
        refine = None
        mode = SearchMode.SINGLE_POINT

        if current is not None:
            conditions.append(self.build_match_predicate(current, radius))

        if pickup is not None and dropoff is not None:
            pickup_predicate = self.build_match_predicate(pickup, radius)
            dropoff_predicate = self.build_match_predicate(dropoff, radius)
            conditions.append(pickup_predicate)
            if require_both:
                conditions.append(dropoff_predicate)
                mode = SearchMode.REQUIRE_BOTH
            else:
                refine = dropoff_predicate
                mode = SearchMode.REFINE_BY_DROPOFF
        elif pickup is not None:
            conditions.append(self.build_match_predicate(pickup, radius))
        elif dropoff is not None:
            conditions.append(self.build_match_predicate(dropoff, radius))

        plan = SearchPlan(query=self.combine(conditions, "all"), refine=refine, mode=mode)
        logger.debug(f"Trip search plan: mode={mode.value}, radius={radius}m")
        return plan

    def build_lead_search(
        self,
        pickup: Optional[GeoPoint] = None,
        dropoff: Optional[GeoPoint] = None,
        current: Optional[GeoPoint] = None,
        radius_meters=None,
        owner_id: Optional[str] = None
    ) -> SearchPlan:
        """
        Lead listing plan. Pickup and dropoff each test their own field and
        are always intersected; a current location matches either field.
        """
        conditions: List[Predicate] = [active_filter()]
        if owner_id is not None:
            conditions.append(FieldEquals("user", owner_id))

        mode = SearchMode.SINGLE_POINT
        if pickup is not None:
            conditions.append(self.within(LEAD_PICKUP_FIELD, pickup, radius_meters))
        if dropoff is not None:
            conditions.append(self.within(LEAD_DROPOFF_FIELD, dropoff, radius_meters))
        if pickup is not None and dropoff is not None:
            mode = SearchMode.REQUIRE_BOTH

        if current is not None:
            conditions.append(self.combine([
                self.within(LEAD_PICKUP_FIELD, current, radius_meters),
                self.within(LEAD_DROPOFF_FIELD, current, radius_meters),
            ], "any"))

        return SearchPlan(query=self.combine(conditions, "all"), mode=mode)

    @staticmethod
    def refine(candidates: Iterable[dict], predicate: Optional[Predicate]) -> List[dict]:
        """Keep, in order, the candidates that also satisfy `predicate`."""
        if predicate is None:
            return list(candidates)
        return [doc for doc in candidates if evaluate(predicate, doc)]
