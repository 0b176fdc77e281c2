"""Candidate listings for trips and leads, filtered by proximity."""
import logging
import math
from typing import Optional, Dict, Any, Tuple

from core.config import settings
from database import LEADS, TRIPS, serialize
from models import Actor, UserRole
from predicates import to_mongo
from services.proximity_service import ProximityMatcher, SearchPlan

logger = logging.getLogger(__name__)


def normalize_paging(page: Optional[int], limit: Optional[int]) -> Tuple[int, int]:
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else settings.default_page_limit
    return page, min(limit, settings.max_page_limit)


def build_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }


class ListingService:

    def __init__(self, db, matcher: Optional[ProximityMatcher] = None):
        self.trips = db[TRIPS]
        self.leads = db[LEADS]
        self.matcher = matcher or ProximityMatcher()

    async def _run(self, collection, plan: SearchPlan, page: int, limit: int) -> Dict[str, Any]:
        query = to_mongo(plan.query)
        skip = (page - 1) * limit

        if plan.refine is None:
            total = await collection.count_documents(query)
            docs = await collection.find(query).sort("createdAt", -1).skip(skip).limit(limit).to_list(limit)
        else:
            # Narrow the full pickup candidate set, then page the survivors
            cap = settings.refine_candidate_cap
            candidates = await collection.find(query).sort("createdAt", -1).to_list(cap)
            if len(candidates) >= cap:
                logger.warning(f"Refine candidate set hit the cap of {cap}; results may be truncated")
            refined = self.matcher.refine(candidates, plan.refine)
            total = len(refined)
            docs = refined[skip:skip + limit]

        return {
            "items": [serialize(d) for d in docs],
            "pagination": build_pagination(page, limit, total),
        }

    async def list_trips(
        self,
        pickup_location: Optional[str] = None,
        dropoff_location: Optional[str] = None,
        current_location: Optional[str] = None,
        search_radius=None,
        pickup_dropoff_both: bool = False,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        page, limit = normalize_paging(page, limit)
        plan = self.matcher.build_trip_search(
            pickup=self.matcher.parse_point(pickup_location),
            dropoff=self.matcher.parse_point(dropoff_location),
            current=self.matcher.parse_point(current_location),
            radius_meters=search_radius,
            require_both=pickup_dropoff_both
        )
        result = await self._run(self.trips, plan, page, limit)
        result["searchMode"] = plan.mode.value
        return result

    async def list_leads(
        self,
        actor: Actor,
        pickup_location: Optional[str] = None,
        dropoff_location: Optional[str] = None,
        current_location: Optional[str] = None,
        search_radius=None,
        page: Optional[int] = None,
        limit: Optional[int] = None
    ) -> Dict[str, Any]:
        """Customers only see their own leads; drivers and admins see all active leads."""
        page, limit = normalize_paging(page, limit)
        owner_id = actor.id if actor.role == UserRole.CUSTOMER else None
        plan = self.matcher.build_lead_search(
            pickup=self.matcher.parse_point(pickup_location),
            dropoff=self.matcher.parse_point(dropoff_location),
            current=self.matcher.parse_point(current_location),
            radius_meters=search_radius,
            owner_id=owner_id
        )
        result = await self._run(self.leads, plan, page, limit)
        result["searchMode"] = plan.mode.value
        return result
