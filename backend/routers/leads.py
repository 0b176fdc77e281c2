"""Lead (customer request) listing routes."""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from models import Actor
from core.dependencies import get_current_actor, get_listing_service
from services.listing_service import ListingService

router = APIRouter()


@router.get("")
async def list_leads(
    pickupLocation: Optional[str] = Query(None, description="lng,lat"),
    dropoffLocation: Optional[str] = Query(None, description="lng,lat"),
    currentLocation: Optional[str] = Query(None, description="lng,lat"),
    searchRadius: Optional[str] = Query(None, description="meters"),
    radius: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    actor: Actor = Depends(get_current_actor),
    service: ListingService = Depends(get_listing_service)
):
    return await service.list_leads(
        actor,
        pickup_location=pickupLocation,
        dropoff_location=dropoffLocation,
        current_location=currentLocation,
        search_radius=searchRadius if searchRadius is not None else radius,
        page=page,
        limit=limit
    )
