"""API Routers for FreightConnect application."""
from fastapi import APIRouter

from .connect_requests import router as connect_requests_router
from .trips import router as trips_router
from .leads import router as leads_router
from .tokens import router as tokens_router

def create_api_router() -> APIRouter:
    """Create and configure the main API router."""
    api_router = APIRouter(prefix="/api")

    api_router.include_router(connect_requests_router, prefix="/connect-requests", tags=["Connect Requests"])
    api_router.include_router(trips_router, prefix="/trips", tags=["Trips"])
    api_router.include_router(leads_router, prefix="/leads", tags=["Leads"])
    api_router.include_router(tokens_router, prefix="/tokens", tags=["Tokens"])

    return api_router
