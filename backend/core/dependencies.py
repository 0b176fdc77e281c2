"""Common dependencies for FastAPI routes."""
from fastapi import Depends

from auth import get_current_token_payload
from core.config import settings
from core.exceptions import ForbiddenError, UnauthorizedError
from database import get_database
from models import Actor, BandTableKind, UserRole
from services.connect_request_service import ConnectRequestService
from services.distance_band_service import DistanceBandTable
from services.listing_service import ListingService
from services.proximity_service import ProximityMatcher
from services.token_plan_service import TokenPlanService
from services.token_wallet_service import TokenWalletService
from services.user_directory import UserDirectory


def get_db():
    """Database handle; overridden in tests."""
    return get_database()


def get_current_actor(payload: dict = Depends(get_current_token_payload)) -> Actor:
    """Authenticated caller with the role carried in the token."""
    try:
        return Actor(id=payload["user_id"], role=UserRole(payload["role"]))
    except ValueError:
        raise UnauthorizedError("Invalid token")


def require_roles(*roles: UserRole):
    """Dependency factory restricting a route to the given roles."""
    allowed = {r.value for r in roles}

    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role.value not in allowed:
            raise ForbiddenError(f"Requires role: {', '.join(sorted(allowed))}")
        return actor

    return dependency


get_current_admin = require_roles(UserRole.ADMIN)
get_current_driver = require_roles(UserRole.DRIVER)


# ============================================================
# SERVICES
# ============================================================

def get_matcher() -> ProximityMatcher:
    return ProximityMatcher(
        earth_radius_m=settings.earth_radius_m,
        vertices=settings.circle_polygon_vertices,
        default_radius_m=settings.default_search_radius_m
    )


def get_wallet_service(db=Depends(get_db)) -> TokenWalletService:
    return TokenWalletService(db)


def get_band_table(kind: BandTableKind, db=Depends(get_db)) -> DistanceBandTable:
    return DistanceBandTable(db, kind)


def get_lead_tokens_table(db=Depends(get_db)) -> DistanceBandTable:
    return DistanceBandTable(db, BandTableKind.LEAD_TOKENS)


def get_trip_tokens_table(db=Depends(get_db)) -> DistanceBandTable:
    return DistanceBandTable(db, BandTableKind.TRIP_TOKENS)


def get_plan_service(
    db=Depends(get_db),
    wallets: TokenWalletService = Depends(get_wallet_service)
) -> TokenPlanService:
    return TokenPlanService(db, wallets)


def get_listing_service(
    db=Depends(get_db),
    matcher: ProximityMatcher = Depends(get_matcher)
) -> ListingService:
    return ListingService(db, matcher)


def get_user_directory(db=Depends(get_db)) -> UserDirectory:
    return UserDirectory(db)


def get_connect_request_service(
    db=Depends(get_db),
    wallets: TokenWalletService = Depends(get_wallet_service),
    lead_tokens: DistanceBandTable = Depends(get_lead_tokens_table),
    directory: UserDirectory = Depends(get_user_directory)
) -> ConnectRequestService:
    return ConnectRequestService(db, wallets, lead_tokens, directory)
