"""Token routes: distance bands, usage quotes, wallets, plans."""
from fastapi import APIRouter, Depends, Query

from models import (
    Actor, UserRole, DistanceBandCreate, DistanceBandUpdate,
    WalletAdjust, TokenPlanCreate, TokenPlanUpdate, TokenPurchase,
    FreeTokenSettingsUpsert, FreeTokenGrant
)
from core.dependencies import (
    get_current_actor, get_current_admin, get_current_driver, require_roles,
    get_band_table, get_lead_tokens_table, get_trip_tokens_table,
    get_wallet_service, get_plan_service, get_user_directory
)
from services.distance_band_service import DistanceBandTable
from services.listing_service import build_pagination, normalize_paging
from services.token_plan_service import TokenPlanService
from services.token_wallet_service import TokenWalletService
from services.user_directory import UserDirectory

router = APIRouter()

driver_or_admin = require_roles(UserRole.DRIVER, UserRole.ADMIN)


# ============= DISTANCE BANDS =============

@router.post("/bands/{kind}", status_code=201)
async def create_band(
    data: DistanceBandCreate,
    admin: Actor = Depends(get_current_admin),
    table: DistanceBandTable = Depends(get_band_table)
):
    band = await table.upsert(data.model_dump(by_alias=True, exclude_none=True), actor_id=admin.id)
    return {"message": "Distance band created", "band": band}


@router.get("/bands/{kind}")
async def list_bands(
    actor: Actor = Depends(get_current_actor),
    table: DistanceBandTable = Depends(get_band_table)
):
    return {"table": table.kind.value, "bands": await table.list_bands()}


@router.put("/bands/{kind}/{band_id}")
async def update_band(
    band_id: str,
    data: DistanceBandUpdate,
    admin: Actor = Depends(get_current_admin),
    table: DistanceBandTable = Depends(get_band_table)
):
    band = await table.upsert(
        data.model_dump(by_alias=True, exclude_none=True),
        actor_id=admin.id,
        band_id=band_id
    )
    return {"message": "Distance band updated", "band": band}


@router.delete("/bands/{kind}/{band_id}")
async def delete_band(
    band_id: str,
    admin: Actor = Depends(get_current_admin),
    table: DistanceBandTable = Depends(get_band_table)
):
    await table.archive(band_id, actor_id=admin.id)
    return {"message": "Distance band deleted"}


# ============= USAGE QUOTES =============

async def _quote(table: DistanceBandTable, distance_km: float) -> dict:
    band = await table.find_band(distance_km)
    return {"distanceKm": distance_km, "tokensRequired": band["cost"], "band": band}


@router.get("/usage/lead")
async def lead_token_usage(
    distanceKm: float = Query(..., ge=0),
    actor: Actor = Depends(driver_or_admin),
    table: DistanceBandTable = Depends(get_lead_tokens_table)
):
    """Tokens a driver pays to connect on a lead of this distance."""
    return await _quote(table, distanceKm)


@router.get("/usage/trip")
async def trip_token_usage(
    distanceKm: float = Query(..., ge=0),
    actor: Actor = Depends(driver_or_admin),
    table: DistanceBandTable = Depends(get_trip_tokens_table)
):
    return await _quote(table, distanceKm)


# ============= WALLET =============

@router.get("/wallet/balance")
async def get_wallet_balance(
    driver: Actor = Depends(get_current_driver),
    wallets: TokenWalletService = Depends(get_wallet_service)
):
    return {"driverId": driver.id, "balance": await wallets.get_balance(driver.id)}


@router.get("/wallet/transactions")
async def get_wallet_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    driver: Actor = Depends(get_current_driver),
    wallets: TokenWalletService = Depends(get_wallet_service)
):
    page, limit = normalize_paging(page, limit)
    items, total = await wallets.list_transactions(driver.id, page, limit)
    return {"items": items, "pagination": build_pagination(page, limit, total)}


@router.post("/wallet/credit")
async def credit_wallet(
    data: WalletAdjust,
    admin: Actor = Depends(get_current_admin),
    wallets: TokenWalletService = Depends(get_wallet_service),
    directory: UserDirectory = Depends(get_user_directory)
):
    await directory.get_driver(data.driver_id)
    balance = await wallets.credit(data.driver_id, data.amount, data.reason, actor_id=admin.id)
    return {"message": "Tokens credited", "driverId": data.driver_id, "balance": balance}


@router.post("/wallet/debit")
async def debit_wallet(
    data: WalletAdjust,
    admin: Actor = Depends(get_current_admin),
    wallets: TokenWalletService = Depends(get_wallet_service),
    directory: UserDirectory = Depends(get_user_directory)
):
    await directory.get_driver(data.driver_id)
    balance = await wallets.debit(data.driver_id, data.amount, data.reason, actor_id=admin.id)
    return {"message": "Tokens debited", "driverId": data.driver_id, "balance": balance}


# ============= PLANS =============

@router.post("/plans", status_code=201)
async def create_plan(
    data: TokenPlanCreate,
    admin: Actor = Depends(get_current_admin),
    plans: TokenPlanService = Depends(get_plan_service)
):
    plan = await plans.create_plan(data.model_dump(by_alias=True, exclude_none=True), admin.id)
    return {"message": "Token plan created", "plan": plan}


@router.get("/plans")
async def list_plans(
    actor: Actor = Depends(driver_or_admin),
    plans: TokenPlanService = Depends(get_plan_service)
):
    return {"plans": await plans.list_plans()}


@router.put("/plans/{plan_id}")
async def update_plan(
    plan_id: str,
    data: TokenPlanUpdate,
    admin: Actor = Depends(get_current_admin),
    plans: TokenPlanService = Depends(get_plan_service)
):
    plan = await plans.update_plan(plan_id, data.model_dump(by_alias=True, exclude_none=True), admin.id)
    return {"message": "Token plan updated", "plan": plan}


@router.delete("/plans/{plan_id}")
async def delete_plan(
    plan_id: str,
    admin: Actor = Depends(get_current_admin),
    plans: TokenPlanService = Depends(get_plan_service)
):
    await plans.archive_plan(plan_id, admin.id)
    return {"message": "Token plan deleted"}


@router.post("/purchase")
async def purchase_tokens(
    data: TokenPurchase,
    driver: Actor = Depends(get_current_driver),
    plans: TokenPlanService = Depends(get_plan_service)
):
    """Credit a plan's tokens. Payment is confirmed before this call."""
    result = await plans.purchase(driver.id, data.plan_id)
    return {"message": "Tokens purchased successfully", **result}


# ============= FREE TOKENS =============

@router.post("/free-tokens")
async def upsert_free_token_settings(
    data: FreeTokenSettingsUpsert,
    admin: Actor = Depends(get_current_admin),
    plans: TokenPlanService = Depends(get_plan_service)
):
    settings_doc = await plans.upsert_free_token_settings(data.model_dump(by_alias=True), admin.id)
    return {"message": "Free token settings saved", "settings": settings_doc}


@router.post("/free-tokens/grant")
async def grant_free_tokens(
    data: FreeTokenGrant,
    admin: Actor = Depends(get_current_admin),
    plans: TokenPlanService = Depends(get_plan_service),
    directory: UserDirectory = Depends(get_user_directory)
):
    """Registration hook: credit the configured free tokens to a new driver."""
    await directory.get_driver(data.driver_id)
    balance = await plans.credit_free_tokens(data.driver_id)
    return {"credited": balance is not None, "balance": balance}
