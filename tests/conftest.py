"""
Shared fixtures: an in-memory Motor-compatible database and seed helpers.
"""
import pytest
from datetime import datetime, timezone
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from database import init_ledger_indexes, USERS, LEADS, TRIPS
from models import Actor, BandTableKind, UserRole
from services.connect_request_service import ConnectRequestService
from services.distance_band_service import DistanceBandTable
from services.token_plan_service import TokenPlanService
from services.token_wallet_service import TokenWalletService
from services.user_directory import UserDirectory


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["freightconnect_test"]
    await init_ledger_indexes(database)
    return database


@pytest.fixture
def wallets(db):
    return TokenWalletService(db)


@pytest.fixture
def lead_tokens(db):
    return DistanceBandTable(db, BandTableKind.LEAD_TOKENS)


@pytest.fixture
def plans(db, wallets):
    return TokenPlanService(db, wallets)


@pytest.fixture
def connect_requests(db, wallets, lead_tokens):
    return ConnectRequestService(db, wallets, lead_tokens, UserDirectory(db))


async def seed_user(db, role: UserRole, name: str = None) -> Actor:
    user_id = ObjectId()
    await db[USERS].insert_one({
        "_id": user_id,
        "name": name or f"{role.value.title()} {str(user_id)[-4:]}",
        "email": f"{role.value}.{user_id}@example.com",
        "phone": "+919800000000",
        "whatsappNumber": "+919800000001",
        "role": role.value,
        "isActive": True,
    })
    return Actor(id=str(user_id), role=role)


async def seed_lead(db, customer: Actor, distance_m: int = 120000, **extra) -> str:
    doc = {
        "user": customer.id,
        "pickupLocation": {"address": "Ernakulam", "coordinates": [76.30, 9.98]},
        "dropoffLocation": {"address": "Thiruvananthapuram", "coordinates": [76.95, 8.49]},
        "distance": {"text": f"{distance_m // 1000} km", "value": distance_m},
        "isActive": True,
        "createdAt": datetime.now(timezone.utc),
        **extra,
    }
    result = await db[LEADS].insert_one(doc)
    return str(result.inserted_id)


async def seed_trip(db, driver: Actor, distance_m: int = 121000, **extra) -> str:
    doc = {
        "tripAddedBy": driver.id,
        "tripStartLocation": {"address": "Ernakulam", "coordinates": [76.31, 9.97]},
        "tripDestination": {"address": "Thiruvananthapuram", "coordinates": [76.94, 8.50]},
        "viaRoutes": [],
        "routeGeoJSON": {"type": "LineString", "coordinates": [[76.31, 9.97], [76.94, 8.50]]},
        "distance": {"text": f"{distance_m // 1000} km", "value": distance_m},
        "isActive": True,
        "createdAt": datetime.now(timezone.utc),
        **extra,
    }
    result = await db[TRIPS].insert_one(doc)
    return str(result.inserted_id)


@pytest.fixture
async def priced_lead_tokens(lead_tokens):
    """lead-tokens table: [0, 100) -> 20, [100, 500) -> 50."""
    await lead_tokens.upsert({"fromKm": 0, "toKm": 100, "cost": 20}, actor_id="admin")
    await lead_tokens.upsert({"fromKm": 100, "toKm": 500, "cost": 50}, actor_id="admin")
    return lead_tokens
