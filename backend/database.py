from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional
import logging

from core.config import settings

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

_client: Optional[AsyncIOMotorClient] = None

# Collection names
USERS = "users"
LEADS = "customer_requests"
TRIPS = "trips"
CONNECT_REQUESTS = "connect_requests"
TOKEN_WALLETS = "token_wallets"
TOKEN_TRANSACTIONS = "token_transactions"
TOKEN_PLANS = "token_purchase_plans"
FREE_TOKEN_SETTINGS = "free_token_settings"
DISTANCE_BANDS = "distance_bands"


def get_client() -> AsyncIOMotorClient:
    """Lazily create the shared Motor client."""
    global _client
    if _client is None:
        _client = AsyncIOMotorClient(settings.mongo_url)
    return _client


def get_database():
    return get_client()[settings.db_name]


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Copy a stored document for API output, exposing `_id` as `id`."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


async def init_ledger_indexes(db):
    """Uniqueness constraints the settlement core relies on."""
    await db[TOKEN_WALLETS].create_index("driver", unique=True)
    await db[TOKEN_TRANSACTIONS].create_index([("driver", 1), ("createdAt", -1)])
    await db[TOKEN_PLANS].create_index("name", unique=True)
    await db[CONNECT_REQUESTS].create_index(
        [("initiator", 1), ("recipient", 1), ("lead", 1), ("trip", 1)],
        unique=True,
        partialFilterExpression={"isActive": True},
        name="unique_active_connect_request"
    )
    await db[CONNECT_REQUESTS].create_index([("initiator", 1), ("status", 1)])
    await db[CONNECT_REQUESTS].create_index([("recipient", 1), ("status", 1)])


async def init_geo_indexes(db):
    """2dsphere indexes backing the proximity predicates."""
    await db[LEADS].create_index([("pickupLocation.coordinates", "2dsphere")])
    await db[LEADS].create_index([("dropoffLocation.coordinates", "2dsphere")])
    await db[LEADS].create_index("user")
    await db[TRIPS].create_index([("tripStartLocation.coordinates", "2dsphere")])
    await db[TRIPS].create_index([("tripDestination.coordinates", "2dsphere")])
    await db[TRIPS].create_index([("viaRoutes.coordinates", "2dsphere")])
    await db[TRIPS].create_index([("routeGeoJSON", "2dsphere")])
    await db[TRIPS].create_index("tripAddedBy")


async def init_indexes(db=None):
    """Initialize database indexes"""
    db = db if db is not None else get_database()
    await init_ledger_indexes(db)
    await init_geo_indexes(db)
    logger.info("Database indexes created successfully")
