"""
Token Plan Service

Admin-managed token purchase plans, driver purchases and the free-token
grant on registration. Payment is confirmed upstream; a purchase here is
the credit that follows a confirmed payment.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from bson import ObjectId

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from core.exceptions import ConflictError, NotFoundError
from database import TOKEN_PLANS, FREE_TOKEN_SETTINGS, serialize
from services.token_wallet_service import TokenWalletService

logger = logging.getLogger(__name__)


class TokenPlanService:

    def __init__(self, db, wallet_service: TokenWalletService):
        self.plans = db[TOKEN_PLANS]
        self.free_settings = db[FREE_TOKEN_SETTINGS]
        self.wallets = wallet_service

    async def create_plan(self, data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
        if await self.plans.find_one({"name": data["name"]}):
            raise ConflictError("Plan with this name already exists")

        now = datetime.now(timezone.utc)
        plan = {
            **data,
            "isActive": True,
            "addedBy": actor_id,
            "createdAt": now,
            "updatedAt": now
        }
        try:
            result = await self.plans.insert_one(plan)
        except DuplicateKeyError:
            raise ConflictError("Plan with this name already exists")
        plan["_id"] = result.inserted_id

        logger.info(f"Token plan '{plan['name']}' created by {actor_id}")
        return serialize(plan)

    async def update_plan(self, plan_id: str, data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
        if "name" in data:
            clash = await self.plans.find_one({"name": data["name"], "_id": {"$ne": ObjectId(plan_id)}})
            if clash:
                raise ConflictError("Plan with this name already exists")

        try:
            plan = await self.plans.find_one_and_update(
                {"_id": ObjectId(plan_id), "isActive": True},
                {"$set": {**data, "lastUpdatedBy": actor_id, "updatedAt": datetime.now(timezone.utc)}},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError("Plan with this name already exists")
        if not plan:
            raise NotFoundError("Token plan")
        return serialize(plan)

    async def list_plans(self) -> List[Dict[str, Any]]:
        plans = await self.plans.find({"isActive": True}).sort("tokensAmount", 1).to_list(100)
        return [serialize(p) for p in plans]

    async def archive_plan(self, plan_id: str, actor_id: str) -> Dict[str, Any]:
        plan = await self.plans.find_one_and_update(
            {"_id": ObjectId(plan_id), "isActive": True},
            {"$set": {"isActive": False, "deletedBy": actor_id, "updatedAt": datetime.now(timezone.utc)}},
            return_document=ReturnDocument.AFTER
        )
        if not plan:
            raise NotFoundError("Token plan")
        logger.info(f"Token plan {plan_id} archived by {actor_id}")
        return serialize(plan)

    async def purchase(self, driver_id: str, plan_id: str) -> Dict[str, Any]:
        """Credit the plan's tokens to the driver after payment confirmation."""
        plan = await self.plans.find_one({"_id": ObjectId(plan_id), "isActive": True})
        if not plan:
            raise NotFoundError("Token plan")

        balance = await self.wallets.credit(
            driver_id,
            plan["tokensAmount"],
            f"Purchase plan {plan['name']}",
            actor_id=driver_id,
            plan_id=str(plan["_id"])
        )
        return {
            "walletBalance": balance,
            "tokensCredited": plan["tokensAmount"],
            "plan": {"id": str(plan["_id"]), "name": plan["name"]}
        }

    async def upsert_free_token_settings(self, data: Dict[str, Any], actor_id: str) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        settings_doc = await self.free_settings.find_one_and_update(
            {},
            {
                "$set": {**data, "lastUpdatedBy": actor_id, "updatedAt": now},
                "$setOnInsert": {"addedBy": actor_id, "createdAt": now}
            },
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
        return serialize(settings_doc)

    async def credit_free_tokens(self, driver_id: str) -> Optional[int]:
        """Registration hook: grant the configured free tokens, if any."""
        settings_doc = await self.free_settings.find_one({"isActive": True})
        if not settings_doc or not settings_doc.get("tokensOnRegistration"):
            return None
        return await self.wallets.credit(
            driver_id,
            settings_doc["tokensOnRegistration"],
            "Free tokens on registration",
            actor_id=None
        )
