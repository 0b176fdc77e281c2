"""Read-only access to the user registry owned by the identity service."""
from typing import Optional, Dict, Any
from bson import ObjectId

from core.exceptions import NotFoundError, ValidationError
from database import USERS
from models import UserRole


class UserDirectory:

    def __init__(self, db):
        self.users = db[USERS]

    async def get_user(self, user_id: str, resource: str = "User") -> Dict[str, Any]:
        """Active user by id, or NotFoundError."""
        user = await self.users.find_one({"_id": ObjectId(user_id), "isActive": True})
        if not user:
            raise NotFoundError(resource)
        return user

    @staticmethod
    def resolve_role(user: Dict[str, Any]) -> UserRole:
        try:
            return UserRole(user.get("role"))
        except ValueError:
            raise ValidationError(f"User {user.get('_id')} has no recognised role")

    @staticmethod
    def contact(user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        user = user or {}
        return {
            "name": user.get("name"),
            "email": user.get("email"),
            "phone": user.get("phone"),
            "whatsappNumber": user.get("whatsappNumber"),
        }

    async def get_driver(self, driver_id: str) -> Dict[str, Any]:
        """Active user by id that must hold the driver role."""
        user = await self.get_user(driver_id, "Driver")
        if self.resolve_role(user) != UserRole.DRIVER:
            raise ValidationError(f"User {driver_id} is not a driver")
        return user
