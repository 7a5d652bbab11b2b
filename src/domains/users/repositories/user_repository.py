"""
User repository - MongoDB-backed UserStore
"""

from typing import Optional, List
from datetime import datetime
import logging

from motor.motor_asyncio import AsyncIOMotorCollection

from core.database import BaseRepository
from domains.users.models.user import BloodType, User, UserRole
from domains.users.repositories.user_store import UserStore


logger = logging.getLogger(__name__)


class UserRepository(BaseRepository, UserStore):
    """Repository over the shared ``users`` collection"""

    def __init__(self, collection: AsyncIOMotorCollection, timeout: Optional[float] = None):
        super().__init__(collection, timeout)

    async def query_donors(self, blood_type: BloodType, low: str, high: str) -> List[User]:
        docs = await self.find_many({
            "role": UserRole.DONOR.value,
            "blood_type": blood_type.value,
            "is_available": True,
            "location.spatial_key": {"$gte": low, "$lte": high},
        })
        return [User.from_doc(doc) for doc in docs]

    async def get(self, user_id: str) -> Optional[User]:
        doc = await self.find_one({"_id": user_id})
        return User.from_doc(doc) if doc else None

    async def find_by_phone(self, phone: str, role: Optional[UserRole] = None, limit: int = 2) -> List[User]:
        query = {"phone_number": phone}
        if role is not None:
            query["role"] = role.value
        docs = await self.find_many(query, limit=limit)
        return [User.from_doc(doc) for doc in docs]

    async def find_lapsed_donors(self, cutoff: datetime) -> List[User]:
        docs = await self.find_many(
            {
                "role": UserRole.DONOR.value,
                "is_available": True,
                "last_donation_at": {"$lt": cutoff},
            },
            sort=[("last_donation_at", 1)]
        )
        return [User.from_doc(doc) for doc in docs]

    async def mark_reminded(self, user_id: str, at: datetime) -> None:
        await self.update_one(
            {"_id": user_id},
            {"$set": {"last_reminder_sent_at": at}}
        )

    async def set_spatial_key(self, user_id: str, latitude: float, longitude: float, spatial_key: str) -> bool:
        matched = await self.update_one(
            {
                "_id": user_id,
                "location.latitude": latitude,
                "location.longitude": longitude,
            },
            {"$set": {"location.spatial_key": spatial_key}}
        )
        if not matched:
            logger.info(f"User {user_id} location changed before tagging; skipped")
        return matched > 0
