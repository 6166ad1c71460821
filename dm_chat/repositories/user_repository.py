from typing import Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from dm_chat.models.user import UserProfileDocument


PROFILE_PROJECTION = {"name": 1, "age": 1, "userPhoto": 1, "city": 1, "isOnline": 1, "lastSeen": 1}


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db.get_collection("users")

    async def get_profile(self, user_id: str) -> Optional[UserProfileDocument]:
        if not ObjectId.is_valid(user_id):
            return None
        user = await self._collection.find_one({"_id": ObjectId(user_id)}, PROFILE_PROJECTION)
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user
