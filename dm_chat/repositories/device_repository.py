from datetime import datetime, timezone
from typing import List, Optional

from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from dm_chat.models.device import DeviceTokenDocument


class DeviceRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["device_tokens"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("fcm_token", ASCENDING)], unique=True)
        await self.collection.create_index([("user_id", ASCENDING), ("is_active", ASCENDING)])

    async def upsert_token(
        self,
        user_id: str,
        fcm_token: str,
        platform: str = "android",
        device_id: Optional[str] = None,
    ) -> DeviceTokenDocument:
        now = datetime.now(timezone.utc)
        update = {
            "$set": {
                "user_id": user_id,
                "platform": platform,
                "device_id": device_id,
                "is_active": True,
                "updated_at": now,
            },
            "$setOnInsert": {"created_at": now},
        }
        try:
            doc = await self.collection.find_one_and_update(
                {"fcm_token": fcm_token}, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            logger.debug("Device token upsert race, updating in place")
            doc = await self.collection.find_one_and_update(
                {"fcm_token": fcm_token}, update, return_document=ReturnDocument.AFTER
            )
        doc["_id"] = str(doc.get("_id"))
        return doc

    async def get_active_tokens(self, user_id: str) -> List[DeviceTokenDocument]:
        cur = self.collection.find({"user_id": user_id, "is_active": True})
        items = await cur.to_list(length=500)
        for it in items:
            it["_id"] = str(it.get("_id"))
        return items

    async def deactivate_tokens(self, fcm_tokens: List[str]) -> int:
        if not fcm_tokens:
            return 0
        result = await self.collection.update_many(
            {"fcm_token": {"$in": fcm_tokens}},
            {"$set": {"is_active": False, "updated_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count or 0

    async def delete_token(self, user_id: str, fcm_token: str) -> int:
        result = await self.collection.delete_one({"fcm_token": fcm_token, "user_id": user_id})
        return result.deleted_count or 0
