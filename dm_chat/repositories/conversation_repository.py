from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from loguru import logger
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from dm_chat.models.conversation import ConversationDocument


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("pair_key", ASCENDING)], unique=True)
        await self.collection.create_index([("participants", ASCENDING), ("updated_at", DESCENDING)])

    @staticmethod
    def pair_key(user_a: str, user_b: str) -> str:
        low, high = sorted([user_a, user_b])
        return f"{low}:{high}"

    async def find_for_pair(self, user_a: str, user_b: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"pair_key": self.pair_key(user_a, user_b)})
        return self._normalize(doc) if doc else None

    async def get_or_create_for_pair(self, user_a: str, user_b: str) -> ConversationDocument:
        key = self.pair_key(user_a, user_b)
        now = datetime.now(timezone.utc)
        try:
            doc = await self.collection.find_one_and_update(
                {"pair_key": key},
                {
                    "$setOnInsert": {
                        "participants": sorted([user_a, user_b]),
                        "last_message": None,
                        "unread_count": {},
                        "created_at": now,
                        "updated_at": now,
                    }
                },
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            # lost the upsert race on pair_key; the winner's record is there now
            logger.debug(f"Conversation upsert race | pair={key}")
            doc = await self.collection.find_one({"pair_key": key})
        return self._normalize(doc)

    async def apply_new_message(
        self,
        conversation_id: str,
        preview: str,
        sender_id: str,
        recipient_id: str,
        created_at: datetime,
    ) -> None:
        await self.collection.update_one(
            {"_id": ObjectId(conversation_id)},
            {
                "$set": {
                    "last_message": {
                        "text": preview,
                        "sender_id": sender_id,
                        "created_at": created_at,
                    },
                    "updated_at": datetime.now(timezone.utc),
                },
                "$inc": {f"unread_count.{recipient_id}": 1},
            },
        )

    async def reset_unread(self, conversation_id: str, user_id: str) -> bool:
        result = await self.collection.update_one(
            {"_id": ObjectId(conversation_id), "participants": user_id},
            {"$set": {f"unread_count.{user_id}": 0}},
        )
        return bool(result.matched_count)

    async def find_owned(self, conversation_id: str, user_id: str) -> Optional[ConversationDocument]:
        doc = await self.collection.find_one({"_id": ObjectId(conversation_id), "participants": user_id})
        return self._normalize(doc) if doc else None

    async def list_for_user(self, user_id: str) -> List[ConversationDocument]:
        cur = self.collection.find({"participants": user_id}).sort([("updated_at", DESCENDING), ("_id", DESCENDING)])
        items = await cur.to_list(length=None)
        return [self._normalize(it) for it in items]

    async def delete_many(self, conversation_ids: Iterable[str]) -> int:
        oids = [ObjectId(cid) for cid in conversation_ids]
        result = await self.collection.delete_many({"_id": {"$in": oids}})
        return result.deleted_count or 0

    @staticmethod
    def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
        doc["_id"] = str(doc.get("_id"))
        doc.setdefault("unread_count", {})
        doc.setdefault("last_message", None)
        return doc
