from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from dm_chat.models.message import MessageDocument


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", DESCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("is_read", ASCENDING)])

    async def save_message(
        self,
        conversation_id: str,
        sender_id: str,
        receiver_id: str,
        message_type: str,
        text: str,
        voice_url: Optional[str] = None,
        voice_duration: Optional[float] = None,
        reply_to: Optional[Dict[str, Any]] = None,
    ) -> MessageDocument:
        doc: Dict[str, Any] = {
            "conversation_id": ObjectId(conversation_id),
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "message_type": message_type,
            "text": text,
            "voice_url": voice_url,
            "voice_duration": voice_duration,
            "reply_to": reply_to,
            "is_read": False,
            "read_at": None,
            "created_at": datetime.now(timezone.utc),
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return self._normalize(doc)

    async def page_for_conversation(self, conversation_id: str, skip: int, limit: int) -> List[MessageDocument]:
        """Newest-first slice of a conversation's log."""
        cur = (
            self.collection.find({"conversation_id": ObjectId(conversation_id)})
            .sort([("created_at", DESCENDING), ("_id", DESCENDING)])
            .skip(skip)
            .limit(limit)
        )
        items = await cur.to_list(length=limit)
        return [self._normalize(it) for it in items]

    async def mark_read_for_receiver(self, conversation_id: str, receiver_id: str) -> int:
        result = await self.collection.update_many(
            {"conversation_id": ObjectId(conversation_id), "receiver_id": receiver_id, "is_read": False},
            {"$set": {"is_read": True, "read_at": datetime.now(timezone.utc)}},
        )
        return result.modified_count or 0

    async def delete_for_conversations(self, conversation_ids: Iterable[str]) -> int:
        oids = [ObjectId(cid) for cid in conversation_ids]
        result = await self.collection.delete_many({"conversation_id": {"$in": oids}})
        return result.deleted_count or 0

    @staticmethod
    def _normalize(doc: Dict[str, Any]) -> Dict[str, Any]:
        doc["_id"] = str(doc.get("_id"))
        doc["conversation_id"] = str(doc.get("conversation_id"))
        return doc
