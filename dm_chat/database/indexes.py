from motor.motor_asyncio import AsyncIOMotorDatabase

from dm_chat.repositories.conversation_repository import ConversationRepository
from dm_chat.repositories.device_repository import DeviceRepository
from dm_chat.repositories.message_repository import MessageRepository


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await ConversationRepository(db).ensure_indexes()
    await MessageRepository(db).ensure_indexes()
    await DeviceRepository(db).ensure_indexes()
