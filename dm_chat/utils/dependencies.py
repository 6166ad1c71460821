from typing import Optional

from fastapi import Depends, Header, Request

from dm_chat.core.config import Settings
from dm_chat.database.connection import mongo_db_dependency
from dm_chat.repositories.conversation_repository import ConversationRepository
from dm_chat.repositories.device_repository import DeviceRepository
from dm_chat.repositories.message_repository import MessageRepository
from dm_chat.repositories.user_repository import UserRepository
from dm_chat.services.chat_service import ChatService
from dm_chat.services.push_service import PushDispatcher
from dm_chat.services.storage_service import ObjectStorage
from dm_chat.utils.security import Identity, bearer_token, resolve_identity


def get_settings_dependency(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


async def get_current_user(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings_dependency),
) -> Identity:
    return resolve_identity(bearer_token(authorization), settings)


def get_push_dispatcher(request: Request, db=Depends(mongo_db_dependency)) -> PushDispatcher:
    return PushDispatcher(DeviceRepository(db), request.app.state.push)


def get_chat_service(
    request: Request,
    db=Depends(mongo_db_dependency),
    push: PushDispatcher = Depends(get_push_dispatcher),
) -> ChatService:
    state = request.app.state
    return ChatService(
        message_repo=MessageRepository(db),
        conversation_repo=ConversationRepository(db),
        user_repo=UserRepository(db),
        emitter=state.hub,
        push=push,
        storage=state.storage,
        tasks=state.tasks,
    )
