from typing import Optional

from fastapi import APIRouter, Body, Depends, File, UploadFile, status

from dm_chat.core.config import Settings
from dm_chat.core.errors import InvalidInput
from dm_chat.schemas.chat import (
    ConversationList,
    DeleteConversationsRequest,
    DeleteConversationsResponse,
    MessagePage,
    SendMessageRequest,
    SendMessageResponse,
    StartConversationResponse,
    SuccessResponse,
    VoiceUploadResponse,
)
from dm_chat.services.chat_service import ChatService
from dm_chat.services.storage_service import ObjectStorage, validate_voice_upload
from dm_chat.utils.dependencies import get_chat_service, get_current_user, get_settings_dependency, get_storage
from dm_chat.utils.security import Identity


router = APIRouter(prefix="/chats", tags=["chat"])


@router.get("", response_model=ConversationList)
async def list_conversations(current_user: Identity = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    conversations = await service.get_conversations(current_user.user_id)
    return ConversationList(conversations=conversations)


@router.delete("", response_model=DeleteConversationsResponse)
async def delete_conversations(
    body: Optional[DeleteConversationsRequest] = Body(default=None),
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    ids = body.conversation_ids if body else []
    deleted = await service.delete_conversations(current_user.user_id, ids)
    return DeleteConversationsResponse(deleted_count=deleted)


@router.post("/upload-voice", response_model=VoiceUploadResponse)
async def upload_voice(
    voice: Optional[UploadFile] = File(default=None),
    current_user: Identity = Depends(get_current_user),
    storage: ObjectStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings_dependency),
):
    if voice is None:
        raise InvalidInput("No voice file uploaded")
    body = await voice.read(settings.voice_max_bytes + 1)
    validate_voice_upload(voice.filename, voice.content_type, len(body), settings.voice_max_bytes)
    key = await storage.upload_voice(current_user.user_id, voice.filename, voice.content_type, body)
    return VoiceUploadResponse(voice_key=key, voice_url=storage.signed_url(key))


@router.get("/start/{recipient_id}", response_model=StartConversationResponse)
async def start_conversation(recipient_id: str, current_user: Identity = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.start_conversation(current_user.user_id, recipient_id)


@router.get("/{recipient_id}/messages", response_model=MessagePage)
async def get_messages(
    recipient_id: str,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.get_messages(current_user.user_id, recipient_id, page=page, limit=limit)


@router.post("/{recipient_id}/messages", response_model=SendMessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    recipient_id: str,
    body: SendMessageRequest,
    current_user: Identity = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    message = await service.send_message(current_user.user_id, recipient_id, body.to_content(), reply_to=body.reply_to)
    return SendMessageResponse(message=message)


@router.post("/{conversation_id}/read", response_model=SuccessResponse)
async def mark_as_read(conversation_id: str, current_user: Identity = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    await service.mark_as_read(current_user.user_id, conversation_id)
    return SuccessResponse()
