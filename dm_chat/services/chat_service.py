import asyncio
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId
from loguru import logger

from dm_chat.core.errors import InvalidInput, InvalidRecipient, NotFound, Unauthorized
from dm_chat.repositories.conversation_repository import ConversationRepository
from dm_chat.repositories.message_repository import MessageRepository
from dm_chat.repositories.user_repository import UserRepository
from dm_chat.schemas.chat import (
    ConversationSummary,
    ImageContent,
    LastMessageOut,
    MessageContent,
    MessagePage,
    MessagePayload,
    OtherUser,
    ReplyToIn,
    StartConversationResponse,
    TextContent,
    VoiceContent,
)
from dm_chat.services.push_service import PushDispatcher
from dm_chat.services.storage_service import ObjectStorage, first_photo_key
from dm_chat.utils.background import TaskSupervisor
from dm_chat.utils.websocket_manager import UserEmitter


VOICE_PREVIEW = "🎤 Voice message"
IMAGE_PREVIEW = "📷 Photo"

DEFAULT_PAGE_SIZE = 30
MAX_PAGE_SIZE = 50


def clamp_page(page: Any) -> int:
    try:
        return max(1, int(page))
    except (TypeError, ValueError):
        return 1


def clamp_limit(limit: Any) -> int:
    try:
        value = int(limit)
    except (TypeError, ValueError):
        return DEFAULT_PAGE_SIZE
    if value == 0:
        return DEFAULT_PAGE_SIZE
    return min(MAX_PAGE_SIZE, max(1, value))


class ChatService:
    """Conversation state plus fan-out of new messages.

    The persisted message and the conversation counters are the source of
    truth. Push and realtime delivery are detached side effects whose outcome
    never reaches the caller.
    """

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        user_repo: UserRepository,
        emitter: UserEmitter,
        push: PushDispatcher,
        storage: ObjectStorage,
        tasks: TaskSupervisor,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._user_repo = user_repo
        self._emitter = emitter
        self._push = push
        self._storage = storage
        self._tasks = tasks

    async def send_message(
        self,
        sender_id: str,
        recipient_id: str,
        content: MessageContent,
        reply_to: Optional[ReplyToIn] = None,
    ) -> MessagePayload:
        self._check_identity(sender_id)
        self._check_recipient(sender_id, recipient_id)

        text = ""
        voice_url = None
        voice_duration = None
        if isinstance(content, TextContent):
            text = (content.text or "").strip()
            if not text:
                raise InvalidInput("Message text is required")
            preview = text
        elif isinstance(content, VoiceContent):
            if not content.voice_url or not content.voice_url.strip():
                raise InvalidInput("Voice URL is required")
            voice_url = content.voice_url.strip()
            voice_duration = content.voice_duration or 0
            preview = VOICE_PREVIEW
        elif isinstance(content, ImageContent):
            text = (content.text or "").strip()
            preview = text or IMAGE_PREVIEW
        else:
            raise InvalidInput("Unsupported message type")

        reply_snapshot = self._reply_snapshot(reply_to)

        convo = await self._conversation_repo.get_or_create_for_pair(sender_id, recipient_id)
        saved = await self._message_repo.save_message(
            conversation_id=convo["_id"],
            sender_id=sender_id,
            receiver_id=recipient_id,
            message_type=content.message_type,
            text=text,
            voice_url=voice_url,
            voice_duration=voice_duration,
            reply_to=reply_snapshot,
        )
        await self._conversation_repo.apply_new_message(
            convo["_id"], preview, sender_id, recipient_id, saved["created_at"]
        )
        logger.info(f"Message sent | type={content.message_type} from={sender_id} to={recipient_id}")

        payload = self._present_message(saved)
        self._dispatch(payload, push_text="" if isinstance(content, VoiceContent) else preview)
        return payload

    def _dispatch(self, payload: MessagePayload, push_text: str) -> None:
        message_id = payload.id
        self._tasks.spawn(
            self._emitter.emit_to_user(
                payload.receiver_id,
                "new_message",
                {"message": payload.to_json(), "senderId": payload.sender_id},
            ),
            name=f"realtime:{message_id}",
        )
        self._tasks.spawn(self._push_new_message(payload, push_text), name=f"push:{message_id}")

    async def _push_new_message(self, payload: MessagePayload, text: str) -> None:
        sender_profile = await self._user_repo.get_profile(payload.sender_id)
        await self._push.send_new_message_notification(
            recipient_id=payload.receiver_id,
            sender_id=payload.sender_id,
            sender_profile=sender_profile,
            text=text,
            conversation_id=payload.conversation_id,
            message_id=payload.id,
        )

    async def start_conversation(self, user_id: str, recipient_id: str) -> StartConversationResponse:
        self._check_identity(user_id)
        self._check_recipient(user_id, recipient_id)
        convo = await self._conversation_repo.get_or_create_for_pair(user_id, recipient_id)
        other = await self._other_user(recipient_id)
        return StartConversationResponse(conversation_id=convo["_id"], other_user=other)

    async def get_conversations(self, user_id: str) -> List[ConversationSummary]:
        self._check_identity(user_id)
        conversations = await self._conversation_repo.list_for_user(user_id)
        summaries = await asyncio.gather(*(self._summarize(user_id, c) for c in conversations))
        logger.info(f"Listed conversations | user={user_id} count={len(summaries)}")
        return list(summaries)

    async def _summarize(self, user_id: str, convo: Dict[str, Any]) -> ConversationSummary:
        other_id = next((p for p in convo.get("participants", []) if p != user_id), None)
        other = await self._other_user(other_id) if other_id else None
        last = convo.get("last_message")
        return ConversationSummary(
            id=convo["_id"],
            other_user=other,
            last_message=LastMessageOut(
                text=last.get("text") or "",
                sender_id=last.get("sender_id"),
                created_at=last.get("created_at"),
            ) if last else None,
            unread_count=int(convo.get("unread_count", {}).get(user_id, 0)),
            updated_at=convo["updated_at"],
        )

    async def _other_user(self, user_id: str) -> Optional[OtherUser]:
        profile = await self._user_repo.get_profile(user_id)
        if not profile:
            return None
        return OtherUser(
            id=profile["_id"],
            name=profile.get("name"),
            age=profile.get("age"),
            photo=self._storage.signed_url(first_photo_key(profile.get("userPhoto"))),
            city=profile.get("city"),
            is_online=bool(profile.get("isOnline", False)),
            last_seen=profile.get("lastSeen"),
        )

    async def get_messages(self, user_id: str, recipient_id: str, page: Any = 1, limit: Any = DEFAULT_PAGE_SIZE) -> MessagePage:
        self._check_identity(user_id)
        if not ObjectId.is_valid(recipient_id or ""):
            raise InvalidRecipient()
        page = clamp_page(page)
        limit = clamp_limit(limit)

        convo = await self._conversation_repo.find_for_pair(user_id, recipient_id)
        if not convo:
            return MessagePage(messages=[], conversation_id=None, page=page, has_more=False)

        items = await self._message_repo.page_for_conversation(convo["_id"], skip=(page - 1) * limit, limit=limit + 1)
        has_more = len(items) > limit
        items = items[:limit]
        items.reverse()
        logger.debug(f"Fetched messages | conversation={convo['_id']} count={len(items)}")
        return MessagePage(
            messages=[self._present_message(it) for it in items],
            conversation_id=convo["_id"],
            page=page,
            has_more=has_more,
        )

    async def mark_as_read(self, user_id: str, conversation_id: str) -> int:
        self._check_identity(user_id)
        if not ObjectId.is_valid(conversation_id or ""):
            raise InvalidInput("Invalid conversation id")
        modified = await self._message_repo.mark_read_for_receiver(conversation_id, user_id)
        await self._conversation_repo.reset_unread(conversation_id, user_id)
        logger.info(f"Marked read | user={user_id} conversation={conversation_id} messages={modified}")
        return modified

    async def delete_conversations(self, user_id: str, conversation_ids: Sequence[Any]) -> int:
        self._check_identity(user_id)
        if not conversation_ids:
            raise InvalidInput("No conversation IDs provided")

        owned: List[str] = []
        for cid in conversation_ids:
            cid = str(cid)
            if not ObjectId.is_valid(cid) or cid in owned:
                continue
            if await self._conversation_repo.find_owned(cid, user_id):
                owned.append(cid)

        if not owned:
            raise NotFound("No valid conversations found")

        await self._message_repo.delete_for_conversations(owned)
        deleted = await self._conversation_repo.delete_many(owned)
        logger.info(f"Deleted conversations | user={user_id} count={deleted}")
        return deleted

    def _present_message(self, doc: Dict[str, Any]) -> MessagePayload:
        return MessagePayload.from_document(doc, voice_url=self._storage.resolve(doc.get("voice_url")))

    @staticmethod
    def _check_identity(user_id: str) -> None:
        if not user_id or not ObjectId.is_valid(user_id):
            raise Unauthorized()

    @staticmethod
    def _check_recipient(sender_id: str, recipient_id: str) -> None:
        if not recipient_id or not ObjectId.is_valid(recipient_id):
            raise InvalidRecipient()
        if recipient_id == sender_id:
            raise InvalidRecipient("Cannot message yourself")

    @staticmethod
    def _reply_snapshot(reply_to: Optional[ReplyToIn]) -> Optional[Dict[str, Any]]:
        if not reply_to or not reply_to.id or not reply_to.text:
            return None
        if not ObjectId.is_valid(reply_to.id):
            raise InvalidInput("Invalid reply message id")
        if reply_to.sender_id and not ObjectId.is_valid(reply_to.sender_id):
            raise InvalidInput("Invalid reply sender id")
        return {"_id": reply_to.id, "text": reply_to.text, "sender_id": reply_to.sender_id}
