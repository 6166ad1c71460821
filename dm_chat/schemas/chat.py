from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


@dataclass(frozen=True)
class TextContent:
    text: str
    message_type: str = "text"


@dataclass(frozen=True)
class VoiceContent:
    voice_url: Optional[str]
    voice_duration: Optional[float] = None
    message_type: str = "voice"


@dataclass(frozen=True)
class ImageContent:
    text: str = ""
    message_type: str = "image"


MessageContent = Union[TextContent, VoiceContent, ImageContent]


class ReplyToIn(CamelModel):
    id: Optional[str] = Field(default=None, alias="_id")
    text: Optional[str] = None
    sender_id: Optional[str] = None


class SendMessageRequest(CamelModel):
    message_type: Literal["text", "voice", "image"] = "text"
    text: Optional[str] = None
    voice_url: Optional[str] = None
    voice_key: Optional[str] = None
    voice_duration: Optional[float] = None
    reply_to: Optional[ReplyToIn] = None

    def to_content(self) -> MessageContent:
        if self.message_type == "voice":
            return VoiceContent(voice_url=self.voice_url or self.voice_key, voice_duration=self.voice_duration)
        if self.message_type == "image":
            return ImageContent(text=self.text or "")
        return TextContent(text=self.text or "")


class DeleteConversationsRequest(CamelModel):
    conversation_ids: List[Any] = Field(default_factory=list)


class RegisterPushTokenRequest(CamelModel):
    fcm_token: str = Field(min_length=1)
    platform: Literal["android", "ios"] = "android"
    device_id: Optional[str] = None


class UnregisterPushTokenRequest(CamelModel):
    fcm_token: str = Field(min_length=1)


class ReplyToOut(CamelModel):
    id: str = Field(alias="_id")
    text: str
    sender_id: Optional[str] = None


class MessagePayload(CamelModel):
    id: str = Field(alias="_id")
    conversation_id: str
    sender_id: str
    receiver_id: str
    message_type: str
    text: str = ""
    voice_url: Optional[str] = None
    voice_duration: Optional[float] = None
    reply_to: Optional[ReplyToOut] = None
    is_read: bool = False
    read_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_document(cls, doc: Dict[str, Any], voice_url: Optional[str] = None) -> "MessagePayload":
        reply = doc.get("reply_to")
        return cls(
            id=doc["_id"],
            conversation_id=doc["conversation_id"],
            sender_id=doc["sender_id"],
            receiver_id=doc["receiver_id"],
            message_type=doc.get("message_type", "text"),
            text=doc.get("text") or "",
            voice_url=voice_url,
            voice_duration=doc.get("voice_duration"),
            reply_to=ReplyToOut(id=str(reply["_id"]), text=reply["text"], sender_id=reply.get("sender_id")) if reply else None,
            is_read=doc.get("is_read", False),
            read_at=doc.get("read_at"),
            created_at=doc["created_at"],
        )

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class LastMessageOut(CamelModel):
    text: str
    sender_id: Optional[str] = None
    created_at: Optional[datetime] = None


class OtherUser(CamelModel):
    id: str = Field(alias="_id")
    name: Optional[str] = None
    age: Optional[int] = None
    photo: Optional[str] = None
    city: Optional[str] = None
    is_online: bool = False
    last_seen: Optional[datetime] = None


class ConversationSummary(CamelModel):
    id: str = Field(alias="_id")
    other_user: Optional[OtherUser] = None
    last_message: Optional[LastMessageOut] = None
    unread_count: int = 0
    updated_at: datetime


class ConversationList(CamelModel):
    conversations: List[ConversationSummary]


class StartConversationResponse(CamelModel):
    conversation_id: str
    other_user: Optional[OtherUser] = None


class MessagePage(CamelModel):
    messages: List[MessagePayload]
    conversation_id: Optional[str] = None
    page: int
    has_more: bool


class SendMessageResponse(CamelModel):
    success: bool = True
    message: MessagePayload


class SuccessResponse(CamelModel):
    success: bool = True


class DeleteConversationsResponse(CamelModel):
    success: bool = True
    deleted_count: int


class VoiceUploadResponse(CamelModel):
    success: bool = True
    voice_key: str
    voice_url: Optional[str] = None
