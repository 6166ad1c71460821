from datetime import datetime
from typing import Literal, Optional, TypedDict


MessageType = Literal["text", "voice", "image"]


class ReplySnapshot(TypedDict):
    _id: str
    text: str
    sender_id: Optional[str]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    message_type: MessageType
    text: str
    # object-store key or absolute URL
    voice_url: Optional[str]
    voice_duration: Optional[float]
    reply_to: Optional[ReplySnapshot]
    is_read: bool
    read_at: Optional[datetime]
    created_at: datetime
