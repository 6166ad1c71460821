from datetime import datetime
from typing import Dict, List, Optional, TypedDict


class LastMessageSnapshot(TypedDict):
    text: str
    sender_id: str
    created_at: datetime


class ConversationDocument(TypedDict, total=False):
    _id: str
    participants: List[str]
    # "<low id>:<high id>", unique per unordered pair
    pair_key: str
    last_message: Optional[LastMessageSnapshot]
    # per-user unread counters (user_id -> count)
    unread_count: Dict[str, int]
    created_at: datetime
    updated_at: datetime
