from datetime import datetime
from typing import Any, List, Optional, TypedDict


class UserProfileDocument(TypedDict, total=False):
    """Profile record owned by the user service; read-only here."""

    _id: Any
    name: Optional[str]
    age: Optional[int]
    # object-store keys, either plain strings or {"key": ...}
    userPhoto: List[Any]
    city: Optional[str]
    isOnline: bool
    lastSeen: Optional[datetime]
