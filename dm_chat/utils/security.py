from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from jose import JWTError, jwt

from dm_chat.core.config import Settings
from dm_chat.core.errors import Unauthorized


@dataclass(frozen=True)
class Identity:
    user_id: str


def create_access_token(user_id: str, settings: Settings, expires_minutes: int = 60) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {"sub": user_id, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> Dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def resolve_identity(token: Optional[str], settings: Settings) -> Identity:
    """Map a bearer credential to the canonical user identity (the ``sub`` claim)."""
    if not token:
        raise Unauthorized()
    try:
        payload = decode_access_token(token, settings)
    except JWTError:
        raise Unauthorized("Invalid token")
    sub = payload.get("sub")
    if not isinstance(sub, str) or not ObjectId.is_valid(sub):
        raise Unauthorized("Invalid token: missing user id")
    return Identity(user_id=sub)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
