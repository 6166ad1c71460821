import asyncio
import os
import uuid
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from loguru import logger

from dm_chat.core.config import Settings
from dm_chat.core.errors import InvalidInput, ServerError


ALLOWED_VOICE_TYPES = frozenset(
    {"audio/mp4", "audio/m4a", "audio/mpeg", "audio/wav", "audio/aac", "audio/x-m4a"}
)

_EXTENSIONS = {
    "audio/mp4": ".m4a",
    "audio/m4a": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "audio/aac": ".aac",
}


def validate_voice_upload(filename: Optional[str], content_type: Optional[str], size: int, max_bytes: int) -> None:
    if size <= 0:
        raise InvalidInput("No voice file uploaded")
    if size > max_bytes:
        raise InvalidInput("Voice file is too large")
    name = (filename or "").lower()
    if (content_type or "").lower() not in ALLOWED_VOICE_TYPES and not name.endswith(".m4a"):
        raise InvalidInput("Unsupported audio format")


def first_photo_key(photos: Optional[List[Any]]) -> Optional[str]:
    if not photos:
        return None
    first = photos[0]
    if isinstance(first, dict):
        return first.get("key")
    return first or None


class ObjectStorage:
    """S3 adapter: uploads plus time-limited signed GET URLs."""

    def __init__(self, settings: Settings, client=None) -> None:
        self._bucket = settings.s3_bucket
        self._ttl = settings.s3_get_ttl_sec
        self._client = client or boto3.client("s3", region_name=settings.aws_region)

    def signed_url(self, key: Optional[str]) -> Optional[str]:
        if not key:
            return None
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._ttl,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Signed URL generation failed | key={key} error={exc}")
            return None

    def resolve(self, ref: Optional[str]) -> Optional[str]:
        """Return absolute URLs untouched and sign bare object keys."""
        if not ref:
            return None
        if ref.startswith(("http://", "https://")):
            return ref
        return self.signed_url(ref)

    async def upload_voice(self, user_id: str, filename: Optional[str], content_type: Optional[str], body: bytes) -> str:
        ext = os.path.splitext(filename or "")[1].lower() or _EXTENSIONS.get((content_type or "").lower(), ".m4a")
        key = f"voice/{user_id}/{uuid.uuid4().hex}{ext}"
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=content_type or "audio/mp4",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error(f"Voice upload failed | user={user_id} key={key} error={exc}")
            raise ServerError("Failed to upload voice message") from exc
        logger.info(f"Voice uploaded | user={user_id} key={key} bytes={len(body)}")
        return key
