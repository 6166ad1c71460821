from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from dm_chat.repositories.device_repository import DeviceRepository
from dm_chat.utils.notifications import PERMANENT_FAILURES, PushNotification, PushProviderError


NEW_MESSAGE_TITLE = "New message"


@dataclass
class PushResult:
    success: bool
    reason: Optional[str] = None
    success_count: int = 0


class PushDispatcher:

    def __init__(self, device_repo: DeviceRepository, provider) -> None:
        self._device_repo = device_repo
        self._provider = provider

    async def register_device_token(
        self, user_id: str, fcm_token: str, platform: str = "android", device_id: Optional[str] = None
    ) -> Dict[str, Any]:
        doc = await self._device_repo.upsert_token(user_id, fcm_token, platform, device_id)
        logger.info(f"Registered push token | user={user_id} platform={platform}")
        return doc

    async def unregister_device_token(self, user_id: str, fcm_token: str) -> bool:
        deleted = await self._device_repo.delete_token(user_id, fcm_token)
        logger.info(f"Unregistered push token | user={user_id} deleted={deleted}")
        return bool(deleted)

    async def send_push_to_user(self, user_id: str, notification: PushNotification) -> PushResult:
        if not getattr(self._provider, "enabled", False):
            logger.debug(f"Push disabled, skipping | user={user_id}")
            return PushResult(success=False, reason="push_disabled")

        tokens = await self._device_repo.get_active_tokens(user_id)
        if not tokens:
            logger.info(f"No active push tokens | user={user_id}")
            return PushResult(success=False, reason="no_tokens")

        fcm_tokens = [t["fcm_token"] for t in tokens]
        try:
            result = await self._provider.send_multicast(fcm_tokens, notification)
        except PushProviderError as exc:
            logger.error(f"Push request failed | user={user_id} error={exc}")
            return PushResult(success=False, reason="error")

        logger.info(f"Push sent | user={user_id} ok={result.success_count}/{len(fcm_tokens)}")

        if result.failure_count:
            invalid = []
            for resp in result.responses:
                if resp.success:
                    continue
                if resp.reason in PERMANENT_FAILURES:
                    invalid.append(resp.token)
                else:
                    logger.warning(f"Push token failed, keeping active | user={user_id} reason={resp.reason}")
            if invalid:
                deactivated = await self._device_repo.deactivate_tokens(invalid)
                logger.info(f"Deactivated invalid push tokens | user={user_id} count={deactivated}")

        return PushResult(success=True, success_count=result.success_count)

    async def send_new_message_notification(
        self,
        recipient_id: str,
        sender_id: str,
        sender_profile: Optional[Dict[str, Any]],
        text: str,
        conversation_id: str,
        message_id: str,
    ) -> PushResult:
        sender_name = (sender_profile or {}).get("name") or ""
        notification = PushNotification(
            title=NEW_MESSAGE_TITLE,
            body=f"{sender_name or 'User'}: {text or 'Voice message'}",
            data={
                "type": "new_message",
                "conversationId": conversation_id,
                "messageId": message_id,
                "senderId": sender_id,
                "senderName": sender_name,
            },
        )
        return await self.send_push_to_user(recipient_id, notification)
