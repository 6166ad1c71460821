import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests
from google.auth.exceptions import GoogleAuthError
from loguru import logger
from pyfcm import FCMNotification
from pyfcm.errors import AuthenticationError, FCMError, FCMNotRegisteredError, InvalidDataError

from dm_chat.core.config import Settings


UNREGISTERED = "unregistered"
INVALID_REGISTRATION = "invalid-registration"
# tokens failing with these reasons will never work again
PERMANENT_FAILURES = frozenset({UNREGISTERED, INVALID_REGISTRATION})


class PushProviderError(Exception):
    """The provider rejected the whole request (credentials, outage)."""


@dataclass
class PushNotification:
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass
class TokenResult:
    token: str
    success: bool
    reason: Optional[str] = None


@dataclass
class MulticastResult:
    responses: List[TokenResult]

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.responses if r.success)

    @property
    def failure_count(self) -> int:
        return len(self.responses) - self.success_count


def is_credentials_failure(exc: InvalidDataError) -> bool:
    """pyfcm wraps OAuth refresh and service-account failures in InvalidDataError."""
    for cause in (exc.__cause__, exc.__context__, *exc.args):
        if isinstance(cause, GoogleAuthError):
            return True
    text = str(exc).lower()
    return "service account" in text or "service_account" in text or "credentials" in text


class NoopPush:

    enabled = False

    async def send_multicast(self, tokens: List[str], notification: PushNotification) -> MulticastResult:
        return MulticastResult(responses=[])


class FcmPush:

    enabled = True

    def __init__(self, client: FCMNotification, android_channel_id: str = "direct_messages") -> None:
        self._client = client
        self._android_channel_id = android_channel_id

    def _android_config(self) -> dict:
        return {
            "priority": "high",
            "notification": {
                "channel_id": self._android_channel_id,
                "sound": "default",
                "default_sound": True,
                "default_vibrate_timings": True,
            },
        }

    @staticmethod
    def _apns_config(notification: PushNotification) -> dict:
        return {
            "payload": {
                "aps": {
                    "alert": {"title": notification.title, "body": notification.body},
                    "sound": "default",
                    "badge": 1,
                }
            }
        }

    async def send_multicast(self, tokens: List[str], notification: PushNotification) -> MulticastResult:
        if not tokens:
            return MulticastResult(responses=[])
        # pyfcm is sync (requests) and keeps its authorized session thread-local,
        # so the whole batch runs on one worker thread
        responses = await asyncio.to_thread(self._send_batch, tokens, notification)
        return MulticastResult(responses=responses)

    def _send_batch(self, tokens: List[str], notification: PushNotification) -> List[TokenResult]:
        return [self._send_one(token, notification) for token in tokens]

    def _send_one(self, token: str, notification: PushNotification) -> TokenResult:
        try:
            self._client.notify(
                fcm_token=token,
                notification_title=notification.title,
                notification_body=notification.body,
                data_payload=notification.data or None,
                android_config=self._android_config(),
                apns_config=self._apns_config(notification),
            )
        except AuthenticationError as exc:
            raise PushProviderError(str(exc)) from exc
        except FCMNotRegisteredError:
            return TokenResult(token=token, success=False, reason=UNREGISTERED)
        except InvalidDataError as exc:
            if is_credentials_failure(exc):
                raise PushProviderError(f"FCM credentials rejected: {exc}") from exc
            if "registration token" in str(exc).lower():
                return TokenResult(token=token, success=False, reason=INVALID_REGISTRATION)
            return TokenResult(token=token, success=False, reason="invalid-argument")
        except FCMError as exc:
            return TokenResult(token=token, success=False, reason=type(exc).__name__)
        except requests.RequestException as exc:
            return TokenResult(token=token, success=False, reason=f"transport: {type(exc).__name__}")
        return TokenResult(token=token, success=True)


def create_push_provider(settings: Settings):
    if not settings.push_enabled:
        logger.warning("FCM credentials not configured, push notifications disabled")
        return NoopPush()
    client = FCMNotification(
        service_account_file=settings.fcm_service_account_file,
        project_id=settings.fcm_project_id,
    )
    logger.info(f"FCM push initialized | project={settings.fcm_project_id}")
    return FcmPush(client, android_channel_id=settings.fcm_android_channel_id)
