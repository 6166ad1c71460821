"""
Shared fixtures for the dm_chat test-suite.

Storage is an in-memory Motor-compatible database (mongomock-motor) with
the production indexes applied, so the pair-uniqueness and token-uniqueness
constraints behave like they do against MongoDB. External services (S3, FCM,
sockets) are replaced by small recording fakes.
"""

from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient
from pymongo.errors import DuplicateKeyError

from dm_chat.core.config import Settings
from dm_chat.database.indexes import ensure_indexes
from dm_chat.repositories.conversation_repository import ConversationRepository
from dm_chat.repositories.device_repository import DeviceRepository
from dm_chat.repositories.message_repository import MessageRepository
from dm_chat.repositories.user_repository import UserRepository
from dm_chat.services.chat_service import ChatService
from dm_chat.services.push_service import PushDispatcher
from dm_chat.services.storage_service import ObjectStorage
from dm_chat.utils.background import TaskSupervisor
from dm_chat.utils.notifications import MulticastResult, PushNotification, TokenResult
from dm_chat.utils.security import create_access_token


def new_id() -> str:
    return str(ObjectId())


class RecordingEmitter:
    """Stands in for the presence hub's emit capability."""

    def __init__(self, fail: bool = False) -> None:
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []
        self.fail = fail

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket layer down")
        self.events.append((user_id, event, data))


class LosingUpsertCollection:
    """Fails the first find_one_and_update the way MongoDB does when a
    concurrent upsert inserted the same unique key first."""

    def __init__(self, collection) -> None:
        self._collection = collection
        self.conflicts = 0

    def __getattr__(self, name):
        return getattr(self._collection, name)

    async def find_one_and_update(self, *args, **kwargs):
        if not self.conflicts:
            self.conflicts += 1
            raise DuplicateKeyError("E11000 duplicate key error")
        return await self._collection.find_one_and_update(*args, **kwargs)


class FakePushProvider:

    enabled = True

    def __init__(self) -> None:
        self.calls: List[Tuple[List[str], PushNotification]] = []
        self.failures: Dict[str, str] = {}
        self.error: Optional[Exception] = None

    async def send_multicast(self, tokens: List[str], notification: PushNotification) -> MulticastResult:
        self.calls.append((list(tokens), notification))
        if self.error is not None:
            raise self.error
        return MulticastResult(
            responses=[
                TokenResult(token=t, success=t not in self.failures, reason=self.failures.get(t))
                for t in tokens
            ]
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret="test-secret", s3_bucket="test-bucket", s3_get_ttl_sec=3600)


@pytest.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["dm_chat_test"]
    await ensure_indexes(database)
    return database


@pytest.fixture
def s3_client() -> MagicMock:
    client = MagicMock()
    client.generate_presigned_url.side_effect = lambda op, Params, ExpiresIn: (
        f"https://signed.example/{Params['Key']}?ttl={ExpiresIn}"
    )
    return client


@pytest.fixture
def storage(settings, s3_client) -> ObjectStorage:
    return ObjectStorage(settings, client=s3_client)


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def push_provider() -> FakePushProvider:
    return FakePushProvider()


@pytest.fixture
def tasks() -> TaskSupervisor:
    return TaskSupervisor()


@pytest.fixture
def push_dispatcher(db, push_provider) -> PushDispatcher:
    return PushDispatcher(DeviceRepository(db), push_provider)


@pytest.fixture
def chat_service(db, emitter, push_dispatcher, storage, tasks) -> ChatService:
    return ChatService(
        message_repo=MessageRepository(db),
        conversation_repo=ConversationRepository(db),
        user_repo=UserRepository(db),
        emitter=emitter,
        push=push_dispatcher,
        storage=storage,
        tasks=tasks,
    )


@pytest.fixture
def make_user(db):
    async def _make_user(name: str = "Alice", photos: Optional[list] = None, **extra) -> str:
        oid = ObjectId()
        await db["users"].insert_one({"_id": oid, "name": name, "age": 30, "userPhoto": photos or [], **extra})
        return str(oid)

    return _make_user


@pytest.fixture
def auth_header(settings):
    def _auth_header(user_id: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, settings)}"}

    return _auth_header
