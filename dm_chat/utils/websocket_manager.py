import asyncio
import json
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from fastapi import WebSocket
from loguru import logger
from redis.exceptions import RedisError

from dm_chat.core.config import Settings
from dm_chat.core.errors import Unauthorized
from dm_chat.utils.realtime_bus import NoopBus, Subscription
from dm_chat.utils.security import resolve_identity


REJECTED_CLOSE_CODE = 4401


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    JOINED = "joined"
    DISCONNECTED = "disconnected"
    REJECTED = "rejected"


def room_for(user_id: str) -> str:
    return f"user:{user_id}"


class UserEmitter(Protocol):

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        ...


class Connection:

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.user_id: Optional[str] = None
        self.state = ConnectionState.CONNECTING

    @property
    def room(self) -> Optional[str]:
        return room_for(self.user_id) if self.user_id else None


class PresenceHub:
    """Process-wide registry of live sockets, grouped in one room per user.

    With a Redis bus, emits go through pub/sub and every process delivers to
    the sockets it holds locally, so a room spans processes.
    """

    def __init__(self, settings: Settings, bus=None) -> None:
        self._settings = settings
        self._bus = bus or NoopBus()
        self.rooms: Dict[str, List[Connection]] = {}
        self._subscriptions: Dict[str, Tuple[Subscription, asyncio.Task]] = {}
        self._subscription_lock = asyncio.Lock()
        self.running = False

    async def start(self) -> None:
        self.running = True
        logger.info(f"Presence hub started | bus={'redis' if self._bus.enabled else 'local'}")

    async def stop(self) -> None:
        self.running = False
        for room in list(self.rooms):
            for conn in list(self.rooms.get(room, [])):
                try:
                    await conn.websocket.close(code=1001)
                except Exception as exc:
                    logger.debug(f"Socket close on shutdown failed | room={room} error={exc}")
                await self.leave(conn)
        for room in list(self._subscriptions):
            await self._unsubscribe(room)
        await self._bus.close()
        logger.info("Presence hub stopped")

    async def authenticate(self, connection: Connection, token: Optional[str]) -> bool:
        try:
            identity = resolve_identity(token, self._settings)
        except Unauthorized as exc:
            connection.state = ConnectionState.REJECTED
            logger.info(f"Socket rejected | reason={exc.message}")
            await connection.websocket.close(code=REJECTED_CLOSE_CODE)
            return False
        connection.user_id = identity.user_id
        connection.state = ConnectionState.AUTHENTICATED
        return True

    async def join(self, connection: Connection) -> None:
        if connection.state is not ConnectionState.AUTHENTICATED:
            raise RuntimeError("Only authenticated connections can join a room")
        await connection.websocket.accept()
        room = connection.room
        self.rooms.setdefault(room, []).append(connection)
        connection.state = ConnectionState.JOINED
        logger.info(f"Socket joined | room={room} connections={len(self.rooms[room])}")
        await self._sync_subscription(room)

    async def leave(self, connection: Connection) -> None:
        room = connection.room
        connection.state = ConnectionState.DISCONNECTED
        conns = self.rooms.get(room)
        if not conns or connection not in conns:
            return
        conns.remove(connection)
        if not conns:
            del self.rooms[room]
        logger.info(f"Socket left | room={room}")
        await self._sync_subscription(room)

    def connection_count(self, user_id: str) -> int:
        return len(self.rooms.get(room_for(user_id), []))

    async def emit_to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> None:
        room = room_for(user_id)
        frame = json.dumps({"event": event, "data": data}, default=str)
        if self._bus.enabled:
            await self._bus.publish(room, frame)
        else:
            await self._deliver_local(room, frame)

    async def handle_frame(self, connection: Connection, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            logger.debug(f"Ignoring non-JSON frame | room={connection.room}")
            return
        if not isinstance(msg, dict):
            return
        kind = msg.get("type")
        recipient_id = msg.get("recipientId")
        if kind not in ("typing_start", "typing_stop") or not recipient_id:
            logger.debug(f"Ignoring frame | room={connection.room} type={kind}")
            return
        try:
            await self.emit_to_user(
                str(recipient_id),
                "typing",
                {"senderId": connection.user_id, "isTyping": kind == "typing_start"},
            )
        except RedisError as exc:
            logger.warning(f"Typing relay failed | room={connection.room} error={exc}")

    async def _deliver_local(self, room: str, frame: str) -> int:
        delivered = 0
        for conn in list(self.rooms.get(room, [])):
            try:
                await conn.websocket.send_text(frame)
                delivered += 1
            except Exception as exc:
                logger.warning(f"Socket send failed, dropping connection | room={room} error={exc}")
                await self.leave(conn)
        return delivered

    async def _sync_subscription(self, room: str) -> None:
        # joins and leaves interleave across the awaited subscribe, so the
        # subscription follows whatever the room looks like once the lock is held
        if not self._bus.enabled:
            return
        async with self._subscription_lock:
            wanted = bool(self.rooms.get(room))
            if wanted and room not in self._subscriptions:
                await self._subscribe(room)
            elif not wanted and room in self._subscriptions:
                await self._unsubscribe(room)

    async def _subscribe(self, room: str) -> None:
        async def on_message(frame: str) -> None:
            await self._deliver_local(room, frame)

        subscription = await self._bus.subscribe(room, on_message)
        task = asyncio.create_task(subscription.run(), name=f"bus:{room}")
        self._subscriptions[room] = (subscription, task)

    async def _unsubscribe(self, room: str) -> None:
        entry = self._subscriptions.pop(room, None)
        if entry is None:
            return
        subscription, task = entry
        await subscription.cancel()
        task.cancel()
