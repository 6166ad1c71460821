import asyncio
from typing import Awaitable, Callable, Optional

import redis.asyncio as redis
from loguru import logger


MessageHandler = Callable[[str], Awaitable[None]]


class Subscription:

    async def run(self) -> None:
        await asyncio.Future()

    async def cancel(self) -> None:
        return


class NoopBus:

    enabled = False

    async def publish(self, channel: str, message: str) -> None:
        return

    async def subscribe(self, channel: str, on_message: MessageHandler) -> Subscription:
        return Subscription()

    async def close(self) -> None:
        return


class RedisSubscription(Subscription):

    def __init__(self, pubsub, channel: str, on_message: MessageHandler) -> None:
        self._pubsub = pubsub
        self._channel = channel
        self._on_message = on_message
        self._running = True

    async def run(self) -> None:
        while self._running:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except (redis.ConnectionError, redis.TimeoutError) as exc:
                logger.warning(f"Redis subscription read failed | channel={self._channel} error={exc}")
                await asyncio.sleep(0.5)
                continue
            if not msg or msg.get("type") != "message":
                continue
            data = msg.get("data")
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            try:
                await self._on_message(data)
            except Exception:
                logger.exception(f"Redis subscriber handler failed | channel={self._channel}")

    async def cancel(self) -> None:
        self._running = False
        try:
            await self._pubsub.unsubscribe(self._channel)
            await self._pubsub.aclose()
        except redis.RedisError as exc:
            logger.debug(f"Redis unsubscribe failed | channel={self._channel} error={exc}")


class RedisBus:

    enabled = True

    def __init__(self, url: str) -> None:
        self._redis = redis.from_url(url)

    async def publish(self, channel: str, message: str) -> None:
        await self._redis.publish(channel, message)

    async def subscribe(self, channel: str, on_message: MessageHandler) -> Subscription:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(channel)
        return RedisSubscription(pubsub, channel, on_message)

    async def close(self) -> None:
        await self._redis.aclose()


def create_bus(redis_url: Optional[str]):
    if not redis_url:
        return NoopBus()
    logger.info("Realtime bus using Redis pub/sub")
    return RedisBus(redis_url)
