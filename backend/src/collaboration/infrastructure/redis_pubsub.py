import asyncio
import logging

from redis.asyncio import Redis

from collaboration.domain.repository import UpdateCallback

logger = logging.getLogger(__name__)


def _channel_name(document_key: str) -> str:
    return f"collab:{document_key}:updates"


class RedisUpdateRelay:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def publish(self, document_key: str, update: bytes) -> None:
        await self.redis.publish(_channel_name(document_key), update)

    async def subscribe(self, document_key: str, callback: UpdateCallback) -> asyncio.Task:
        """Subscribe to a document's updates. Cancel the returned task to unsubscribe."""
        channel = _channel_name(document_key)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)

        async def _listen():
            try:
                async for message in pubsub.listen():
                    if message["type"] == "message":
                        await callback(message["data"])
            except asyncio.CancelledError:
                pass
            finally:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
                logger.debug("relay_unsubscribed", extra={"document_key": document_key})

        return asyncio.create_task(_listen())
