import logging
from typing import List, Optional
from uuid import UUID
import redis.asyncio as redis

from ..models.redis_models import UserSessionRedis, PortalEvent

logger = logging.getLogger(__name__)

EVENTS_CHANNEL = "portal:events"
ORPHANED_IDENTITIES_KEY = "provisioning:orphaned_identities"


class RedisClient:
    """
    Redis client for sessions, the provisioning reconciliation queue and event fan-out.
    """

    def __init__(self, pool: redis.ConnectionPool):
        self._redis = redis.Redis(connection_pool=pool, decode_responses=True)

    # ===== User Session Management =====

    async def save_user_session(self, session: UserSessionRedis, ttl: int):
        """Stores the principal's session with a TTL."""
        key = f"users:{session.principal.id}"
        await self._redis.set(key, session.model_dump_json(), ex=ttl)

    async def get_user_session(self, user_id: str) -> Optional[UserSessionRedis]:
        key = f"users:{user_id}"
        session_json = await self._redis.get(key)
        return UserSessionRedis.model_validate_json(session_json) if session_json else None

    async def delete_user_session(self, user_id: str) -> int:
        key = f"users:{user_id}"
        return await self._redis.delete(key)

    # ===== Provisioning reconciliation =====

    async def add_orphaned_identity(self, user_id: UUID):
        """
        Remembers an identity whose provisioning failed and whose compensating delete
        also failed, so the reconciliation job can retry it.
        """
        await self._redis.sadd(ORPHANED_IDENTITIES_KEY, str(user_id))

    async def get_orphaned_identities(self) -> List[UUID]:
        members = await self._redis.smembers(ORPHANED_IDENTITIES_KEY)
        return [UUID(member) for member in members]

    async def remove_orphaned_identity(self, user_id: UUID) -> int:
        return await self._redis.srem(ORPHANED_IDENTITIES_KEY, str(user_id))

    # ===== Events =====

    async def publish_event(self, event: PortalEvent) -> int:
        """Publishes an event on the shared channel; returns the number of receivers."""
        return await self._redis.publish(EVENTS_CHANNEL, event.model_dump_json())
