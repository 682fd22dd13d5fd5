"""
Admin Directory - who counts as an admin for fan-out.

The treasury reads its admin set from the chain through a short-TTL Redis
read-through cache; access control answers from its own role projection.
The approval threshold is always read fresh.
"""
import json
from abc import ABC, abstractmethod

from redis.exceptions import RedisError

from bitpay_ingest.core.config import settings
from bitpay_ingest.core.exceptions import AppException
from bitpay_ingest.core.logging import get_logger
from bitpay_ingest.core.redis_client import get_redis, redis_key
from bitpay_ingest.db.models.access_control import Role
from bitpay_ingest.domain.services.chain_reader import ChainReader
from bitpay_ingest.domain.services.projection_store import ProjectionLookups

logger = get_logger(__name__)

TREASURY_ADMINS_KEY = redis_key("treasury", "admins")


class AdminDirectory(ABC):
    @abstractmethod
    async def admins(self) -> list[str]:
        """Current admin principals; never empty."""

    async def approval_threshold(self) -> int:
        return settings.FALLBACK_APPROVAL_THRESHOLD


class ChainAdminDirectory(AdminDirectory):
    """Treasury admins from ``get-admins``, cached for ADMIN_CACHE_TTL_SECONDS."""

    def __init__(self, reader: ChainReader, *, ttl_seconds: int | None = None):
        self.reader = reader
        self.ttl_seconds = ttl_seconds or settings.ADMIN_CACHE_TTL_SECONDS

    async def _cached(self) -> list[str] | None:
        try:
            client = await get_redis()
            raw = await client.get(TREASURY_ADMINS_KEY)
        except (RedisError, OSError) as e:
            logger.warning("Admin cache read failed", extra_data={"error": str(e)})
            return None
        if not raw:
            return None
        try:
            admins = json.loads(raw)
        except ValueError:
            return None
        return admins if isinstance(admins, list) and admins else None

    async def _store(self, admins: list[str]) -> None:
        try:
            client = await get_redis()
            await client.set(TREASURY_ADMINS_KEY, json.dumps(admins), ex=self.ttl_seconds)
        except (RedisError, OSError) as e:
            logger.warning("Admin cache write failed", extra_data={"error": str(e)})

    async def admins(self) -> list[str]:
        cached = await self._cached()
        if cached is not None:
            return cached

        try:
            admins = await self.reader.get_treasury_admins()
        except AppException as e:
            logger.warning(
                "Falling back to deployer as treasury admin",
                extra_data={"error": e.message},
            )
            return [settings.BITPAY_DEPLOYER_ADDRESS]

        if not admins:
            return [settings.BITPAY_DEPLOYER_ADDRESS]
        await self._store(admins)
        return admins

    async def approval_threshold(self) -> int:
        try:
            return await self.reader.get_approval_threshold()
        except AppException as e:
            logger.warning(
                "Falling back to default approval threshold",
                extra_data={"error": e.message, "fallback": settings.FALLBACK_APPROVAL_THRESHOLD},
            )
            return settings.FALLBACK_APPROVAL_THRESHOLD


class RoleAdminDirectory(AdminDirectory):
    """Access-control admins: active admin role holders in the projection."""

    def __init__(self, lookups: ProjectionLookups):
        self.lookups = lookups

    async def admins(self) -> list[str]:
        holders = await self.lookups.active_role_holders(Role.ADMIN)
        return holders or [settings.BITPAY_DEPLOYER_ADDRESS]
