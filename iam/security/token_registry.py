"""Redis-backed registry of the live token identifier per account and purpose."""

from __future__ import annotations

import logging
from typing import Final

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..domain.errors import ServiceFailure, TokenRevoked
from .tokens import TokenPurpose

logger = logging.getLogger(__name__)


class TokenRegistry:
    """Single-writer-wins store deciding which token of a purpose is authoritative.

    Inserting an identifier for a key replaces whatever was stored before, so
    the previous token stops validating even though its signature still checks
    out. Entries expire with the token lifetime.
    """

    _CONSUME_SCRIPT: Final[str] = """
    local stored = redis.call('GET', KEYS[1])
    if stored and stored == ARGV[1] then
        redis.call('DEL', KEYS[1])
        return 1
    end
    return 0
    """

    def __init__(self, client: Redis) -> None:
        """Store the Redis client and register the compare-and-delete script."""
        self._client = client
        self._consume = client.register_script(self._CONSUME_SCRIPT)

    @staticmethod
    def key(account_id: str, purpose: TokenPurpose) -> str:
        return f"{TokenPurpose(purpose).value}-user-{account_id}"

    async def insert(
        self, account_id: str, purpose: TokenPurpose, token_id: str, ttl_seconds: int
    ) -> None:
        """Record ``token_id`` as the only live token for the pair, superseding any other."""
        try:
            await self._client.set(self.key(account_id, purpose), token_id, ex=ttl_seconds)
        except RedisError as exc:
            logger.exception("failed to insert %s token for account %s", purpose, account_id)
            raise ServiceFailure("Service Error: Failed to insert token") from exc

    async def validate(self, account_id: str, purpose: TokenPurpose, token_id: str | None) -> bool:
        """Return ``True`` when ``token_id`` is the live identifier, else raise ``TokenRevoked``."""
        try:
            stored = await self._client.get(self.key(account_id, purpose))
        except RedisError as exc:
            logger.exception("failed to read %s token for account %s", purpose, account_id)
            raise ServiceFailure("Service Error: Failed to validate token") from exc

        if isinstance(stored, bytes):
            stored = stored.decode("utf-8")
        if not stored or not token_id or stored != token_id:
            logger.info("rejected stale %s token for account %s", purpose, account_id)
            raise TokenRevoked()
        return True

    async def consume(self, account_id: str, purpose: TokenPurpose, token_id: str | None) -> None:
        """Delete the entry only if it still holds ``token_id``, in one server-side step.

        Of concurrent callers presenting the same token exactly one succeeds;
        the others, and any caller holding a superseded token, get
        ``TokenRevoked`` and leave the live entry untouched.
        """
        key = self.key(account_id, purpose)
        if not token_id:
            raise TokenRevoked()
        try:
            removed = await self._consume(keys=[key], args=[token_id])
        except RedisError as exc:
            logger.exception("failed to consume token key %s", key)
            raise ServiceFailure("Service Error: Failed to invalidate token") from exc
        if int(removed) != 1:
            logger.info("rejected stale %s token for account %s", purpose, account_id)
            raise TokenRevoked()

    async def invalidate(self, account_id: str, purpose: TokenPurpose) -> None:
        """Delete the live entry; a missing entry is only logged."""
        key = self.key(account_id, purpose)
        try:
            removed = await self._client.delete(key)
        except RedisError as exc:
            logger.exception("failed to invalidate token key %s", key)
            raise ServiceFailure("Service Error: Failed to invalidate token") from exc
        if removed == 0:
            logger.warning("token not found or already invalidated for key: %s", key)
