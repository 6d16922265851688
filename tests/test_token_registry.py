"""Tests for the Redis-backed token registry."""

from __future__ import annotations

import asyncio
import logging

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from iam.domain.errors import ServiceFailure, TokenRevoked
from iam.security.token_registry import TokenRegistry
from iam.security.tokens import TokenCodec, TokenPurpose


class UnavailableRedis:
    def register_script(self, script):
        async def run(*args, **kwargs):
            raise RedisConnectionError("connection refused")

        return run

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def get(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    async def delete(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")


async def test_insert_stores_identifier_with_ttl(registry: TokenRegistry, redis_client):
    await registry.insert("account-1", TokenPurpose.refresh, "token-a", 120)

    assert await redis_client.get("refresh-user-account-1") == "token-a"
    assert 0 < await redis_client.ttl("refresh-user-account-1") <= 120
    assert await registry.validate("account-1", TokenPurpose.refresh, "token-a")


async def test_new_insert_supersedes_previous_token(registry: TokenRegistry, codec: TokenCodec):
    first = codec.sign("account-1", TokenPurpose.forgotten_password, 60, {"token_id": "token-a"})
    await registry.insert("account-1", TokenPurpose.forgotten_password, "token-a", 60)
    await registry.insert("account-1", TokenPurpose.forgotten_password, "token-b", 60)

    claims = codec.verify(first)
    with pytest.raises(TokenRevoked):
        await registry.validate("account-1", TokenPurpose.forgotten_password, claims["token_id"])
    assert await registry.validate("account-1", TokenPurpose.forgotten_password, "token-b")


async def test_validate_rejects_missing_entry(registry: TokenRegistry):
    with pytest.raises(TokenRevoked) as excinfo:
        await registry.validate("account-1", TokenPurpose.refresh, "token-a")
    assert excinfo.value.message == "Token has been revoked or is invalid"


async def test_purposes_do_not_share_entries(registry: TokenRegistry):
    await registry.insert("account-1", TokenPurpose.email_verification, "token-a", 60)

    with pytest.raises(TokenRevoked):
        await registry.validate("account-1", TokenPurpose.forgotten_password, "token-a")


async def test_invalidate_is_idempotent(registry: TokenRegistry, caplog):
    await registry.insert("account-1", TokenPurpose.refresh, "token-a", 60)

    await registry.invalidate("account-1", TokenPurpose.refresh)
    with pytest.raises(TokenRevoked):
        await registry.validate("account-1", TokenPurpose.refresh, "token-a")

    with caplog.at_level(logging.WARNING, logger="iam.security.token_registry"):
        await registry.invalidate("account-1", TokenPurpose.refresh)
    assert "already invalidated" in caplog.text


async def test_consume_deletes_matching_entry_once(registry: TokenRegistry, redis_client):
    await registry.insert("account-1", TokenPurpose.refresh, "token-a", 60)

    await registry.consume("account-1", TokenPurpose.refresh, "token-a")

    assert await redis_client.get("refresh-user-account-1") is None
    with pytest.raises(TokenRevoked):
        await registry.consume("account-1", TokenPurpose.refresh, "token-a")


async def test_consume_with_stale_token_keeps_live_entry(registry: TokenRegistry, redis_client):
    await registry.insert("account-1", TokenPurpose.forgotten_password, "token-b", 60)

    with pytest.raises(TokenRevoked):
        await registry.consume("account-1", TokenPurpose.forgotten_password, "token-a")
    with pytest.raises(TokenRevoked):
        await registry.consume("account-1", TokenPurpose.forgotten_password, None)

    assert await redis_client.get("forgotten_password-user-account-1") == "token-b"


async def test_concurrent_consumers_have_a_single_winner(registry: TokenRegistry):
    await registry.insert("account-1", TokenPurpose.refresh, "token-a", 60)

    results = await asyncio.gather(
        *(registry.consume("account-1", TokenPurpose.refresh, "token-a") for _ in range(5)),
        return_exceptions=True,
    )

    assert results.count(None) == 1
    assert sum(isinstance(result, TokenRevoked) for result in results) == 4


@pytest.mark.parametrize(
    "operation, message",
    [
        (lambda r: r.insert("account-1", TokenPurpose.refresh, "token-a", 60), "Failed to insert token"),
        (lambda r: r.validate("account-1", TokenPurpose.refresh, "token-a"), "Failed to validate token"),
        (lambda r: r.invalidate("account-1", TokenPurpose.refresh), "Failed to invalidate token"),
        (lambda r: r.consume("account-1", TokenPurpose.refresh, "token-a"), "Failed to invalidate token"),
    ],
    ids=["insert", "validate", "invalidate", "consume"],
)
async def test_store_errors_surface_as_service_failures(operation, message):
    registry = TokenRegistry(UnavailableRedis())

    with pytest.raises(ServiceFailure) as excinfo:
        await operation(registry)
    assert excinfo.value.message == f"Service Error: {message}"
