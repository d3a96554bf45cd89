"""Tests for the Redis OTP store, against a mocked async client."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from otp_auth.stores.base import OTPRecord
from otp_auth.stores.redis_store import (
    CONSUME_SCRIPT,
    FAILURE_SCRIPT,
    TAKE_SCRIPT,
    RedisOTPStore,
)

ISSUED = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
EXPIRES = ISSUED + timedelta(minutes=10)


@pytest.fixture
def client():
    """Mocked ``redis.asyncio.Redis`` with one AsyncMock per Lua script."""
    mock = MagicMock()
    scripts = {TAKE_SCRIPT: AsyncMock(), CONSUME_SCRIPT: AsyncMock(), FAILURE_SCRIPT: AsyncMock()}
    mock.register_script.side_effect = lambda source: scripts[source]
    mock.scripts = scripts

    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, 4, True])
    mock.pipeline.return_value.__aenter__.return_value = pipe
    mock.pipe = pipe

    mock.hgetall = AsyncMock()
    return mock


@pytest.fixture
def store(client):
    return RedisOTPStore(client)


def _stored_hash(code_hash="hash-1", attempts=0) -> dict[str, str]:
    return {
        "code_hash": code_hash,
        "issued_at": str(ISSUED.timestamp()),
        "expires_at": str(EXPIRES.timestamp()),
        "attempts": str(attempts),
    }


@pytest.mark.asyncio
async def test_put_replaces_key_with_absolute_expiry(store, client):
    record = OTPRecord(identity="a@b.com", code_hash="hash-1", issued_at=ISSUED, expires_at=EXPIRES)

    await store.put(record)

    client.pipeline.assert_called_once_with(transaction=True)
    pipe = client.pipe
    pipe.delete.assert_called_once_with("otp:a@b.com")
    mapping = pipe.hset.call_args.kwargs["mapping"]
    assert mapping["code_hash"] == "hash-1"
    assert float(mapping["expires_at"]) == EXPIRES.timestamp()
    pipe.pexpireat.assert_called_once_with("otp:a@b.com", EXPIRES)
    pipe.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_peek_decodes_hash(store, client):
    client.hgetall.return_value = _stored_hash(attempts=2)

    record = await store.peek("a@b.com")

    client.hgetall.assert_awaited_once_with("otp:a@b.com")
    assert record.identity == "a@b.com"
    assert record.code_hash == "hash-1"
    assert record.issued_at == ISSUED
    assert record.expires_at == EXPIRES
    assert record.attempts == 2
    assert record.consumed is False


@pytest.mark.asyncio
async def test_peek_missing_key(store, client):
    client.hgetall.return_value = {}
    assert await store.peek("a@b.com") is None


@pytest.mark.asyncio
async def test_take_if_present_decodes_flat_reply(store, client):
    flat = [item for pair in _stored_hash().items() for item in pair]
    client.scripts[TAKE_SCRIPT].return_value = flat

    record = await store.take_if_present("a@b.com")

    client.scripts[TAKE_SCRIPT].assert_awaited_once_with(keys=["otp:a@b.com"])
    assert record.code_hash == "hash-1"
    assert record.consumed is True


@pytest.mark.asyncio
async def test_take_if_present_absent(store, client):
    client.scripts[TAKE_SCRIPT].return_value = None
    assert await store.take_if_present("a@b.com") is None


@pytest.mark.asyncio
async def test_consume_passes_expected_hash(store, client):
    client.scripts[CONSUME_SCRIPT].side_effect = [1, 0]

    assert await store.consume("a@b.com", "hash-1") is True
    assert await store.consume("a@b.com", "hash-1") is False
    client.scripts[CONSUME_SCRIPT].assert_awaited_with(keys=["otp:a@b.com"], args=["hash-1"])


@pytest.mark.asyncio
async def test_register_failure_returns_count(store, client):
    client.scripts[FAILURE_SCRIPT].return_value = 3
    assert await store.register_failure("a@b.com", "hash-1") == 3


@pytest.mark.asyncio
async def test_count_active_scans_prefix(store, client):
    async def scan_iter(match):
        assert match == "otp:*"
        for key in ("otp:a@b.com", "otp:c@d.com"):
            yield key

    client.scan_iter = scan_iter
    assert await store.count_active() == 2
    assert await store.purge_expired() == 0


@pytest.mark.asyncio
async def test_connection_errors_propagate(store, client):
    client.hgetall.side_effect = RedisConnectionError("down")
    with pytest.raises(RedisConnectionError):
        await store.peek("a@b.com")
