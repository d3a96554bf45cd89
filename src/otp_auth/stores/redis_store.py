"""Redis OTP store — native TTL, atomic operations via Lua scripts."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from redis.asyncio import Redis

from otp_auth.stores.base import OTPRecord, OTPStore

logger = logging.getLogger(__name__)

# Read the hash and delete the key in one step
TAKE_SCRIPT = """
local fields = redis.call('HGETALL', KEYS[1])
if #fields == 0 then
    return nil
end
redis.call('DEL', KEYS[1])
return fields
"""

# Delete only if the stored hash is the one the caller verified against
CONSUME_SCRIPT = """
if redis.call('HGET', KEYS[1], 'code_hash') == ARGV[1] then
    redis.call('DEL', KEYS[1])
    return 1
end
return 0
"""

FAILURE_SCRIPT = """
if redis.call('HGET', KEYS[1], 'code_hash') == ARGV[1] then
    return redis.call('HINCRBY', KEYS[1], 'attempts', 1)
end
return 0
"""


def _from_hash(identity: str, fields: dict[str, str]) -> OTPRecord:
    return OTPRecord(
        identity=identity,
        code_hash=fields["code_hash"],
        issued_at=datetime.fromtimestamp(float(fields["issued_at"]), UTC),
        expires_at=datetime.fromtimestamp(float(fields["expires_at"]), UTC),
        attempts=int(fields.get("attempts", 0)),
    )


def _pairs(flat: list) -> dict[str, str]:
    return dict(zip(flat[::2], flat[1::2]))


class RedisOTPStore(OTPStore):
    """One Redis hash per identity at ``<prefix><email>``.

    Keys carry an absolute expiry (``PEXPIREAT``), so Redis itself drops
    stale codes and a present key is always live.  The client must be
    created with ``decode_responses=True``.
    """

    storage_type = "redis"
    durable = True

    def __init__(self, client: Redis, prefix: str = "otp:") -> None:
        self._redis = client
        self._prefix = prefix
        self._take = client.register_script(TAKE_SCRIPT)
        self._consume = client.register_script(CONSUME_SCRIPT)
        self._failure = client.register_script(FAILURE_SCRIPT)

    def key(self, identity: str) -> str:
        return f"{self._prefix}{identity}"

    async def put(self, record: OTPRecord) -> None:
        key = self.key(record.identity)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            pipe.hset(
                key,
                mapping={
                    "code_hash": record.code_hash,
                    "issued_at": str(record.issued_at.timestamp()),
                    "expires_at": str(record.expires_at.timestamp()),
                    "attempts": str(record.attempts),
                },
            )
            pipe.pexpireat(key, record.expires_at)
            await pipe.execute()

    async def take_if_present(self, identity: str) -> OTPRecord | None:
        flat = await self._take(keys=[self.key(identity)])
        if not flat:
            return None
        record = _from_hash(identity, _pairs(flat))
        record.consumed = True
        return record

    async def peek(self, identity: str) -> OTPRecord | None:
        fields = await self._redis.hgetall(self.key(identity))
        if not fields:
            return None
        return _from_hash(identity, fields)

    async def consume(self, identity: str, code_hash: str) -> bool:
        return bool(await self._consume(keys=[self.key(identity)], args=[code_hash]))

    async def register_failure(self, identity: str, code_hash: str) -> int:
        return int(await self._failure(keys=[self.key(identity)], args=[code_hash]))

    async def purge_expired(self) -> int:
        # Redis expires keys on its own.
        return 0

    async def count_active(self) -> int:
        count = 0
        async for _ in self._redis.scan_iter(match=f"{self._prefix}*"):
            count += 1
        return count
