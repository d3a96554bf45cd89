"""In-memory OTP store with expiry — degraded, single-instance mode."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from otp_auth.stores.base import OTPRecord, OTPStore, utcnow

logger = logging.getLogger(__name__)


class MemoryOTPStore(OTPStore):
    """Process-local OTP store.

    State is lost on restart and not shared between workers, so this is
    only fit for development or a single-process deployment.  Expired
    entries are lazily dropped on access and by :meth:`purge_expired`.
    """

    storage_type = "memory"
    durable = False

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._records: dict[str, OTPRecord] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, identity: str) -> OTPRecord | None:
        record = self._records.get(identity)
        if record is None:
            return None
        if not record.is_live(self._clock()):
            self._records.pop(identity, None)
            return None
        return record

    async def put(self, record: OTPRecord) -> None:
        async with self._lock:
            self._records[record.identity] = replace(record)

    async def take_if_present(self, identity: str) -> OTPRecord | None:
        async with self._lock:
            record = self._live(identity)
            if record is None:
                return None
            del self._records[identity]
            return replace(record, consumed=True)

    async def peek(self, identity: str) -> OTPRecord | None:
        async with self._lock:
            record = self._live(identity)
            return replace(record) if record else None

    async def consume(self, identity: str, code_hash: str) -> bool:
        async with self._lock:
            record = self._live(identity)
            if record is None or record.code_hash != code_hash:
                return False
            del self._records[identity]
            return True

    async def register_failure(self, identity: str, code_hash: str) -> int:
        async with self._lock:
            record = self._live(identity)
            if record is None or record.code_hash != code_hash:
                return 0
            record.attempts += 1
            return record.attempts

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            stale = [key for key, rec in self._records.items() if not rec.is_live(now)]
            for key in stale:
                del self._records[key]
        if stale:
            logger.debug("Purged %d expired OTP records", len(stale))
        return len(stale)

    async def count_active(self) -> int:
        async with self._lock:
            now = self._clock()
            return sum(1 for rec in self._records.values() if rec.is_live(now))
