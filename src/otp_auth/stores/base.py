"""OTP store — abstract interface every storage backend must implement."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class OTPRecord:
    """One issued login code for an identity.

    Only the hash of the code is ever held here; the plaintext leaves
    the service in the email and nowhere else.
    """

    identity: str
    code_hash: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    attempts: int = 0

    def is_live(self, now: datetime) -> bool:
        return not self.consumed and now < self.expires_at


class OTPStore(ABC):
    """Key-value store of OTP records keyed by normalized email.

    Implementations hold at most one record per identity and make every
    method atomic with respect to concurrent calls for the same identity.
    Expired records read as absent even before they are purged.
    """

    #: Short backend name (shown in stats and startup logs).
    storage_type: str = "abstract"
    #: ``False`` for stores that lose state on restart or are not shared
    #: between processes.
    durable: bool = True

    @abstractmethod
    async def put(self, record: OTPRecord) -> None:
        """Store *record*, replacing any previous record for its identity."""

    @abstractmethod
    async def take_if_present(self, identity: str) -> OTPRecord | None:
        """Atomically read and consume the live record for *identity*."""

    @abstractmethod
    async def peek(self, identity: str) -> OTPRecord | None:
        """Return the live record for *identity* without modifying it."""

    @abstractmethod
    async def consume(self, identity: str, code_hash: str) -> bool:
        """Consume the live record only if it still carries *code_hash*.

        Returns ``False`` when the record is gone, expired, already
        consumed or was replaced by a newer code.
        """

    @abstractmethod
    async def register_failure(self, identity: str, code_hash: str) -> int:
        """Count a wrong guess against the live record carrying *code_hash*.

        Returns the updated attempt count, or ``0`` if no such record.
        """

    @abstractmethod
    async def purge_expired(self) -> int:
        """Physically delete expired or consumed records; return how many."""

    @abstractmethod
    async def count_active(self) -> int:
        """Number of live records (useful for monitoring)."""

    async def close(self) -> None:
        """Release backend resources."""
