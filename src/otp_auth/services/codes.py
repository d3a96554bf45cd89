"""One-time code generation and hashing."""

from __future__ import annotations

import asyncio
import logging
import secrets

import bcrypt

logger = logging.getLogger(__name__)


def generate_code(length: int = 6) -> str:
    """Return a zero-padded numeric code, uniform over ``[0, 10**length)``.

    Uses the OS CSPRNG; a non-cryptographic generator would make codes
    predictable to anyone who can observe a few of them.
    """
    return str(secrets.randbelow(10**length)).zfill(length)


class CodeHasher:
    """Salted bcrypt hashing for one-time codes.

    bcrypt is CPU-bound, so both operations run in a worker thread to
    keep the event loop responsive.
    """

    def __init__(self, rounds: int = 10) -> None:
        self._rounds = rounds

    def _hash_sync(self, code: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(code.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _verify_sync(code: str, digest: str) -> bool:
        if not code or not digest:
            return False
        try:
            return bcrypt.checkpw(code.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            logger.warning("Malformed code digest rejected")
            return False

    async def hash(self, code: str) -> str:
        return await asyncio.to_thread(self._hash_sync, code)

    async def verify(self, code: str, digest: str) -> bool:
        """Return ``True`` if *code* matches *digest*; never raises."""
        return await asyncio.to_thread(self._verify_sync, code, digest)
