"""OTP service — the two-phase email login flow.

Flow
----
1. ``request_code(email)``: rate-limit, generate a code, store its bcrypt
   hash with a TTL (replacing any pending code for the email) and email
   the plaintext to the user.
2. ``verify_code(email, code)``: look up the live record, check the code
   against its hash, consume the record and mint a session token.

Per identity the implicit states are ``NoActiveCode → CodeIssued →
(Verified | Expired | RateLimited)``; nothing beyond the stored record
tracks them.

A wrong guess leaves the code in place so the user can retry within the
TTL.  With ``max_attempts`` set, the code is burned after that many
wrong guesses; ``max_attempts == 1`` makes every submission consume the
code, right or wrong.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol, TypeVar

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from otp_auth.errors import (
    BackendUnavailable,
    CodeMismatch,
    CodeNotFound,
    DeliveryFailure,
    InvalidInput,
    RateLimited,
)
from otp_auth.services.codes import CodeHasher, generate_code
from otp_auth.services.rate_limiter import RateLimitDecision, rate_limit_key
from otp_auth.services.tokens import IssuedToken, TokenIssuer
from otp_auth.stores.base import OTPRecord, OTPStore, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_EMAIL_LENGTH = 254

BACKEND_ERRORS = (RedisError, SQLAlchemyError, OSError)


def normalize_email(email: object) -> str:
    """Lower-case and trim *email*; anything that isn't a string becomes ``""``."""
    if not isinstance(email, str):
        return ""
    return email.strip().lower()


def is_valid_email(email: str) -> bool:
    return bool(email) and len(email) <= MAX_EMAIL_LENGTH and EMAIL_RE.match(email) is not None


class RateLimiter(Protocol):
    async def check(self, key: str) -> RateLimitDecision: ...


class CodeMailer(Protocol):
    async def send_code(self, to_email: str, code: str, ttl_minutes: int) -> None: ...


@dataclass
class CodeRequestResult:
    """Acknowledgement of an issued code.

    ``code`` is only filled in when echoing codes is enabled, which is
    never the case in production.
    """

    identity: str
    expires_at: datetime
    code: str | None = None


@dataclass
class StoreStats:
    storage_type: str
    durable: bool
    active_codes: int


class OTPService:
    """Ties code generation, hashing, storage, rate limiting, delivery and
    token minting into the request/verify login flow."""

    def __init__(
        self,
        store: OTPStore,
        hasher: CodeHasher,
        limiter: RateLimiter,
        tokens: TokenIssuer,
        mailer: CodeMailer,
        *,
        ttl_seconds: int = 600,
        code_length: int = 6,
        max_attempts: int = 0,
        rollback_on_delivery_failure: bool = True,
        echo_codes: bool = False,
        backend_timeout: float = 3.0,
        login_recorder: Callable[[str], Awaitable[None]] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._limiter = limiter
        self._tokens = tokens
        self._mailer = mailer
        self._ttl = timedelta(seconds=ttl_seconds)
        self._code_length = code_length
        self._code_re = re.compile(rf"^\d{{{code_length}}}$")
        self._max_attempts = max_attempts
        self._rollback = rollback_on_delivery_failure
        self._echo_codes = echo_codes
        self._timeout = backend_timeout
        self._login_recorder = login_recorder
        self._clock = clock

    @property
    def store(self) -> OTPStore:
        return self._store

    @property
    def ttl_seconds(self) -> int:
        return int(self._ttl.total_seconds())

    # ── Request phase ────────────────────────────────────

    async def request_code(self, email: object, origin: str | None = None) -> CodeRequestResult:
        """Issue a fresh code for *email* and deliver it.

        Raises
        ------
        RateLimited
            Too many requests for this email (or origin) in the window.
        InvalidInput
            *email* is missing or malformed.
        DeliveryFailure
            The email could not be sent.
        BackendUnavailable
            The store or rate limiter failed or timed out.
        """
        identity = normalize_email(email)

        decision = await self._backend(
            self._limiter.check(rate_limit_key(identity, origin)), "rate limiter"
        )
        if not decision.allowed:
            logger.warning(
                "Code request rate-limited for %s (retry in %ss)",
                identity or origin,
                decision.retry_after,
            )
            raise RateLimited(retry_after=decision.retry_after or 1)

        if not is_valid_email(identity):
            raise InvalidInput("Invalid email.")

        code = generate_code(self._code_length)
        code_hash = await self._hasher.hash(code)
        now = self._clock()
        record = OTPRecord(
            identity=identity,
            code_hash=code_hash,
            issued_at=now,
            expires_at=now + self._ttl,
        )
        await self._backend(self._store.put(record), "store")
        logger.info("Issued login code for %s, expires %s", identity, record.expires_at.isoformat())

        try:
            await self._mailer.send_code(identity, code, max(1, self.ttl_seconds // 60))
        except DeliveryFailure:
            if self._rollback:
                await self._discard_undelivered(identity, code_hash)
            raise

        return CodeRequestResult(
            identity=identity,
            expires_at=record.expires_at,
            code=code if self._echo_codes else None,
        )

    async def _discard_undelivered(self, identity: str, code_hash: str) -> None:
        # Only removes this code; a newer one issued meanwhile is kept.
        try:
            removed = await self._backend(self._store.consume(identity, code_hash), "store")
        except BackendUnavailable:
            logger.error("Could not roll back undelivered code for %s", identity)
            return
        if removed:
            logger.info("Rolled back undelivered code for %s", identity)

    # ── Verify phase ─────────────────────────────────────

    async def verify_code(self, email: object, code: object) -> IssuedToken:
        """Check *code* for *email* and return a session token.

        Raises
        ------
        InvalidInput
            Missing or malformed email or code.
        CodeNotFound / CodeMismatch
            No live code, or the wrong one (rendered identically).
        BackendUnavailable
            The store failed or timed out.
        """
        identity = normalize_email(email)
        code = code.strip() if isinstance(code, str) else ""
        if not identity or not code:
            raise InvalidInput("Email and code are required.")
        if not is_valid_email(identity):
            raise InvalidInput("Invalid email.")
        if not self._code_re.match(code):
            raise InvalidInput(f"Code must be {self._code_length} digits.")

        if self._max_attempts == 1:
            await self._verify_single_guess(identity, code)
        else:
            await self._verify_with_retries(identity, code)

        issued = self._tokens.mint(identity)
        logger.info("Login verified for %s", identity)
        await self._record_login(identity)
        return issued

    async def _verify_with_retries(self, identity: str, code: str) -> None:
        record = await self._backend(self._store.peek(identity), "store")
        if record is None:
            logger.info("No live code for %s", identity)
            raise CodeNotFound()

        if not await self._hasher.verify(code, record.code_hash):
            if self._max_attempts > 1:
                attempts = await self._backend(
                    self._store.register_failure(identity, record.code_hash), "store"
                )
                if attempts >= self._max_attempts:
                    await self._backend(self._store.consume(identity, record.code_hash), "store")
                    logger.warning(
                        "Code for %s burned after %d wrong guesses", identity, attempts
                    )
            logger.info("Wrong code submitted for %s", identity)
            raise CodeMismatch()

        # A concurrent verification or re-issue may have won the race.
        if not await self._backend(self._store.consume(identity, record.code_hash), "store"):
            logger.info("Code for %s was consumed or replaced concurrently", identity)
            raise CodeNotFound()

    async def _verify_single_guess(self, identity: str, code: str) -> None:
        record = await self._backend(self._store.take_if_present(identity), "store")
        if record is None:
            logger.info("No live code for %s", identity)
            raise CodeNotFound()
        if not await self._hasher.verify(code, record.code_hash):
            logger.info("Wrong code submitted for %s; code consumed", identity)
            raise CodeMismatch()

    async def _record_login(self, identity: str) -> None:
        if self._login_recorder is None:
            return
        # The code is already consumed; bookkeeping never fails the login.
        try:
            await asyncio.wait_for(self._login_recorder(identity), timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "Recording login for %s timed out after %.1fs", identity, self._timeout
            )
        except BACKEND_ERRORS:
            logger.exception("Failed to record login for %s", identity)

    # ── Maintenance ──────────────────────────────────────

    async def purge_expired(self) -> int:
        return await self._backend(self._store.purge_expired(), "store")

    async def stats(self) -> StoreStats:
        active = await self._backend(self._store.count_active(), "store")
        return StoreStats(
            storage_type=self._store.storage_type,
            durable=self._store.durable,
            active_codes=active,
        )

    async def _backend(self, call: Awaitable[T], what: str) -> T:
        """Await a store / limiter call, failing closed on error or timeout."""
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except TimeoutError as exc:
            logger.error("%s call timed out after %.1fs", what.capitalize(), self._timeout)
            raise BackendUnavailable() from exc
        except BACKEND_ERRORS as exc:
            logger.exception("%s call failed: %s", what.capitalize(), exc)
            raise BackendUnavailable() from exc
