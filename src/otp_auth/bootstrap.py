"""Builds the OTP service and its backends from settings."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncEngine

from otp_auth.config import Settings
from otp_auth.database.engine import build_engine, build_session_factory
from otp_auth.database.repository import LoginRecorder
from otp_auth.services.codes import CodeHasher
from otp_auth.services.email_service import EmailService
from otp_auth.services.otp_service import OTPService
from otp_auth.services.rate_limiter import InMemoryRateLimiter, RedisRateLimiter
from otp_auth.services.tokens import TokenIssuer, resolve_jwt_secret
from otp_auth.stores.base import OTPStore
from otp_auth.stores.memory import MemoryOTPStore
from otp_auth.stores.redis_store import RedisOTPStore
from otp_auth.stores.sql import SqlOTPStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer needs, plus the handles to shut down."""

    otp: OTPService
    tokens: TokenIssuer
    redis: Redis | None = None
    engine: AsyncEngine | None = None

    async def close(self) -> None:
        await self.otp.store.close()
        if self.redis is not None:
            await self.redis.aclose()
        if self.engine is not None:
            await self.engine.dispose()


def build_otp_store(
    settings: Settings,
    redis: Redis | None = None,
    engine: AsyncEngine | None = None,
) -> OTPStore:
    """Pick the OTP backend: Redis, then the database, then memory."""
    if redis is not None:
        logger.info("OTP store: Redis")
        return RedisOTPStore(redis)
    if engine is not None:
        logger.info("OTP store: database (%s)", engine.url.render_as_string(hide_password=True))
        return SqlOTPStore(build_session_factory(engine))

    logger.warning(
        "No REDIS_URL or DATABASE_URL configured: OTP codes are kept in process "
        "memory. Codes are lost on restart and not shared between workers; "
        "do not run this way in production."
    )
    if settings.is_production:
        logger.error("Running the in-memory OTP store with ENVIRONMENT=production")
    return MemoryOTPStore()


def build_services(settings: Settings, mailer=None) -> Services:
    """Wire the OTP service for *settings*.

    *mailer* overrides the SMTP email service (used by tests).
    """
    redis = (
        Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.backend_timeout_seconds,
            socket_connect_timeout=settings.backend_timeout_seconds,
        )
        if settings.redis_url
        else None
    )
    engine = build_engine(settings.database_url, echo=settings.debug) if settings.database_url else None

    store = build_otp_store(settings, redis=redis, engine=engine)

    if redis is not None:
        limiter = RedisRateLimiter(
            redis,
            max_requests=settings.rate_limit_max_requests,
            window=settings.rate_limit_window_seconds,
        )
    else:
        limiter = InMemoryRateLimiter(
            max_requests=settings.rate_limit_max_requests,
            window=settings.rate_limit_window_seconds,
        )
        logger.warning("Rate limiter: in-memory (per process)")

    tokens = TokenIssuer(
        resolve_jwt_secret(settings),
        algorithm=settings.jwt_algorithm,
        ttl_seconds=settings.token_ttl_seconds,
    )

    if settings.echo_codes:
        logger.warning("EXPOSE_CODE_IN_RESPONSE is on: login codes are returned by the API")

    otp = OTPService(
        store=store,
        hasher=CodeHasher(rounds=settings.otp_hash_rounds),
        limiter=limiter,
        tokens=tokens,
        mailer=mailer or EmailService(settings),
        ttl_seconds=settings.otp_ttl_seconds,
        code_length=settings.otp_length,
        max_attempts=settings.otp_max_attempts,
        rollback_on_delivery_failure=settings.otp_rollback_on_delivery_failure,
        echo_codes=settings.echo_codes,
        backend_timeout=settings.backend_timeout_seconds,
        login_recorder=LoginRecorder(build_session_factory(engine)) if engine else None,
    )
    return Services(otp=otp, tokens=tokens, redis=redis, engine=engine)
