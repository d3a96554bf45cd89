"""Session tokens — signed JWTs minted after a successful verification."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from otp_auth.config import Settings
from otp_auth.errors import ConfigurationError, SigningFailure

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 32

# Fallback secrets seen in old deployments; never acceptable in production.
KNOWN_PLACEHOLDER_SECRETS = frozenset(
    {
        "dev-secret",
        "change_me",
        "changeme",
        "secret",
        "EasyOTPAuth-2025-SuperSecure-JWT-Secret-Change-In-Production",
    }
)


@dataclass
class IssuedToken:
    token: str
    identity: str
    issued_at: datetime
    expires_at: datetime


@dataclass
class TokenClaims:
    identity: str
    issued_at: datetime
    expires_at: datetime


def resolve_jwt_secret(settings: Settings) -> str:
    """Return the signing secret, refusing unsafe ones in production.

    Without a configured secret, development gets a random per-process
    secret (tokens stop verifying on restart) and a loud warning.
    """
    secret = settings.jwt_secret
    if not secret or secret in KNOWN_PLACEHOLDER_SECRETS:
        if settings.is_production:
            raise ConfigurationError(
                "JWT_SECRET must be set to a strong, non-default value in production"
            )
        logger.warning(
            "JWT_SECRET is %s; using an ephemeral random secret, "
            "issued tokens will not survive a restart",
            "a known placeholder" if secret else "not set",
        )
        return secrets.token_urlsafe(48)

    if len(secret) < MIN_SECRET_LENGTH:
        logger.warning(
            "JWT_SECRET is shorter than %d characters; use a longer random value",
            MIN_SECRET_LENGTH,
        )
    return secret


class TokenIssuer:
    """Mints and checks HMAC-signed bearer tokens for verified emails."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        if not secret:
            raise ConfigurationError("A token signing secret is required")
        self._secret = secret
        self._algorithm = algorithm
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def mint(self, identity: str) -> IssuedToken:
        """Return a token asserting *identity*, valid for the configured TTL."""
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self._ttl
        claims = {
            "sub": identity,
            "email": identity,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        try:
            token = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        except JWTError as exc:
            logger.error("Token signing failed: %s", exc)
            raise SigningFailure() from exc
        return IssuedToken(token=token, identity=identity, issued_at=issued_at, expires_at=expires_at)

    def verify(self, token: str) -> TokenClaims:
        """Check signature and expiry; raise :class:`SigningFailure` otherwise."""
        if not token:
            raise SigningFailure()
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.info("Rejected token: %s", exc)
            raise SigningFailure() from exc

        identity = payload.get("sub")
        exp = payload.get("exp")
        iat = payload.get("iat")
        if not isinstance(identity, str) or not isinstance(exp, int) or not isinstance(iat, int):
            logger.info("Rejected token with missing claims")
            raise SigningFailure()

        expires_at = datetime.fromtimestamp(exp, UTC)
        if self._clock() >= expires_at:
            logger.info("Rejected expired token for %s", identity)
            raise SigningFailure()

        return TokenClaims(
            identity=identity,
            issued_at=datetime.fromtimestamp(iat, UTC),
            expires_at=expires_at,
        )
