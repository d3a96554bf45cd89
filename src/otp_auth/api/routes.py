"""Auth API router — request a code, verify it, use the token.

Endpoints
---------
POST /auth/request-code   → email a login code
POST /auth/verify-code    → exchange email + code for a session token
GET  /protected           → example consumer of the bearer token
GET  /stats               → OTP storage statistics
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from otp_auth.bootstrap import Services
from otp_auth.errors import SigningFailure

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])
bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def client_origin(request: Request) -> str | None:
    """First hop of ``X-Forwarded-For``, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


# ── Request / response models ────────────────────────────
# Fields are optional so missing values reach the service and come back
# as a 400 with the usual error shape.

class CodeRequest(BaseModel):
    email: str | None = None


class CodeRequestResponse(BaseModel):
    message: str
    expires_in: int
    code: str | None = None


class VerifyRequest(BaseModel):
    email: str | None = None
    code: str | None = None


class VerifyResponse(BaseModel):
    token: str
    email: str
    expires_at: str


class ProtectedResponse(BaseModel):
    ok: bool
    user: str
    expires: str


class StatsResponse(BaseModel):
    storage_type: str
    durable: bool
    active_codes: int


# ── Endpoints ────────────────────────────────────────────

@router.post(
    "/auth/request-code",
    response_model=CodeRequestResponse,
    response_model_exclude_none=True,
)
async def request_code(
    body: CodeRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    """Email a one-time login code to the given address."""
    result = await services.otp.request_code(body.email, origin=client_origin(request))
    return CodeRequestResponse(
        message="Code sent.",
        expires_in=services.otp.ttl_seconds,
        code=result.code,
    )


@router.post("/auth/verify-code", response_model=VerifyResponse)
async def verify_code(body: VerifyRequest, services: Services = Depends(get_services)):
    """Exchange a valid code for a signed session token."""
    issued = await services.otp.verify_code(body.email, body.code)
    return VerifyResponse(
        token=issued.token,
        email=issued.identity,
        expires_at=issued.expires_at.isoformat(),
    )


@router.get("/protected", response_model=ProtectedResponse)
async def protected(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    services: Services = Depends(get_services),
):
    """Example endpoint that only accepts a valid session token."""
    if not creds or not creds.credentials:
        raise SigningFailure()
    claims = services.tokens.verify(creds.credentials)
    return ProtectedResponse(ok=True, user=claims.identity, expires=claims.expires_at.isoformat())


@router.get("/stats", response_model=StatsResponse)
async def stats(services: Services = Depends(get_services)):
    """Storage backend and number of outstanding codes."""
    result = await services.otp.stats()
    return StatsResponse(
        storage_type=result.storage_type,
        durable=result.durable,
        active_codes=result.active_codes,
    )
