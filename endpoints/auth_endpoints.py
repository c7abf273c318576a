# auth_endpoints.py
from __future__ import annotations

import hmac
import logging
import time
from typing import Any

import jwt
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from settings import Settings

router = APIRouter(tags=["auth"])
logger = logging.getLogger(__name__)

ANONYMOUS_ACTOR = "anonymous"


class LoginRequest(BaseModel):
    username: str
    password: str


class VerifyRequest(BaseModel):
    token: str


# -------------------------------------------------------------------
# Helpers
# -------------------------------------------------------------------
def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _mask_token(token: str, *, head: int = 16, tail: int = 8) -> str:
    if not token:
        return ""
    if len(token) <= head + tail + 3:
        return token
    return f"{token[:head]}...{token[-tail:]}"


def _check_password(settings: Settings, username: str, password: str) -> bool:
    expected = settings.users.get(username)
    if expected is None:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), password.encode("utf-8"))


def issue_access_token(settings: Settings, *, subject: str) -> dict[str, Any]:
    now = int(time.time())
    exp = now + settings.jwt_ttl_seconds

    payload = {
        "sub": subject,
        "username": subject,
        "iat": now,
        "exp": exp,
    }
    token = jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)
    if settings.debug_log_requests:
        logger.debug("ISSUED JWT (masked): sub=%s %s", subject, _mask_token(token))
    return {
        "access_token": token,
        "token_type": "Bearer",
        "expires_in": exp - now,
        "username": subject,
    }


def decode_access_token(settings: Settings, token: str) -> dict[str, Any]:
    """Raises jwt.InvalidTokenError (expired, bad signature, malformed)."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])


def require_user(request: Request) -> str:
    """
    Dependency for protected routes; returns the caller's username.

    With auth disabled every caller is the anonymous actor.
    """
    settings = _settings(request)
    if not settings.require_auth:
        return ANONYMOUS_ACTOR

    auth = request.headers.get("Authorization") or ""
    if not auth.lower().startswith("bearer "):
        raise HTTPException(
            status_code=401,
            detail="missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    token = auth.split(" ", 1)[1].strip()
    try:
        payload = decode_access_token(settings, token)
    except jwt.InvalidTokenError as e:
        logger.info("AUTH: rejected token (%s)", type(e).__name__)
        raise HTTPException(
            status_code=401,
            detail="invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.strip():
        raise HTTPException(status_code=401, detail="token has no subject")
    return subject.strip()


# -------------------------------------------------------------------
# Routes
# -------------------------------------------------------------------
@router.post("/auth/login")
async def login(request: Request, body: LoginRequest):
    settings = _settings(request)
    username = body.username.strip()
    if not username:
        raise HTTPException(status_code=400, detail="username is required")
    if not _check_password(settings, username, body.password):
        logger.info("LOGIN: failed for user=%s", username)
        raise HTTPException(status_code=401, detail="invalid credentials")

    audit = request.app.state.audit
    if audit is not None:
        audit.record("login", None, username)
    return issue_access_token(settings, subject=username)


@router.post("/auth/verify")
async def verify(request: Request, body: VerifyRequest):
    try:
        payload = decode_access_token(_settings(request), body.token)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail="invalid or expired token") from e
    return {"valid": True, "payload": payload}
