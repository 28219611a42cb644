from __future__ import annotations
from typing import Any, Dict, AsyncGenerator
from fastapi import Depends, Header, HTTPException, status
import logging
import secrets
import uuid
import time
import httpx
import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .core.config import get_settings
from .core.qr import QRTokenService
from .core.similarity import EventSimilarityService
from .services.events import SqlCandidateEventReader

logger = logging.getLogger(__name__)
settings = get_settings()

_JWKS: Dict[str, Any] | None = None
_JWKS_TS: float = 0.0
_JWKS_TTL: int = 3600

async def fetch_jwks() -> Dict[str, Any]:
    global _JWKS, _JWKS_TS
    now = time.time()
    if _JWKS is None or (now - _JWKS_TS) > _JWKS_TTL:
        async with httpx.AsyncClient() as client:
            r = await client.get(settings.auth_jwks_url, timeout=5.0)
            r.raise_for_status()
            _JWKS = r.json()
            _JWKS_TS = now
    return _JWKS

async def get_signing_key(token: str) -> jwt.PyJWK:
    jwks = await fetch_jwks()
    keys = jwks.get("keys", [])
    if not keys:
        raise jwt.InvalidTokenError("identity provider published no keys")
    kid = jwt.get_unverified_header(token).get("kid")
    for key in keys:
        if kid is None or key.get("kid") == kid:
            return jwt.PyJWK(key)
    raise jwt.InvalidTokenError("unknown signing key")

def _bearer(authorization: str | None) -> str | None:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None

async def _decode_claims(token: str) -> Dict[str, Any]:
    try:
        key = await get_signing_key(token)
        payload = jwt.decode(
            token,
            key=key.key,
            algorithms=[key.algorithm_name],
            audience=settings.auth_audience,
            options={"verify_aud": settings.auth_audience is not None, "require": ["sub", "exp"]},
        )
    except (jwt.PyJWTError, httpx.HTTPError) as e:
        logger.info("Bearer token rejected: %s", e)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload

async def get_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any]:
    token = _bearer(authorization)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    return await _decode_claims(token)

async def get_optional_claims(authorization: str | None = Header(default=None)) -> Dict[str, Any] | None:
    """Guests may call some routes anonymously; a token that is sent must still be valid."""
    token = _bearer(authorization)
    if token is None:
        return None
    return await _decode_claims(token)

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for s in get_session():
        yield s

# --- core services ---

_qr_service: QRTokenService | None = None

def get_qr_service() -> QRTokenService:
    global _qr_service
    if _qr_service is None:
        secret = settings.qr_token_secret
        if not secret:
            # tokens signed with this die with the process
            logger.warning("QR_TOKEN_SECRET not set; using an ephemeral secret for this process")
            secret = secrets.token_urlsafe(48)
        _qr_service = QRTokenService(secret=secret, base_url=settings.app_base_url)
    return _qr_service

def get_similarity_service(db: AsyncSession = Depends(get_db)) -> EventSimilarityService:
    return EventSimilarityService(SqlCandidateEventReader(db))

# --- helpers shared by routers ---

def api_error(status_code: int, code: str, message: str, **extra: Any) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"error": message, "code": code, **extra})

def user_id_from(claims: Dict[str, Any]) -> uuid.UUID:
    try:
        return uuid.UUID(str(claims["sub"]))
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
