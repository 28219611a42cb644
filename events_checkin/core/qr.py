"""
Signed, expiring check-in tokens.

A token is an HS256 JWT whose payload binds a registration (and optionally
its event) to an expiry. Verification is a closed-form decision over the
token bytes, the signing secret and the clock: nothing is stored, so the
only way to invalidate outstanding tokens is to rotate the secret.
"""
from __future__ import annotations
import base64
import binascii
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from io import BytesIO
from typing import Any, Callable, Dict

import jwt
import qrcode
import qrcode.image.svg
from jwt.utils import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)

QR_AUD = "event-checkin"
QR_ISS = "events-checkin-svc"
QR_SCOPE = "checkin"
QR_ALG = "HS256"

Clock = Callable[[], datetime]

_CHECK_IN_PATH = re.compile(r"/check-in/([^/?#\s]+)")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class InvalidArgument(ValueError):
    pass

class TokenError(str, Enum):
    MALFORMED = "malformed"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"

@dataclass(frozen=True)
class CheckInToken:
    registration_id: str
    event_id: str | None
    issued_at: datetime
    expires_at: datetime

    def remaining_hours(self, now: datetime) -> int:
        remaining = (self.expires_at - now).total_seconds()
        return max(0, int(remaining // 3600))

@dataclass(frozen=True)
class IssuedToken:
    token: str
    registration_id: str
    event_id: str | None
    issued_at: datetime
    expires_at: datetime

@dataclass(frozen=True)
class VerifyResult:
    """Outcome of :meth:`QRTokenService.verify`; exactly one of token/error is set."""
    token: CheckInToken | None = None
    error: TokenError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

class QRTokenService:
    def __init__(self, *, secret: str, base_url: str, clock: Clock = utcnow):
        if not secret:
            raise InvalidArgument("signing secret must not be empty")
        self._secret = secret
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    def generate(self, registration_id: str, expires_in_hours: float, event_id: str | None = None) -> IssuedToken:
        if not registration_id or not str(registration_id).strip():
            raise InvalidArgument("registration_id is required")
        if (
            isinstance(expires_in_hours, bool)
            or not isinstance(expires_in_hours, (int, float))
            or not (expires_in_hours > 0)
            or math.isinf(expires_in_hours)
        ):
            raise InvalidArgument("expires_in_hours must be a positive number")

        now = self._clock().timestamp()
        iat = int(now)
        # rounded up from the exact time so the token never lives shorter than asked
        try:
            exp = math.ceil(now + expires_in_hours * 3600)
            issued_at = datetime.fromtimestamp(iat, tz=timezone.utc)
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise InvalidArgument("expires_in_hours is out of range")
        # field order is fixed so equal inputs always serialize identically
        payload: Dict[str, Any] = {
            "aud": QR_AUD,
            "iss": QR_ISS,
            "scope": QR_SCOPE,
            "registration_id": str(registration_id),
        }
        if event_id is not None:
            payload["event_id"] = str(event_id)
        payload["iat"] = iat
        payload["exp"] = exp

        token = jwt.encode(payload, self._secret, algorithm=QR_ALG)
        return IssuedToken(
            token=token,
            registration_id=str(registration_id),
            event_id=payload.get("event_id"),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def verify(self, token: str) -> VerifyResult:
        if not isinstance(token, str) or token.count(".") != 2:
            return self._reject(TokenError.MALFORMED, "wrong shape")

        # base64 decoding ignores trailing pad bits, so a signature segment
        # must re-encode to itself or two spellings would verify
        signature_segment = token.rsplit(".", 1)[1]
        try:
            canonical = base64url_encode(base64url_decode(signature_segment)).decode("ascii")
        except (binascii.Error, ValueError):
            return self._reject(TokenError.MALFORMED, "undecodable signature")
        if canonical != signature_segment:
            return self._reject(TokenError.INVALID_SIGNATURE, "non-canonical signature")

        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[QR_ALG],
                audience=QR_AUD,
                issuer=QR_ISS,
                # expiry is checked below against the injected clock
                options={"require": ["exp", "iat", "aud", "iss"], "verify_exp": False, "verify_iat": False},
            )
        except jwt.InvalidSignatureError:
            return self._reject(TokenError.INVALID_SIGNATURE, "signature mismatch")
        except jwt.InvalidTokenError as e:
            return self._reject(TokenError.MALFORMED, str(e))

        registration_id = payload.get("registration_id")
        event_id = payload.get("event_id")
        if payload.get("scope") != QR_SCOPE:
            return self._reject(TokenError.MALFORMED, "invalid scope")
        if not isinstance(registration_id, str) or not registration_id:
            return self._reject(TokenError.MALFORMED, "missing claim: registration_id")
        if event_id is not None and not isinstance(event_id, str):
            return self._reject(TokenError.MALFORMED, "invalid claim: event_id")
        if not isinstance(payload["iat"], int) or not isinstance(payload["exp"], int):
            return self._reject(TokenError.MALFORMED, "non-integer timestamps")

        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        if self._clock() > expires_at:
            return self._reject(TokenError.EXPIRED, f"expired at {expires_at.isoformat()}")

        return VerifyResult(token=CheckInToken(
            registration_id=registration_id,
            event_id=event_id,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=expires_at,
        ))

    def generate_check_in_url(self, token: str) -> str:
        return f"{self._base_url}/check-in/{token}"

    @staticmethod
    def _reject(error: TokenError, reason: str) -> VerifyResult:
        logger.info("QR token rejected (%s): %s", error.value, reason)
        return VerifyResult(error=error)

def extract_token(scanned: str) -> str | None:
    """Return the token from scanner output, which is either the bare token or a check-in URL."""
    if not scanned:
        return None
    scanned = scanned.strip()
    match = _CHECK_IN_PATH.search(scanned)
    if match:
        return match.group(1)
    if "/" in scanned:
        return None
    return scanned or None

def qr_png_bytes(data: str) -> bytes:
    img = qrcode.make(data, border=1)
    b = BytesIO()
    img.save(b, format="PNG")
    return b.getvalue()

def qr_image_data_url(data: str, fmt: str = "svg") -> str:
    if fmt == "png":
        return "data:image/png;base64," + base64.b64encode(qr_png_bytes(data)).decode("ascii")
    if fmt != "svg":
        raise InvalidArgument(f"unsupported QR image format: {fmt}")
    img = qrcode.make(data, image_factory=qrcode.image.svg.SvgPathImage, border=1)
    b = BytesIO()
    img.save(b)
    return "data:image/svg+xml;base64," + base64.b64encode(b.getvalue()).decode("ascii")
