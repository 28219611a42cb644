from __future__ import annotations
import logging
import uuid
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..deps import get_db, get_claims, get_qr_service, api_error, user_id_from
from ..core.config import get_settings
from ..core.nats import publish_checkin
from ..core.qr import QRTokenService, IssuedToken, extract_token, qr_image_data_url, qr_png_bytes
from ..core.redis import allow_request, check_and_increment_quota
from ..models import CheckInStatus, Event, Registration
from ..schemas import (
    QRGenerateRequest, QRGenerateResponse, QRBatchRequest, QRBatchItem,
    QRVerifyRequest, QRVerifyResponse,
)
from ..services.checkins import get_registration, record_checkin

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/api/qr", tags=["qr"])

INVALID_TOKEN_MESSAGE = "Invalid or expired token"

async def _registration_and_event(db: AsyncSession, registration_id: uuid.UUID) -> tuple[Registration, Event]:
    reg = await get_registration(db, registration_id)
    if not reg:
        raise api_error(404, "registration_not_found", "Registration not found")
    event = await db.get(Event, reg.event_id)
    return reg, event

def _ensure_can_issue(caller: uuid.UUID, reg: Registration, event: Event) -> None:
    # only the registrant or the event organiser may obtain a registration's QR
    if reg.user_id != caller and event.created_by != caller:
        raise api_error(403, "unauthorized", "Not authorized to generate QR for this registration")

async def _enforce_fetch_quota(caller: uuid.UUID) -> None:
    quota = await check_and_increment_quota(str(caller), "qr_fetch")
    if not quota.allowed:
        raise api_error(429, "quota_exceeded",
                        f"Quota exceeded: {quota.current_count} / {quota.limit_per_day} daily limit")

def _issue(qr: QRTokenService, reg: Registration, hours: float | None) -> IssuedToken:
    return qr.generate(str(reg.id), hours or settings.qr_default_ttl_hours, event_id=str(reg.event_id))

# --- 1) Registrant (or organiser) fetches a signed check-in token for a registration
@router.post("/generate", response_model=QRGenerateResponse)
async def generate_qr(
    payload: QRGenerateRequest,
    response: Response,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    qr: QRTokenService = Depends(get_qr_service),
):
    caller = user_id_from(claims)
    await _enforce_fetch_quota(caller)
    reg, event = await _registration_and_event(db, payload.registration_id)
    _ensure_can_issue(caller, reg, event)

    issued = _issue(qr, reg, payload.expires_in_hours)
    url = qr.generate_check_in_url(issued.token)
    response.headers["Cache-Control"] = "private, max-age=3600"
    return QRGenerateResponse(
        qr_token=issued.token,
        qr_data=url,
        expires_at=issued.expires_at,
        qr_image=qr_image_data_url(url, "svg") if payload.include_image else None,
    )

# --- 2) Organiser prints tokens for every registration of an event
@router.post("/batch", response_model=list[QRBatchItem])
async def generate_qr_batch(
    payload: QRBatchRequest,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    qr: QRTokenService = Depends(get_qr_service),
):
    caller = user_id_from(claims)
    event = await db.get(Event, payload.event_id)
    if not event:
        raise api_error(404, "event_not_found", "Event not found")
    if event.created_by != caller:
        raise api_error(403, "unauthorized", "Only the event organizer can batch-generate QR codes")
    await _enforce_fetch_quota(caller)

    regs = (await db.execute(
        select(Registration).where(Registration.event_id == event.id).order_by(Registration.created_at.asc())
    )).scalars().all()
    items = []
    for reg in regs:
        issued = _issue(qr, reg, payload.expires_in_hours)
        items.append(QRBatchItem(
            registration_id=reg.id, qr_token=issued.token,
            qr_data=qr.generate_check_in_url(issued.token), expires_at=issued.expires_at,
        ))
    return items

# (Optional) PNG for kiosk / printing
@router.get("/registrations/{registration_id}.png")
async def qr_png(
    registration_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    qr: QRTokenService = Depends(get_qr_service),
):
    caller = user_id_from(claims)
    await _enforce_fetch_quota(caller)
    reg, event = await _registration_and_event(db, registration_id)
    _ensure_can_issue(caller, reg, event)
    issued = _issue(qr, reg, None)
    return Response(
        content=qr_png_bytes(qr.generate_check_in_url(issued.token)),
        media_type="image/png",
        headers={"Cache-Control": "private, max-age=3600"},
    )

# --- 3) Organiser scans an attendee's QR: verify token, then check the registration in
@router.post("/verify", response_model=QRVerifyResponse)
async def verify_and_checkin(
    payload: QRVerifyRequest,
    request: Request,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    qr: QRTokenService = Depends(get_qr_service),
):
    ip = request.client.host if request.client else "unknown"
    if not await allow_request(ip, "qr.verify"):
        raise api_error(429, "rate_limited", "Too many requests")
    scanner = user_id_from(claims)

    # a) verify token; every failure kind looks the same to the client
    token = extract_token(payload.qr_token)
    result = qr.verify(token) if token else None
    if result is None or not result.ok:
        raise api_error(401, "invalid_token", INVALID_TOKEN_MESSAGE)
    decoded = result.token
    try:
        registration_id = uuid.UUID(decoded.registration_id)
    except ValueError:
        raise api_error(401, "invalid_token", INVALID_TOKEN_MESSAGE)

    # b) the token must still point at a registration of the same event
    reg, event = await _registration_and_event(db, registration_id)
    if decoded.event_id is not None and decoded.event_id != str(reg.event_id):
        logger.warning("QR token for registration %s names event %s, registration is for %s",
                       reg.id, decoded.event_id, reg.event_id)
        raise api_error(401, "invalid_token", INVALID_TOKEN_MESSAGE)

    # c) only the organiser of that event may check attendees in
    if event.created_by != scanner:
        raise api_error(403, "unauthorized", "Only the event organizer can check attendees in")

    # d) pending -> checked_in exactly once
    if reg.check_in_status == CheckInStatus.CHECKED_IN:
        raise api_error(409, "already_checked_in", "Already checked in",
                        checked_in_at=reg.checked_in_at.isoformat() if reg.checked_in_at else None)
    reg, created = await record_checkin(db, registration=reg)
    if not created:
        raise api_error(409, "already_checked_in", "Already checked in",
                        checked_in_at=reg.checked_in_at.isoformat() if reg.checked_in_at else None)
    logger.info("Registration %s checked in to event %s by %s", reg.id, reg.event_id, scanner)

    # e) notify downstream consumers (best effort)
    await publish_checkin({
        "registration_id": str(reg.id),
        "event_id": str(reg.event_id),
        "user_id": str(reg.user_id) if reg.user_id else None,
        "checked_in_at": reg.checked_in_at.isoformat(),
        "idempotency_key": str(reg.id),
    })

    name = reg.name or "Attendee"
    return QRVerifyResponse(
        checked_in=True,
        registration_id=reg.id,
        event_id=reg.event_id,
        attendee_name=reg.name,
        checked_in_at=reg.checked_in_at,
        message=f"{name} checked in successfully",
    )
