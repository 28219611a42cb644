from __future__ import annotations

import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from ..deps import get_db, get_claims, get_optional_claims, api_error, user_id_from
from ..core.redis import check_and_increment_quota
from ..models import Event, Registration
from ..schemas import RegistrationCreate, RegistrationRead

router = APIRouter(prefix="/api/events/{event_id}/registrations", tags=["registrations"])

def registration_read(r: Registration) -> RegistrationRead:
    return RegistrationRead(
        id=r.id, event_id=r.event_id, user_id=r.user_id, name=r.name, email=r.email,
        check_in_status=r.check_in_status.value, checked_in_at=r.checked_in_at,
    )

async def _get_event(db: AsyncSession, event_id: uuid.UUID) -> Event:
    e = await db.get(Event, event_id)
    if not e:
        raise api_error(404, "event_not_found", "Event not found")
    return e

async def _count_registrations(db: AsyncSession, event_id: uuid.UUID) -> int:
    q = select(func.count()).select_from(Registration).where(Registration.event_id == event_id)
    return (await db.execute(q)).scalar_one()

@router.post("", response_model=RegistrationRead, status_code=201)
async def register_for_event(
    event_id: uuid.UUID,
    payload: RegistrationCreate,
    claims: dict | None = Depends(get_optional_claims),
    db: AsyncSession = Depends(get_db),
):
    user_id = user_id_from(claims) if claims else None
    if user_id is None and not (payload.name and payload.email):
        raise api_error(400, "missing_fields", "Guests must provide name and email")

    if user_id is not None:
        quota = await check_and_increment_quota(str(user_id), "register")
        if not quota.allowed:
            raise api_error(429, "quota_exceeded",
                            f"Quota exceeded: {quota.current_count} / {quota.limit_per_day} daily limit")

    event = await _get_event(db, event_id)

    dup = select(Registration).where(Registration.event_id == event.id)
    if user_id is not None:
        dup = dup.where(Registration.user_id == user_id)
    else:
        dup = dup.where(Registration.email == payload.email)
    if (await db.execute(dup)).scalar_one_or_none():
        raise api_error(409, "already_registered", "Already registered for this event")

    if event.capacity is not None and await _count_registrations(db, event.id) >= event.capacity:
        raise api_error(409, "event_full", "Event is at capacity")

    reg = Registration(
        event_id=event.id, user_id=user_id, name=payload.name, email=payload.email,
        phone=payload.phone, message=payload.message,
    )
    db.add(reg)
    try:
        await db.commit()
    except IntegrityError:
        # lost a race with a concurrent registration for the same person
        await db.rollback()
        raise api_error(409, "already_registered", "Already registered for this event")
    await db.refresh(reg)
    return registration_read(reg)

@router.get("", response_model=list[RegistrationRead])
async def list_registrations(
    event_id: uuid.UUID,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
):
    event = await _get_event(db, event_id)
    if event.created_by != user_id_from(claims):
        raise api_error(403, "unauthorized", "Only the event organizer can list registrations")
    rows = (await db.execute(
        select(Registration).where(Registration.event_id == event.id).order_by(Registration.created_at.asc())
    )).scalars().all()
    return [registration_read(r) for r in rows]
