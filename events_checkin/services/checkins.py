from __future__ import annotations
import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from ..models import CheckInStatus, Registration, utcnow

async def get_registration(db: AsyncSession, registration_id: uuid.UUID) -> Registration | None:
    return (await db.execute(
        select(Registration).where(Registration.id == registration_id)
    )).scalar_one_or_none()

async def record_checkin(db: AsyncSession, *, registration: Registration) -> tuple[Registration, bool]:
    """
    Move a registration from pending to checked_in.
    Returns (registration, created); created is False when it was already
    checked in. The conditional UPDATE makes concurrent scans of the same
    token race-free: only one of them sees a row change.
    """
    res = await db.execute(
        update(Registration)
        .where(
            Registration.id == registration.id,
            Registration.check_in_status == CheckInStatus.PENDING,
        )
        .values(check_in_status=CheckInStatus.CHECKED_IN, checked_in_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(registration)
    return registration, res.rowcount == 1
