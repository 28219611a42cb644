from __future__ import annotations
import re
import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..core.similarity import CandidateEvent, SimilarityAssessment, Tier, as_utc
from ..models import Event, SimilarityCheck, utcnow
from ..schemas import EventCreate

class SqlCandidateEventReader:
    """Reads an organizer's events around a date for duplicate scoring."""

    def __init__(self, db: AsyncSession):
        self._db = db

    async def fetch_candidates(
        self,
        *,
        organizer_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_event_id: str | None,
        limit: int,
    ) -> Sequence[CandidateEvent]:
        stmt = (
            select(Event)
            .where(
                Event.created_by == uuid.UUID(organizer_id),
                Event.start_at >= window_start,
                Event.start_at <= window_end,
            )
            .order_by(Event.start_at.asc())
            .limit(limit)
        )
        if exclude_event_id:
            stmt = stmt.where(Event.id != uuid.UUID(exclude_event_id))
        rows = (await self._db.execute(stmt)).scalars().all()
        return [
            CandidateEvent(
                id=str(e.id), title=e.title, location=e.location,
                start_at=e.start_at, created_by=str(e.created_by),
            )
            for e in rows
        ]

def make_slug(title: str, now: datetime | None = None) -> str:
    base = re.sub(r"[^\w\s-]", "", title.lower().strip())
    base = re.sub(r"-+", "-", re.sub(r"\s+", "-", base))[:50].strip("-") or "event"
    stamp = int((now or utcnow()).timestamp() * 1000)
    return f"{base}-{stamp}-{uuid.uuid4().hex[:6]}"

async def create_event(db: AsyncSession, *, payload: EventCreate, organizer_id: uuid.UUID) -> Event:
    obj = Event(
        title=payload.title,
        description=payload.description,
        location=payload.location,
        city=payload.city,
        start_at=as_utc(payload.start_at),
        end_at=as_utc(payload.end_at),
        capacity=payload.capacity,
        short_blurb=payload.short_blurb,
        slug=make_slug(payload.title),
        created_by=organizer_id,
    )
    db.add(obj)
    await db.flush()
    return obj

def similarity_audit_row(event_id: uuid.UUID, result: SimilarityAssessment) -> SimilarityCheck | None:
    """Audit the strongest match of a non-clear assessment for an event that was created anyway."""
    top = result.top_match
    if top is None or result.assessment == Tier.CLEAR:
        return None
    return SimilarityCheck(
        checking_event_id=event_id,
        similar_event_id=uuid.UUID(top.similar_event_id),
        title_similarity_score=top.title_score,
        score=top.score,
        action="warn" if result.assessment in (Tier.WARN, Tier.BLOCK) else "allowed",
        reason=top.label.value,
    )
