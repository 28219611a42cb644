from __future__ import annotations
import logging
import uuid
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_db, get_claims, get_similarity_service, api_error, user_id_from
from ..core.config import get_settings
from ..core.nats import publish_event_created
from ..core.redis import check_and_increment_quota
from ..core.similarity import CandidateFetchError, EventSimilarityService, SimilarityAssessment, Tier, warning_message
from ..models import Event
from ..schemas import (
    EventCreate, EventCreateResponse, EventRead,
    SimilarityCheckRequest, SimilarityAssessmentRead, SimilarityMatchRead,
)
from ..services.events import create_event, similarity_audit_row

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/api/events", tags=["events"])

def _event_read(e: Event) -> EventRead:
    return EventRead(
        id=e.id, title=e.title, description=e.description, location=e.location, city=e.city,
        start_at=e.start_at, end_at=e.end_at, capacity=e.capacity, short_blurb=e.short_blurb,
        slug=e.slug, created_by=e.created_by,
    )

def _assessment_read(result: SimilarityAssessment) -> SimilarityAssessmentRead:
    return SimilarityAssessmentRead(
        has_duplicates=result.has_duplicates,
        assessment=result.assessment.value,
        matches=[
            SimilarityMatchRead(
                similar_event_id=m.similar_event_id, similar_event_title=m.similar_event_title,
                score=round(m.score, 4), label=m.label.value,
            )
            for m in result.matches
        ],
        warning=warning_message(result),
    )

# --- 1) Organiser creates an event; near-duplicates of their own events are refused
@router.post("", response_model=EventCreateResponse, status_code=201)
async def create_event_route(
    payload: EventCreate,
    claims: dict = Depends(get_claims),
    db: AsyncSession = Depends(get_db),
    similarity: EventSimilarityService = Depends(get_similarity_service),
):
    organizer_id = user_id_from(claims)

    quota = await check_and_increment_quota(str(organizer_id), "create_event")
    if not quota.allowed:
        raise api_error(429, "quota_exceeded",
                        f"Quota exceeded: {quota.current_count} / {quota.limit_per_day} daily limit")

    result: SimilarityAssessment | None
    try:
        result = await similarity.check(payload.title, payload.location, payload.start_at, str(organizer_id))
    except CandidateFetchError:
        if settings.similarity_fail_closed:
            raise api_error(503, "similarity_unavailable", "Duplicate check unavailable, please try again later")
        await db.rollback()
        result = None

    if result is not None and result.assessment == Tier.BLOCK:
        top = result.top_match
        raise api_error(
            409, "duplicate_detected", warning_message(result),
            similar_event={
                "similar_event_id": top.similar_event_id,
                "similar_event_title": top.similar_event_title,
                "score": round(top.score, 4),
            },
        )

    event = await create_event(db, payload=payload, organizer_id=organizer_id)
    if result is not None:
        audit = similarity_audit_row(event.id, result)
        if audit is not None:
            db.add(audit)
        warning = warning_message(result)
        assessment = result.assessment.value
    else:
        warning = "Duplicate check was skipped; please review your events for duplicates."
        assessment = "unchecked"
    await db.commit()
    logger.info("Event %s created by %s (assessment=%s)", event.id, organizer_id, assessment)

    await publish_event_created({
        "event_id": str(event.id),
        "created_by": str(organizer_id),
        "start_at": event.start_at.isoformat(),
        "assessment": assessment,
    })
    return EventCreateResponse(event_id=event.id, slug=event.slug, assessment=assessment, warning=warning)

# --- 2) Preview the duplicate assessment while the organiser is still editing
@router.post("/similarity-check", response_model=SimilarityAssessmentRead)
async def similarity_check(
    payload: SimilarityCheckRequest,
    claims: dict = Depends(get_claims),
    similarity: EventSimilarityService = Depends(get_similarity_service),
):
    organizer_id = user_id_from(claims)
    try:
        result = await similarity.check(
            payload.title, payload.location, payload.start_at, str(organizer_id),
            exclude_event_id=str(payload.exclude_event_id) if payload.exclude_event_id else None,
        )
    except CandidateFetchError:
        raise api_error(503, "similarity_unavailable", "Duplicate check unavailable, please try again later")
    return _assessment_read(result)

@router.get("/{event_id}", response_model=EventRead)
async def get_event(event_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    e = await db.get(Event, event_id)
    if not e:
        raise api_error(404, "event_not_found", "Event not found")
    return _event_read(e)
