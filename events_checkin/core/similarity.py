"""
Near-duplicate detection for event creation.

A proposed event is scored against the organizer's events around the same
date on three axes (title, location, start time). The best score is mapped to
a tier the creation flow uses to block, warn, or proceed. The service only
advises; it never writes anything.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from enum import Enum
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)

_PUNCT = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")

class Tier(str, Enum):
    CLEAR = "clear"
    LOW_RISK = "low_risk"
    WARN = "warn"
    BLOCK = "block"

class CandidateFetchError(Exception):
    """The existing-event lookup failed; the assessment cannot be trusted."""

@dataclass(frozen=True)
class SimilarityPolicy:
    block_threshold: float = 0.90
    warn_threshold: float = 0.80
    low_risk_threshold: float = 0.40

    title_weight: float = 0.60
    location_weight: float = 0.25
    time_weight: float = 0.15

    # start times further apart than this contribute nothing on the time axis
    time_window: timedelta = timedelta(hours=48)
    # how far around the proposed start existing events are fetched
    lookaround: timedelta = timedelta(days=30)
    max_candidates: int = 200

    def __post_init__(self):
        if not (0 <= self.low_risk_threshold <= self.warn_threshold <= self.block_threshold <= 1):
            raise ValueError("thresholds must satisfy 0 <= low_risk <= warn <= block <= 1")
        weights = (self.title_weight, self.location_weight, self.time_weight)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise ValueError("weights must be non-negative with a positive sum")
        if self.time_window <= timedelta(0) or self.lookaround <= timedelta(0):
            raise ValueError("time_window and lookaround must be positive")
        if self.max_candidates <= 0:
            raise ValueError("max_candidates must be positive")

    def tier_for(self, score: float) -> Tier:
        if score >= self.block_threshold:
            return Tier.BLOCK
        if score >= self.warn_threshold:
            return Tier.WARN
        if score >= self.low_risk_threshold:
            return Tier.LOW_RISK
        return Tier.CLEAR

DEFAULT_POLICY = SimilarityPolicy()

@dataclass(frozen=True)
class CandidateEvent:
    id: str
    title: str
    location: str | None
    start_at: datetime
    created_by: str | None = None

@dataclass(frozen=True)
class SimilarityMatch:
    similar_event_id: str
    similar_event_title: str
    score: float
    label: Tier
    title_score: float
    location_score: float
    time_score: float

@dataclass(frozen=True)
class SimilarityAssessment:
    has_duplicates: bool
    assessment: Tier
    matches: list[SimilarityMatch] = field(default_factory=list)

    @property
    def top_match(self) -> SimilarityMatch | None:
        return self.matches[0] if self.matches else None

class CandidateEventReader(Protocol):
    async def fetch_candidates(
        self,
        *,
        organizer_id: str,
        window_start: datetime,
        window_end: datetime,
        exclude_event_id: str | None,
        limit: int,
    ) -> Sequence[CandidateEvent]: ...

def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    value = _PUNCT.sub("", value.lower())
    return _SPACES.sub(" ", value).strip()

def text_similarity(a: str | None, b: str | None) -> float:
    na, nb = normalize_text(a), normalize_text(b)
    if not na or not nb:
        return 0.0
    if na == nb:
        return 1.0
    fuzzy = SequenceMatcher(None, na, nb).ratio()
    ta, tb = set(na.split()), set(nb.split())
    overlap = len(ta & tb) / len(ta | tb)
    return max(fuzzy, overlap)

def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def time_proximity(a: datetime, b: datetime, window: timedelta) -> float:
    gap = abs(as_utc(a) - as_utc(b))
    if gap < timedelta(minutes=1):
        return 1.0
    if gap >= window:
        return 0.0
    return 1.0 - gap / window

class EventSimilarityService:
    def __init__(self, reader: CandidateEventReader, policy: SimilarityPolicy = DEFAULT_POLICY):
        self._reader = reader
        self.policy = policy

    def score(self, title: str, location: str | None, start_at: datetime, existing: CandidateEvent) -> SimilarityMatch:
        p = self.policy
        t = text_similarity(title, existing.title)
        loc = text_similarity(location, existing.location)
        tm = time_proximity(start_at, existing.start_at, p.time_window)
        total = p.title_weight + p.location_weight + p.time_weight
        composite = (p.title_weight * t + p.location_weight * loc + p.time_weight * tm) / total
        composite = min(1.0, max(0.0, composite))
        return SimilarityMatch(
            similar_event_id=existing.id,
            similar_event_title=existing.title,
            score=composite,
            label=p.tier_for(composite),
            title_score=t,
            location_score=loc,
            time_score=tm,
        )

    def assess(self, title: str, location: str | None, start_at: datetime,
               candidates: Sequence[CandidateEvent]) -> SimilarityAssessment:
        matches = [self.score(title, location, start_at, c) for c in candidates]
        matches.sort(key=lambda m: (-m.score, m.similar_event_id))
        tier = self.policy.tier_for(matches[0].score) if matches else Tier.CLEAR
        return SimilarityAssessment(has_duplicates=tier != Tier.CLEAR, assessment=tier, matches=matches)

    async def check(
        self,
        title: str,
        location: str | None,
        start_at: datetime,
        organizer_id: str,
        exclude_event_id: str | None = None,
    ) -> SimilarityAssessment:
        start_at = as_utc(start_at)
        try:
            candidates = await self._reader.fetch_candidates(
                organizer_id=str(organizer_id),
                window_start=start_at - self.policy.lookaround,
                window_end=start_at + self.policy.lookaround,
                exclude_event_id=str(exclude_event_id) if exclude_event_id else None,
                limit=self.policy.max_candidates,
            )
        except Exception as e:
            logger.error("Candidate lookup failed for organizer %s: %s", organizer_id, e)
            raise CandidateFetchError(str(e)) from e

        result = self.assess(title, location, start_at, candidates)
        if result.has_duplicates:
            top = result.matches[0]
            logger.info(
                "Similarity %s for organizer %s: %r vs event %s (%.2f)",
                result.assessment.value, organizer_id, title, top.similar_event_id, top.score,
            )
        return result

def warning_message(result: SimilarityAssessment) -> str | None:
    top = result.top_match
    if result.assessment == Tier.BLOCK:
        if top:
            return f'Event blocked: Too similar to "{top.similar_event_title}" ({top.score * 100:.0f}% match)'
        return "Event blocked: Potential duplicate detected"
    if result.assessment == Tier.WARN:
        if top:
            return (f'Warning: Event similar to "{top.similar_event_title}" '
                    f"({top.score * 100:.0f}% match). Please review.")
        return "Warning: Potential duplicate event detected. Please review."
    if result.assessment == Tier.LOW_RISK and top:
        return f'Note: Event resembles "{top.similar_event_title}" ({top.score * 100:.0f}% match).'
    return None
