from __future__ import annotations
from typing import Annotated, Literal
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, model_validator

Str255     = Annotated[str, Field(min_length=1, max_length=255)]
OptStr255  = Annotated[str | None, Field(max_length=255)]
PosHours   = Annotated[float, Field(gt=0, le=24 * 365)]

TierName = Literal["clear", "low_risk", "warn", "block"]

# ---- Events ----
class EventCreate(BaseModel):
    title: Str255
    description: str | None = None
    location: Str255
    city: Annotated[str | None, Field(max_length=128)] = None
    start_at: datetime
    end_at: datetime
    capacity: Annotated[int | None, Field(gt=0)] = None
    short_blurb: Annotated[str | None, Field(max_length=280)] = None

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self

class EventRead(BaseModel):
    id: UUID
    title: str
    description: str | None
    location: str
    city: str | None
    start_at: datetime
    end_at: datetime
    capacity: int | None
    short_blurb: str | None
    slug: str
    created_by: UUID

class EventCreateResponse(BaseModel):
    event_id: UUID
    slug: str
    assessment: TierName | Literal["unchecked"]
    warning: str | None = None
    message: str = "Event created successfully"

# ---- Similarity ----
class SimilarityCheckRequest(BaseModel):
    title: Str255
    location: Str255
    start_at: datetime
    exclude_event_id: UUID | None = None

class SimilarityMatchRead(BaseModel):
    similar_event_id: str
    similar_event_title: str
    score: float
    label: TierName

class SimilarityAssessmentRead(BaseModel):
    has_duplicates: bool
    assessment: TierName
    matches: list[SimilarityMatchRead]
    warning: str | None = None

# ---- Registrations ----
class RegistrationCreate(BaseModel):
    name: OptStr255 = None
    email: EmailStr | None = None
    phone: Annotated[str | None, Field(max_length=32)] = None
    message: str | None = None

class RegistrationRead(BaseModel):
    id: UUID
    event_id: UUID
    user_id: UUID | None
    name: str | None
    email: str | None
    check_in_status: Literal["pending", "checked_in"]
    checked_in_at: datetime | None = None

# ---- QR ----
class QRGenerateRequest(BaseModel):
    registration_id: UUID
    expires_in_hours: PosHours | None = None
    include_image: bool = False

class QRGenerateResponse(BaseModel):
    qr_token: str
    qr_data: str  # check-in URL; frontends encode this into the QR image
    expires_at: datetime
    message: str = "QR token generated successfully"
    qr_image: str | None = None  # data: URL when include_image is set

class QRBatchRequest(BaseModel):
    event_id: UUID
    expires_in_hours: PosHours | None = None

class QRBatchItem(BaseModel):
    registration_id: UUID
    qr_token: str
    qr_data: str
    expires_at: datetime

class QRVerifyRequest(BaseModel):
    qr_token: Annotated[str, Field(min_length=1, max_length=4096)]  # bare token or check-in URL

class QRVerifyResponse(BaseModel):
    checked_in: bool
    registration_id: UUID
    event_id: UUID
    attendee_name: str | None = None
    checked_in_at: datetime | None = None
    message: str
