"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- device/location state (`Position`, `FallbackLocation`, `Region`, `ViewportBounds`)
- directory entities and query inputs (`Studio`, `StudioFilters`, `StudioWithDistance`)
- ledger and billing documents (`CheckIn`, `Subscription`, `UserProfile`)

Persisted documents use camelCase field names (`studioId`, `checkinTime`,
`subscriptionStatus`, ...). Python code uses snake_case attributes; the alias
generator maps between the two so API payloads and stored documents keep the
same layout.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SubscriptionStatus = Literal["pending", "active", "canceled", "expired"]
UserSubscriptionStatus = Literal["active", "free", "expired"]
UserType = Literal["premium", "free", "expired"]
LocationStatus = Literal["loading", "granted", "denied"]


class DocumentModel(BaseModel):
    """Base for models that round-trip through the document store."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Name of the attribute that carries the document id (not stored in the document body).
    id_field: ClassVar[str | None] = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]):
        payload = dict(data)
        if cls.id_field:
            payload[cls.id_field] = doc_id
        return cls.model_validate(payload)

    def to_document(self) -> dict[str, Any]:
        exclude = {self.id_field} if self.id_field else None
        return self.model_dump(by_alias=True, exclude=exclude, exclude_none=True)


class Position(BaseModel):
    """A device position in decimal degrees."""

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class FallbackLocation(BaseModel):
    """A predefined place the user can pick when live positioning is unavailable."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    country: str
    coordinates: Position


class Region(DocumentModel):
    """A map region: center plus visible span in degrees."""

    latitude: float
    longitude: float
    latitude_delta: float = Field(..., gt=0)
    longitude_delta: float = Field(..., gt=0)


class ViewportBounds(DocumentModel):
    """The rectangular lat/lng window currently visible on the map."""

    lat_min: float
    lat_max: float
    lng_min: float
    lng_max: float


class StudioLocation(DocumentModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    geohash: str | None = None


class DayHours(DocumentModel):
    open: str = ""
    close: str = ""
    closed: bool = False


class Studio(DocumentModel):
    """A studio as stored in the directory collection (read-only for the core)."""

    id_field: ClassVar[str | None] = "studio_id"

    studio_id: str
    name: str = ""
    address: str = ""
    location: StudioLocation | None = None
    amenities: list[str] = Field(default_factory=list)
    average_rating: float | None = None
    total_ratings: int | None = None
    opening_hours: dict[str, DayHours] | None = None
    is_active: bool = True

    description: str | None = None
    phone: str | None = None
    email: str | None = None
    website: str | None = None
    type: str | None = None
    price_range: Literal["low", "medium", "high"] | None = None
    created_at: datetime | None = None

    @field_validator("name", "address", mode="before")
    @classmethod
    def _missing_text_is_empty(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("amenities", mode="before")
    @classmethod
    def _missing_amenities_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class StudioWithDistance(Studio):
    """A directory result: the studio plus its distance from the query center (if any)."""

    distance_km: float | None = None
    distance: str | None = None


class StudioFilters(DocumentModel):
    """User-facing directory filters. `radius_km=inf` means "worldwide"."""

    radius_km: float = Field(50.0, gt=0)
    is_open: bool = False
    amenities: list[str] = Field(default_factory=list)
    min_rating: float = Field(0.0, ge=0, le=5)
    search_term: str | None = None


class CheckIn(DocumentModel):
    id_field: ClassVar[str | None] = "check_in_id"

    check_in_id: str
    user_id: str
    studio_id: str
    checkin_time: datetime


class CheckInResult(DocumentModel):
    """Outcome of a check-in attempt; "already checked in" is a normal outcome, not an error."""

    success: bool
    already_checked_in: bool = False
    check_in_id: str | None = None
    studio_id: str | None = None


class StudioVisitCount(DocumentModel):
    studio_id: str
    count: int


class CheckInStats(DocumentModel):
    """Aggregates over the most recent `window_size` check-ins of a user."""

    total_check_ins: int
    this_month: int
    this_week: int
    unique_studios: int
    most_visited_studio: StudioVisitCount | None = None
    current_streak_days: int = 0
    window_size: int


class Subscription(DocumentModel):
    id_field: ClassVar[str | None] = "subscription_id"

    subscription_id: str
    user_id: str
    plan_id: str
    started_at: datetime
    expires_at: datetime
    status: SubscriptionStatus = "pending"


class UserProfile(DocumentModel):
    id_field: ClassVar[str | None] = "uid"

    uid: str
    email: str | None = None
    display_name: str | None = None
    subscription_status: UserSubscriptionStatus = "free"
    updated_at: datetime | None = None

    @field_validator("subscription_status", mode="before")
    @classmethod
    def _absent_status_is_free(cls, value: Any) -> Any:
        return "free" if value in (None, "") else value


class AuthUser(DocumentModel):
    uid: str
    email: str | None = None
    email_verified: bool = False


class QrCheckInPayload(DocumentModel):
    """The only accepted QR shape: `{"type": "checkin", "studioId": "<id>"}`."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=False, extra="forbid")

    type: Literal["checkin"]
    studio_id: str = Field(..., min_length=1)
