"""
API routes.

Endpoints:
- GET  `/api/health`: liveness.
- GET  `/api/location/fallbacks`: the fallback places offered when positioning fails.
- GET  `/api/studios`, POST `/api/studios/search`: directory queries (optional viewport).
- GET  `/api/studios/top-rated`, GET `/api/studios/{studio_id}`.
- POST `/api/checkins/scan`: QR check-in.
- GET  `/api/users/{uid}/checkins`, `/checkins/today`, `/checkins/stats`.
- POST `/api/subscriptions`, `/api/subscriptions/{id}/renew`, `/api/subscriptions/{id}/cancel`.
- GET  `/api/users/{uid}/subscription-status`.

Domain errors are mapped to status codes in `studiopass.api.app`.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from studiopass import __version__
from studiopass.catalog.loader import load_studios, seed_store
from studiopass.checkin.ledger import CheckInLedger
from studiopass.checkin.scanner import CheckInScanner
from studiopass.config.overrides import apply_settings_overrides
from studiopass.config.settings import Settings, get_settings
from studiopass.core.cache import KeyedCache, record_cache_stats
from studiopass.core.errors import ValidationError
from studiopass.core.viewport import filter_by_viewport
from studiopass.directory.query import StudioDirectoryQuery
from studiopass.domain.models import DocumentModel, Position, StudioWithDistance, SubscriptionStatus, ViewportBounds
from studiopass.location.resolver import fallback_locations_from
from studiopass.store.memory import InMemoryDocumentStore
from studiopass.subscriptions.projector import SubscriptionStatusProjector, user_type
from studiopass.subscriptions.service import SubscriptionService

router = APIRouter()


@dataclass
class Services:
    settings: Settings
    store: InMemoryDocumentStore
    cache: KeyedCache
    directory: StudioDirectoryQuery
    ledger: CheckInLedger
    scanner: CheckInScanner
    projector: SubscriptionStatusProjector
    subscriptions: SubscriptionService
    seeded: bool = False


def build_services(settings: Settings, store: InMemoryDocumentStore | None = None, *, clock=None) -> Services:
    store = store or InMemoryDocumentStore()
    cache = KeyedCache()
    ledger = CheckInLedger(store, cache, settings, clock=clock)
    projector = SubscriptionStatusProjector(store, cache, settings, clock=clock)
    return Services(
        settings=settings,
        store=store,
        cache=cache,
        directory=StudioDirectoryQuery(store, cache, settings, clock=clock),
        ledger=ledger,
        scanner=CheckInScanner(ledger, settings),
        projector=projector,
        subscriptions=SubscriptionService(store, cache, projector, settings, clock=clock),
    )


@lru_cache
def _services() -> Services:
    return build_services(get_settings())


async def _ready() -> Services:
    services = _services()
    if not services.seeded:
        studios = load_studios(services.settings.directory.catalog_path)
        await seed_store(services.store, studios, collection=services.settings.directory.collection)
        services.seeded = True
    return services


def _studio_payload(studios: list[StudioWithDistance], stats: dict[str, int]) -> dict:
    return {
        "studios": [s.model_dump(mode="json", by_alias=True) for s in studios],
        "count": len(studios),
        "meta": {"cache": stats},
    }


# ---- request bodies ----


class StudioSearchRequest(DocumentModel):
    center: Position | None = None
    filters: dict[str, Any] | None = None
    bounds: ViewportBounds | None = None
    settings_overrides: dict[str, Any] | None = None


class ScanRequest(DocumentModel):
    user_id: str
    code: str


class CreateSubscriptionRequest(DocumentModel):
    user_id: str
    plan_id: str
    duration_days: int
    status: SubscriptionStatus = "active"


class RenewSubscriptionRequest(DocumentModel):
    extension_days: int


# ---- meta ----


@router.get("/api/health")
def get_health() -> dict:
    settings = get_settings()
    return {"status": "ok", "service": settings.app.name, "version": __version__}


@router.get("/api/location/fallbacks")
def get_fallback_locations() -> dict:
    """Return the fallback places and the default map center."""
    settings = get_settings()
    default = settings.location.default_position
    return {
        "fallbacks": [f.model_dump(mode="json") for f in fallback_locations_from(settings)],
        "default": {"latitude": default.latitude, "longitude": default.longitude},
    }


# ---- directory ----


def _center(lat: float | None, lng: float | None) -> Position | None:
    if lat is None and lng is None:
        return None
    if lat is None or lng is None:
        raise ValidationError("lat and lng must be given together")
    return Position(latitude=lat, longitude=lng)


def _bounds(lat_min: float | None, lat_max: float | None, lng_min: float | None, lng_max: float | None):
    values = (lat_min, lat_max, lng_min, lng_max)
    if all(v is None for v in values):
        return None
    if any(v is None for v in values):
        raise ValidationError("lat_min, lat_max, lng_min and lng_max must be given together")
    return ViewportBounds(lat_min=lat_min, lat_max=lat_max, lng_min=lng_min, lng_max=lng_max)


@router.get("/api/studios")
async def get_studios(
    lat: float | None = Query(None, ge=-90, le=90),
    lng: float | None = Query(None, ge=-180, le=180),
    radius_km: float | None = None,
    is_open: bool = False,
    amenity: list[str] = Query(default=[]),
    min_rating: float = 0.0,
    q: str | None = None,
    lat_min: float | None = None,
    lat_max: float | None = None,
    lng_min: float | None = None,
    lng_max: float | None = None,
) -> dict:
    """Directory query; with no `lat`/`lng` every studio is returned (name order)."""
    services = await _ready()
    center = _center(lat, lng)
    bounds = _bounds(lat_min, lat_max, lng_min, lng_max)
    filters: dict[str, Any] = {"is_open": is_open, "amenities": amenity, "min_rating": min_rating, "search_term": q}
    if radius_km is not None:
        filters["radius_km"] = radius_km

    with record_cache_stats() as stats:
        studios = await services.directory.query(center, filters)
    return _studio_payload(filter_by_viewport(studios, bounds), stats.as_dict())


@router.post("/api/studios/search")
async def post_studio_search(request: StudioSearchRequest) -> dict:
    """Directory query with a JSON body; accepts whitelisted `settings_overrides`."""
    services = await _ready()
    directory = services.directory
    if request.settings_overrides:
        try:
            settings = apply_settings_overrides(services.settings, request.settings_overrides)
        except ValueError as e:
            raise HTTPException(status_code=400, detail={"code": "VALIDATION", "message": str(e)}) from e
        directory = StudioDirectoryQuery(services.store, services.cache, settings)

    with record_cache_stats() as stats:
        studios = await directory.query(request.center, request.filters)
    return _studio_payload(filter_by_viewport(studios, request.bounds), stats.as_dict())


@router.get("/api/studios/top-rated")
async def get_top_rated_studios(limit: int | None = Query(None, ge=1)) -> dict:
    services = await _ready()
    studios = await services.directory.top_rated(limit)
    return {"studios": [s.model_dump(mode="json", by_alias=True) for s in studios]}


@router.get("/api/studios/{studio_id}")
async def get_studio(studio_id: str) -> dict:
    services = await _ready()
    studio = await services.directory.get_studio(studio_id)
    return studio.model_dump(mode="json", by_alias=True)


# ---- check-ins ----


@router.post("/api/checkins/scan")
async def post_checkin_scan(request: ScanRequest) -> dict:
    """Check in from a scanned QR code. "Already checked in" is a 200 with `alreadyCheckedIn=true`."""
    services = await _ready()
    result = await services.scanner.scan(request.user_id, request.code)
    return result.model_dump(mode="json", by_alias=True)


@router.get("/api/users/{uid}/checkins")
async def get_user_checkins(uid: str, limit: int | None = Query(None, ge=1)) -> dict:
    services = await _ready()
    check_ins = await services.ledger.get_user_check_ins(uid, limit)
    return {"checkIns": [c.model_dump(mode="json", by_alias=True) for c in check_ins]}


@router.get("/api/users/{uid}/checkins/today")
async def get_checked_in_today(uid: str, studio_id: str) -> dict:
    services = await _ready()
    checked_in = await services.ledger.has_checked_in_today(uid, studio_id)
    return {"userId": uid, "studioId": studio_id, "checkedInToday": checked_in}


@router.get("/api/users/{uid}/checkins/stats")
async def get_checkin_stats(uid: str) -> dict:
    services = await _ready()
    stats = await services.ledger.get_user_check_in_stats(uid)
    return stats.model_dump(mode="json", by_alias=True)


# ---- subscriptions ----


@router.post("/api/subscriptions", status_code=201)
async def post_subscription(request: CreateSubscriptionRequest) -> dict:
    services = await _ready()
    subscription = await services.subscriptions.create(
        request.user_id, request.plan_id, request.duration_days, request.status
    )
    return subscription.model_dump(mode="json", by_alias=True)


@router.post("/api/subscriptions/{subscription_id}/renew")
async def post_subscription_renew(subscription_id: str, request: RenewSubscriptionRequest) -> dict:
    services = await _ready()
    subscription = await services.subscriptions.renew(subscription_id, request.extension_days)
    return subscription.model_dump(mode="json", by_alias=True)


@router.post("/api/subscriptions/{subscription_id}/cancel")
async def post_subscription_cancel(subscription_id: str) -> dict:
    services = await _ready()
    subscription = await services.subscriptions.cancel(subscription_id)
    return subscription.model_dump(mode="json", by_alias=True)


@router.get("/api/users/{uid}/subscription-status")
async def get_subscription_status(uid: str) -> dict:
    services = await _ready()
    status = await services.projector.read_status(uid)
    return {"userId": uid, "subscriptionStatus": status, "userType": user_type(status)}
