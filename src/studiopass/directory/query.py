from __future__ import annotations

# Directory query pipeline:
# - pull the studio catalog from the document store (through the shared cache),
# - filter by radius, text, rating, amenities and "open now",
# - attach distances and order the result.
#
# Missing location is not an error here: with no center the radius is unbounded,
# so a user whose position has not resolved yet still sees every studio.

import logging
import math
from datetime import datetime
from typing import Any, Callable, Mapping, Sequence

import pydantic

from studiopass.config.settings import Settings, get_settings
from studiopass.core import keys
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import DomainError, NotFoundError, TransientNetworkError, ValidationError
from studiopass.core.geo import distance_km, format_distance
from studiopass.core.time import now_in
from studiopass.directory.hours import is_open_at
from studiopass.domain.models import Position, Studio, StudioFilters, StudioWithDistance
from studiopass.store.interfaces import DocumentStore

logger = logging.getLogger(__name__)


def _passes_text_filter(studio: Studio, term: str) -> bool:
    # `name`/`address` are normalized to "" by the model, so this never sees None.
    return term in studio.name.lower() or term in studio.address.lower()


def _passes_rating_filter(studio: Studio, min_rating: float) -> bool:
    if min_rating <= 0:
        return True
    return studio.average_rating is not None and studio.average_rating >= min_rating


def _passes_amenity_filter(studio: Studio, required: Sequence[str]) -> bool:
    # Every requested amenity must be present ("all", not "any").
    if not required:
        return True
    available = {a.casefold() for a in studio.amenities}
    return all(a.casefold() in available for a in required)


def apply_filters(
    studios: Sequence[Studio],
    center: Position | None,
    filters: StudioFilters,
    *,
    when: datetime | None = None,
) -> list[StudioWithDistance]:
    """Filter and order `studios` for a directory query (pure)."""
    unbounded = center is None or math.isinf(filters.radius_km)
    term = (filters.search_term or "").strip().lower()

    results: list[StudioWithDistance] = []
    for studio in studios:
        dist: float | None = None
        if center is not None and studio.location is not None:
            dist = distance_km(center.latitude, center.longitude, studio.location.lat, studio.location.lng)

        if not unbounded and (dist is None or dist > filters.radius_km):
            continue
        if term and not _passes_text_filter(studio, term):
            continue
        if not _passes_rating_filter(studio, filters.min_rating):
            continue
        if not _passes_amenity_filter(studio, filters.amenities):
            continue
        # Unknown opening hours do not count as open.
        if filters.is_open and (when is None or is_open_at(studio, when) is not True):
            continue

        results.append(
            StudioWithDistance.model_validate(
                {
                    **studio.model_dump(),
                    "distance_km": dist,
                    "distance": format_distance(dist) if dist is not None else None,
                }
            )
        )

    if center is not None:
        # Stable: equal distances keep catalog order; studios without a location go last.
        results.sort(key=lambda s: (s.distance_km is None, s.distance_km or 0.0))
    else:
        results.sort(key=lambda s: s.name.casefold())
    return results


class StudioDirectoryQuery:
    """Read side of the studio directory (the directory itself is an external collaborator)."""

    def __init__(
        self,
        store: DocumentStore,
        cache: KeyedCache,
        settings: Settings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: now_in(self._settings.app.timezone))

    @property
    def settings(self) -> Settings:
        return self._settings

    def default_filters(self) -> StudioFilters:
        return StudioFilters(radius_km=self._settings.directory.default_radius_km)

    def parse_filters(self, filters: StudioFilters | Mapping[str, Any] | None) -> StudioFilters:
        if filters is None:
            return self.default_filters()
        if isinstance(filters, StudioFilters):
            return filters
        data = dict(filters)
        if "radius_km" not in data and "radiusKm" not in data:
            data["radius_km"] = self._settings.directory.default_radius_km
        try:
            return StudioFilters.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid studio filters: {exc.errors()[0]['msg']}") from exc

    async def _fetch_catalog(self) -> list[Studio]:
        collection = self._settings.directory.collection
        try:
            snapshots = await self._store.query(collection, order_by=[("name", "asc")])
        except DomainError:
            raise
        except Exception as exc:
            logger.warning("Studio catalog fetch failed: %s", exc)
            raise TransientNetworkError("Studio directory fetch", exc) from exc

        studios: list[Studio] = []
        for snap in snapshots:
            try:
                studios.append(Studio.from_document(snap.id, snap.data or {}))
            except pydantic.ValidationError as exc:
                logger.warning("Skipping malformed studio document %s: %s", snap.id, exc.errors()[0]["msg"])
        return studios

    async def load_catalog(self) -> list[Studio]:
        """Return the full catalog (name order), cached for `directory.catalog_ttl_seconds`."""
        return await self._cache.get_or_load(
            keys.STUDIOS_LIST,
            self._fetch_catalog,
            max_age_seconds=self._settings.directory.catalog_ttl_seconds,
        )

    def refresh(self) -> None:
        """Forget the cached catalog so the next query pulls it again."""
        self._cache.invalidate(keys.STUDIOS_LIST)

    async def query(
        self,
        center: Position | None = None,
        filters: StudioFilters | Mapping[str, Any] | None = None,
    ) -> list[StudioWithDistance]:
        """Run a directory query.

        Raises:
            ValidationError: If `filters` is malformed.
            TransientNetworkError: If the catalog could not be fetched (caller may retry).
        """
        parsed = self.parse_filters(filters)
        studios = await self.load_catalog()
        results = apply_filters(studios, center, parsed, when=self._clock() if parsed.is_open else None)
        logger.debug(
            "Directory query center=%s radius_km=%s -> %d/%d studios",
            "none" if center is None else f"{center.latitude:.4f},{center.longitude:.4f}",
            parsed.radius_km,
            len(results),
            len(studios),
        )
        return results

    async def get_studio(self, studio_id: str) -> Studio:
        collection = self._settings.directory.collection
        try:
            snap = await self._store.get(collection, studio_id)
        except DomainError:
            raise
        except Exception as exc:
            raise TransientNetworkError("Studio fetch", exc) from exc
        if not snap.exists:
            raise NotFoundError("Studio", studio_id)
        return Studio.from_document(snap.id, snap.data or {})

    async def top_rated(self, limit: int | None = None) -> list[Studio]:
        limit = limit or self._settings.directory.top_rated_default
        rated = [s for s in await self.load_catalog() if s.average_rating is not None]
        rated.sort(key=lambda s: s.average_rating or 0.0, reverse=True)
        return rated[:limit]
