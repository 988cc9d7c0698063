"""
Device position resolution with a fallback policy.

State machine:

    loading -> granted   (position obtained)
    loading -> denied    (permission refused, position unavailable, timeout, other error)
    denied  -> granted*  via `select_fallback(id)`  (*pseudo-granted, `is_using_fallback=True`)
    any     -> loading   via `retry()`              (clears the fallback)

Failures never escape `resolve()`: they are recorded on the state as one of the
typed `LocationError`s so the caller can offer the fallback picker. The map always
has a usable center through `current_region()` (live, fallback or configured default).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Protocol

from studiopass.config.settings import Settings, get_settings
from studiopass.core.errors import (
    LocationError,
    LocationPermissionError,
    LocationTimeoutError,
    NotFoundError,
    UnknownLocationError,
)
from studiopass.domain.models import FallbackLocation, LocationStatus, Position, Region

logger = logging.getLogger(__name__)


class PositionProvider(Protocol):
    """Device positioning boundary (OS permission prompt + GPS fix)."""

    async def request_permission(self) -> bool:
        ...

    async def current_position(self) -> Position:
        """Return a fix, or raise a `LocationError` (e.g. `PositionUnavailableError`)."""
        ...


@dataclass(frozen=True)
class LocationState:
    status: LocationStatus = "loading"
    position: Position | None = None
    error: LocationError | None = None
    selected_fallback: FallbackLocation | None = None
    is_using_fallback: bool = False


def fallback_locations_from(settings: Settings) -> list[FallbackLocation]:
    """Build the static fallback lookup table from configuration."""
    return [
        FallbackLocation(
            id=f.id,
            name=f.name,
            country=f.country,
            coordinates=Position(latitude=f.coordinates.latitude, longitude=f.coordinates.longitude),
        )
        for f in settings.location.fallback_locations
    ]


class GeoPositionResolver:
    """Owns the location state of one client instance; at most one request in flight."""

    def __init__(
        self,
        provider: PositionProvider,
        settings: Settings | None = None,
        *,
        fallback_locations: list[FallbackLocation] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._provider = provider
        self._timeout_seconds = settings.location.timeout_seconds
        self._region_delta = settings.location.region_delta
        default = settings.location.default_position
        self._default_position = Position(latitude=default.latitude, longitude=default.longitude)
        self._fallbacks = {
            f.id: f for f in (fallback_locations if fallback_locations is not None else fallback_locations_from(settings))
        }
        self._state = LocationState()
        self._in_flight: asyncio.Future[Position | None] | None = None

    @property
    def state(self) -> LocationState:
        return self._state

    @property
    def fallback_locations(self) -> list[FallbackLocation]:
        return list(self._fallbacks.values())

    async def resolve(self) -> Position | None:
        """Request the device position; concurrent callers share one request.

        Returns the live position, the selected fallback's coordinates when the
        request fails while a fallback is active, or None.
        """
        if self._in_flight is None or self._in_flight.done():
            self._in_flight = asyncio.ensure_future(self._request())
        # Shield so one caller giving up does not cancel the request for the others.
        return await asyncio.shield(self._in_flight)

    async def retry(self) -> Position | None:
        """Drop any fallback selection and ask the device again."""
        self._state = replace(self._state, status="loading", selected_fallback=None, is_using_fallback=False)
        return await self.resolve()

    def select_fallback(self, fallback_id: str) -> FallbackLocation:
        fallback = self._fallbacks.get(fallback_id)
        if fallback is None:
            raise NotFoundError("Fallback location", fallback_id)
        self._state = LocationState(
            status="granted",
            position=fallback.coordinates,
            error=None,
            selected_fallback=fallback,
            is_using_fallback=True,
        )
        logger.info("Using fallback location %s", fallback.id)
        return fallback

    def current_region(self) -> Region:
        """Map region around the best known position (default position when none)."""
        center = self._state.position or self._default_position
        return Region(
            latitude=center.latitude,
            longitude=center.longitude,
            latitude_delta=self._region_delta,
            longitude_delta=self._region_delta,
        )

    async def _acquire(self) -> Position:
        if not await self._provider.request_permission():
            raise LocationPermissionError()
        try:
            return await asyncio.wait_for(self._provider.current_position(), timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            raise LocationTimeoutError(self._timeout_seconds) from None

    async def _request(self) -> Position | None:
        self._state = replace(self._state, status="loading", error=None)
        try:
            position = await self._acquire()
        except LocationError as exc:
            error: LocationError = exc
        except Exception as exc:
            logger.exception("Unexpected positioning failure")
            error = UnknownLocationError(str(exc) or exc.__class__.__name__)
        else:
            self._state = LocationState(status="granted", position=position)
            logger.info("Location granted")
            return position

        logger.warning("Location denied: %s", error)
        fallback = self._state.selected_fallback if self._state.is_using_fallback else None
        if fallback is not None:
            # A fallback picked while the request was pending stays in effect.
            self._state = replace(self._state, status="granted", error=error, position=fallback.coordinates)
            return fallback.coordinates
        self._state = replace(self._state, status="denied", error=error, position=None)
        return None
