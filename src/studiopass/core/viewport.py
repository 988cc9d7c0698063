"""
Viewport filtering.

Restricts a studio set to the rectangular lat/lng window currently visible on
the map. Pure and total: missing bounds mean "no viewport yet" and the input is
returned unchanged.

Known limitation: there is no wraparound handling at the ±180° longitude seam.
A viewport spanning the antimeridian reports `lng_min > lng_max` and matches
nothing.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

from studiopass.domain.models import Region, Studio, ViewportBounds

S = TypeVar("S", bound=Studio)


def filter_by_viewport(studios: Sequence[S], bounds: ViewportBounds | None) -> list[S]:
    """Keep studios whose location lies inside `bounds` (edges inclusive)."""
    if bounds is None:
        return list(studios)

    visible: list[S] = []
    for studio in studios:
        loc = studio.location
        if loc is None:
            continue
        if bounds.lat_min <= loc.lat <= bounds.lat_max and bounds.lng_min <= loc.lng <= bounds.lng_max:
            visible.append(studio)
    return visible


def bounds_from_region(region: Region | None) -> ViewportBounds | None:
    """Derive viewport bounds from a map region (center ± half the span)."""
    if region is None:
        return None
    half_lat = region.latitude_delta / 2
    half_lng = region.longitude_delta / 2
    return ViewportBounds(
        lat_min=region.latitude - half_lat,
        lat_max=region.latitude + half_lat,
        lng_min=region.longitude - half_lng,
        lng_max=region.longitude + half_lng,
    )
