from datetime import datetime, timezone

import pydantic
import pytest

from studiopass.domain.models import CheckInStats, QrCheckInPayload, Studio, StudioFilters, UserProfile


def test_studio_document_round_trip_uses_camel_case():
    studio = Studio.from_document(
        "s1",
        {
            "name": None,
            "address": "Main St 1",
            "amenities": None,
            "averageRating": 4.5,
            "openingHours": {"monday": {"open": "06:00", "close": "22:00"}},
        },
    )
    assert studio.studio_id == "s1"
    assert studio.name == ""
    assert studio.amenities == []
    assert studio.location is None
    assert studio.is_active is True

    doc = studio.to_document()
    assert "studioId" not in doc
    assert doc["averageRating"] == 4.5
    assert doc["openingHours"]["monday"]["close"] == "22:00"
    assert "location" not in doc


def test_user_profile_without_status_is_free():
    assert UserProfile.from_document("u1", {}).subscription_status == "free"
    assert UserProfile.from_document("u1", {"subscriptionStatus": None}).subscription_status == "free"
    with pytest.raises(pydantic.ValidationError):
        UserProfile.from_document("u1", {"subscriptionStatus": "gold"})


def test_filters_accept_infinite_radius_but_not_zero():
    assert StudioFilters(radius_km=float("inf")).radius_km == float("inf")
    with pytest.raises(pydantic.ValidationError):
        StudioFilters(radius_km=0)
    with pytest.raises(pydantic.ValidationError):
        StudioFilters(min_rating=6)


def test_qr_payload_only_accepts_the_wire_spelling():
    assert QrCheckInPayload.model_validate({"type": "checkin", "studioId": "42"}).studio_id == "42"
    with pytest.raises(pydantic.ValidationError):
        QrCheckInPayload.model_validate({"type": "checkin", "studio_id": "42"})


def test_stats_dump_by_alias():
    stats = CheckInStats(total_check_ins=0, this_month=0, this_week=0, unique_studios=0, window_size=1000)
    dumped = stats.model_dump(by_alias=True)
    assert dumped["totalCheckIns"] == 0
    assert dumped["mostVisitedStudio"] is None
    assert dumped["windowSize"] == 1000


def test_created_at_parses_iso_strings():
    studio = Studio.from_document("s2", {"name": "x", "createdAt": "2026-01-05T10:00:00+00:00"})
    assert studio.created_at == datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
