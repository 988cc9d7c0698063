import asyncio
import json
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from studiopass.checkin.ledger import CheckInLedger
from studiopass.checkin.scanner import CheckInScanner, parse_check_in_payload
from studiopass.config.settings import get_settings
from studiopass.core.cache import KeyedCache
from studiopass.core.errors import ErrorCode, InvalidCodeError, ValidationError
from studiopass.store.memory import InMemoryDocumentStore

TZ = ZoneInfo(get_settings().app.timezone)
CODE = json.dumps({"type": "checkin", "studioId": "42"})


class _RecordingLedger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    async def check_and_create(self, user_id: str, studio_id: str):
        self.calls.append((user_id, studio_id))
        raise AssertionError("ledger must not be reached")


def test_parse_accepts_only_the_check_in_shape():
    payload = parse_check_in_payload(f"  {CODE}\n")
    assert payload.type == "checkin"
    assert payload.studio_id == "42"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "42",
        "not json at all",
        "[1, 2, 3]",
        json.dumps({"type": "checkout", "studioId": "42"}),
        json.dumps({"type": "checkin"}),
        json.dumps({"type": "checkin", "studioId": ""}),
        json.dumps({"type": "checkin", "studioId": "   "}),
        json.dumps({"type": "checkin", "studioId": 42}),
        json.dumps({"type": "checkin", "studio_id": "42"}),
        json.dumps({"type": "checkin", "studioId": "42", "extra": True}),
        json.dumps({"type": "checkin", "studioId": "<script>alert(1)</script>"}),
        json.dumps({"type": "checkin", "studioId": "javascript:alert(1)"}),
        json.dumps({"type": "checkin", "studioId": "x" * 600}),
    ],
)
def test_invalid_codes_never_reach_the_ledger(raw):
    ledger = _RecordingLedger()
    scanner = CheckInScanner(ledger)

    with pytest.raises(InvalidCodeError) as excinfo:
        asyncio.run(scanner.scan("u1", raw))

    assert ledger.calls == []
    assert excinfo.value.code is ErrorCode.INVALID_CODE
    assert isinstance(excinfo.value, ValidationError)


def test_scan_scenario_across_two_days():
    class Clock:
        now = datetime(2026, 3, 18, 9, 0, tzinfo=TZ)

        def __call__(self):
            return self.now

    clock = Clock()
    store = InMemoryDocumentStore()
    scanner = CheckInScanner(CheckInLedger(store, KeyedCache(), get_settings(), clock=clock))

    first = asyncio.run(scanner.scan("u1", CODE))
    assert first.success is True
    assert first.studio_id == "42"

    clock.now = datetime(2026, 3, 18, 9, 5, tzinfo=TZ)
    second = asyncio.run(scanner.scan("u1", CODE))
    assert second.success is False
    assert second.already_checked_in is True

    clock.now = datetime(2026, 3, 19, 0, 5, tzinfo=TZ)
    third = asyncio.run(scanner.scan("u1", CODE))
    assert third.success is True

    rows = asyncio.run(store.query("checkIn", [("userId", "==", "u1")]))
    assert len(rows) == 2
