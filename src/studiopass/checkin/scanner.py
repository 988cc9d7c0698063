"""QR check-in entry point: validate a scanned code, then hand it to the ledger."""

from __future__ import annotations

import json
import logging
import re

import pydantic

from studiopass.checkin.ledger import CheckInLedger
from studiopass.config.settings import Settings, get_settings
from studiopass.core.errors import InvalidCodeError
from studiopass.domain.models import CheckInResult, QrCheckInPayload

logger = logging.getLogger(__name__)

_SCRIPT_LIKE = re.compile(r"<\s*script|javascript:|vbscript:|data:text/html", re.IGNORECASE)


def parse_check_in_payload(raw: str, settings: Settings | None = None) -> QrCheckInPayload:
    """Decode a scanned QR string into a check-in payload.

    Raises:
        InvalidCodeError: For anything other than `{"type": "checkin", "studioId": "<id>"}`.
    """
    settings = settings or get_settings()
    if not isinstance(raw, str):
        raise InvalidCodeError("QR code must be text")

    text = raw.strip()
    if not settings.qr.min_length <= len(text) <= settings.qr.max_length:
        raise InvalidCodeError("QR code has an invalid length")
    if _SCRIPT_LIKE.search(text):
        raise InvalidCodeError("QR code contains unsupported content")

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        raise InvalidCodeError("QR code is not a check-in code") from None
    if not isinstance(data, dict):
        raise InvalidCodeError("QR code is not a check-in code")

    try:
        payload = QrCheckInPayload.model_validate(data)
    except pydantic.ValidationError:
        raise InvalidCodeError("QR code is not a check-in code") from None

    if not payload.studio_id.strip():
        raise InvalidCodeError("QR code has no studio id")
    return payload


class CheckInScanner:
    def __init__(self, ledger: CheckInLedger, settings: Settings | None = None) -> None:
        self._ledger = ledger
        self._settings = settings or get_settings()

    async def scan(self, user_id: str, raw: str) -> CheckInResult:
        """Check `user_id` in at the studio named by a scanned code.

        An invalid code raises `InvalidCodeError` before the ledger is touched.
        """
        try:
            payload = parse_check_in_payload(raw, self._settings)
        except InvalidCodeError as exc:
            logger.info("Rejected QR code for user=%s: %s", user_id, exc.message)
            raise
        return await self._ledger.check_and_create(user_id, payload.studio_id)
