"""
Studio catalog loader.

The catalog is a local JSON file (default: `data/catalogs/studios.json`) holding a
list of studio documents in their stored (camelCase) layout, each with a `studioId`.
It is validated into typed Pydantic models and can be used to seed a document store
for local runs of the API and CLI.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import TypeAdapter

from studiopass.core.env import resolve_project_path
from studiopass.domain.models import Studio
from studiopass.store.interfaces import DocumentStore

logger = logging.getLogger(__name__)

_STUDIOS_ADAPTER = TypeAdapter(list[Studio])


def load_studios(path: str | Path) -> list[Studio]:
    """Load and validate a studio catalog JSON file."""
    resolved = resolve_project_path(path)
    payload = json.loads(resolved.read_text(encoding="utf-8"))
    return _STUDIOS_ADAPTER.validate_python(payload)


async def seed_store(store: DocumentStore, studios: list[Studio], *, collection: str = "studios") -> int:
    """Write `studios` into `collection`, keyed by studio id. Returns the number written."""
    for studio in studios:
        await store.set(collection, studio.studio_id, studio.to_document())
    logger.info("Seeded %d studios into %s", len(studios), collection)
    return len(studios)
