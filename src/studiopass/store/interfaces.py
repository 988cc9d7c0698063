"""Collaborator interfaces (repository pattern).

The document store and the auth provider are external collaborators. The core
depends only on these interfaces, so a hosted backend and the in-memory
reference implementation are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Literal

from studiopass.domain.models import AuthUser

FilterOp = Literal["==", "<", "<=", ">", ">=", "array-contains"]
Filter = tuple[str, FilterOp, Any]
OrderBy = tuple[str, Literal["asc", "desc"]]


@dataclass(frozen=True)
class DocumentSnapshot:
    """One document as seen at a point in time. `data is None` means it does not exist."""

    id: str
    data: dict[str, Any] | None

    @property
    def exists(self) -> bool:
        return self.data is not None


SnapshotListener = Callable[[DocumentSnapshot], None]
ErrorListener = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class DocumentStore(ABC):
    """Interface for document persistence. Writes are eventually visible to reads and pushes."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> DocumentSnapshot:
        """Return the document (possibly non-existent)."""
        ...

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: list[Filter] | None = None,
        order_by: list[OrderBy] | None = None,
        limit: int | None = None,
    ) -> list[DocumentSnapshot]:
        """Return existing documents matching all `filters`."""
        ...

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """Create a document with a generated id and return the id."""
        ...

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Create or replace a document."""
        ...

    @abstractmethod
    async def update(self, collection: str, doc_id: str, partial: dict[str, Any]) -> None:
        """Merge `partial` into an existing document.

        Raises:
            NotFoundError: If the document does not exist.
        """
        ...

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        doc_id: str,
        on_change: SnapshotListener,
        on_error: ErrorListener | None = None,
    ) -> Unsubscribe:
        """Push the current snapshot, then every later state of the document, in order."""
        ...


class AuthSession(ABC):
    """Interface for the auth provider's session view."""

    @property
    @abstractmethod
    def current_user(self) -> AuthUser | None:
        ...

    @abstractmethod
    def on_change(self, listener: Callable[[AuthUser | None], None]) -> Unsubscribe:
        """Notify `listener` whenever the signed-in user changes."""
        ...
