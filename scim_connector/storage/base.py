"""
Storage accessor contract.

The connector talks to its backing document store only through these
interfaces. Records are plain dicts owning a store-generated primary key in
the reserved "id" field.

Where clauses are flat dicts mapping dotted field paths to either a value
(equality) or a single-operator dict:
    {"username": "jane"}
    {"members": {"has": "<user key>"}}
    {"id": {"in": ["<key>", "<key>"]}}
    {"profile.firstName": {"equals": "Jane"}}

Update data may also use dotted paths; only the named fields are written.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional

Record = Dict[str, Any]
Where = Dict[str, Any]


class StorageError(Exception):
    """Base exception for all storage accessor failures."""
    pass


class UniqueConstraintError(StorageError):
    """Write rejected because it would duplicate a unique field.

    Attributes:
        fields: Unique fields that collided
    """

    def __init__(self, collection: str, fields: Iterable[str]):
        self.collection = collection
        self.fields = list(fields)
        super().__init__(f"Unique constraint failed on {collection}: {', '.join(self.fields)}")


class RecordNotFoundError(StorageError):
    """Update or delete matched no record."""
    pass


class UnsupportedQueryError(StorageError):
    """The accessor cannot evaluate a where clause operator."""
    pass


class CollectionAccessor(ABC):
    """CRUD access to one collection."""

    @abstractmethod
    def find_many(self, where: Optional[Where] = None) -> List[Record]:
        """Return every record matching where (all records when empty)."""

    @abstractmethod
    def find_unique(self, where: Where) -> Optional[Record]:
        """Return the single matching record or None.

        Raises:
            StorageError: If more than one record matches
        """

    @abstractmethod
    def find_first(self, where: Where) -> Optional[Record]:
        """Return the first matching record or None."""

    @abstractmethod
    def create(self, data: Record) -> Record:
        """Insert a record and return it with its generated key."""

    @abstractmethod
    def update(self, where: Where, data: Record) -> Record:
        """Write data into the single record matching where.

        Raises:
            RecordNotFoundError: If nothing matches
        """

    @abstractmethod
    def delete(self, where: Where) -> Record:
        """Delete the single record matching where and return it.

        Raises:
            RecordNotFoundError: If nothing matches
        """


class StorageSession(ABC):
    """A unit of storage access scoped to one connector operation."""

    @abstractmethod
    def collection(self, name: str) -> CollectionAccessor:
        """Return the accessor for a named collection."""

    def close(self) -> None:
        """Release the session. Idempotent."""


class StorageBackend(ABC):
    """Factory for storage sessions."""

    @abstractmethod
    def open_session(self) -> StorageSession:
        """Acquire a new session."""

    @contextmanager
    def session(self) -> Iterator[StorageSession]:
        """
        Scoped session: released on every exit path.

        Example:
            with backend.session() as session:
                users = session.collection("users")
                users.find_many()
        """
        session = self.open_session()
        try:
            yield session
        finally:
            session.close()
