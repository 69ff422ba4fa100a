"""
Storage accessors for the SCIM connector.
"""

from .base import (
    CollectionAccessor,
    RecordNotFoundError,
    StorageBackend,
    StorageError,
    StorageSession,
    UniqueConstraintError,
    UnsupportedQueryError,
)
from .document_store import DocumentStore

__all__ = [
    "CollectionAccessor",
    "DocumentStore",
    "RecordNotFoundError",
    "StorageBackend",
    "StorageError",
    "StorageSession",
    "UniqueConstraintError",
    "UnsupportedQueryError",
]
