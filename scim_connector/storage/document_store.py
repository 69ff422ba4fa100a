"""
Document Store

JSON-file backed document store implementing the storage accessor contract.
Each collection is a dict of records keyed by a generated primary key.
Provides thread-safe CRUD operations with per-collection unique fields.
"""

import copy
import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import (
    CollectionAccessor,
    Record,
    RecordNotFoundError,
    StorageBackend,
    StorageError,
    StorageSession,
    UniqueConstraintError,
    UnsupportedQueryError,
    Where,
)

logger = logging.getLogger(__name__)

PRIMARY_KEY = "id"


def _get_dotted(record: Dict[str, Any], path: str) -> Tuple[bool, Any]:
    current: Any = record
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return False, None
        current = current[part]
    return True, current


def _set_dotted(record: Dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    current = record
    for part in parts[:-1]:
        child = current.get(part)
        if not isinstance(child, dict):
            child = current[part] = {}
        current = child
    current[parts[-1]] = value


def _matches_condition(found: bool, value: Any, condition: Any) -> bool:
    if not isinstance(condition, dict):
        return found and value == condition

    if len(condition) != 1:
        raise UnsupportedQueryError(f"Expected a single operator, got: {sorted(condition)}")

    operator, operand = next(iter(condition.items()))
    if operator == "equals":
        return found and value == operand
    if operator == "has":
        return found and isinstance(value, list) and operand in value
    if operator == "in":
        return found and value in operand
    raise UnsupportedQueryError(f"Unsupported operator: {operator}")


def matches(record: Dict[str, Any], where: Optional[Where]) -> bool:
    """
    Check whether a record satisfies a where clause.

    Args:
        record: Stored record
        where: Flat where clause (see storage.base)

    Returns:
        True if every condition holds (always True for an empty clause)
    """
    for path, condition in (where or {}).items():
        found, value = _get_dotted(record, path)
        if not _matches_condition(found, value, condition):
            return False
    return True


class DocumentStore(StorageBackend):
    """
    Persistent JSON document store.

    The store keeps one JSON file holding every collection:
        {"users": {"<key>": {...}}, "groups": {"<key>": {...}}}

    Thread-safe using a lock around every read-modify-write cycle; writes
    are atomic (temp file, then rename).

    Example usage:
        store = DocumentStore("/data/scim_store.json", unique_fields={"users": ["username"]})

        with store.session() as session:
            users = session.collection("users")
            record = users.create({"username": "jane"})
            users.find_unique({"username": "jane"})
            users.update({"id": record["id"]}, {"profile.firstName": "Jane"})
            users.delete({"id": record["id"]})
    """

    def __init__(self, data_file: str, unique_fields: Optional[Dict[str, Iterable[str]]] = None):
        """
        Initialize DocumentStore with path to JSON data file.

        Args:
            data_file: Path to JSON file for storing collections
            unique_fields: Dotted field paths that must be unique, per collection
        """
        self.data_file = Path(data_file)
        self.unique_fields = {
            name: tuple(fields) for name, fields in (unique_fields or {}).items()
        }
        self._lock = threading.Lock()

        # Ensure parent directory exists
        self.data_file.parent.mkdir(parents=True, exist_ok=True)

        # Initialize empty file if it doesn't exist
        if not self.data_file.exists():
            self._write_data({})

    def _read_data(self) -> Dict[str, Dict[str, Record]]:
        """
        Read all collections from the JSON file.

        Raises:
            StorageError: If the file cannot be read or is not valid JSON
        """
        try:
            with open(self.data_file, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read document store {self.data_file}: {e}") from e

    def _write_data(self, data: Dict[str, Dict[str, Record]]) -> None:
        """
        Write all collections to the JSON file atomically.

        Uses atomic write pattern (write to temp file, then rename) to ensure
        data integrity even if write is interrupted.

        Raises:
            StorageError: If a record is not serializable or the write fails
        """
        temp_file = self.data_file.with_suffix(".tmp")

        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_file.replace(self.data_file)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write document store {self.data_file}: {e}") from e

    def open_session(self) -> "DocumentSession":
        return DocumentSession(self)


class DocumentSession(StorageSession):
    """Session over a DocumentStore; collections refuse work once closed."""

    def __init__(self, store: DocumentStore):
        self._store = store
        self.closed = False

    def collection(self, name: str) -> "DocumentCollection":
        self._ensure_open()
        return DocumentCollection(self._store, name, self)

    def close(self) -> None:
        self.closed = True

    def _ensure_open(self) -> None:
        if self.closed:
            raise StorageError("Storage session is closed")


class DocumentCollection(CollectionAccessor):
    """Accessor for one collection of a DocumentStore."""

    def __init__(self, store: DocumentStore, name: str, session: DocumentSession):
        self._store = store
        self._session = session
        self.name = name

    def find_many(self, where: Optional[Where] = None) -> List[Record]:
        self._session._ensure_open()
        with self._store._lock:
            records = self._store._read_data().get(self.name, {})
            return [copy.deepcopy(r) for r in records.values() if matches(r, where)]

    def find_unique(self, where: Where) -> Optional[Record]:
        found = self.find_many(where)
        if len(found) > 1:
            raise StorageError(f"Unique lookup on {self.name} matched {len(found)} records: {where}")
        return found[0] if found else None

    def find_first(self, where: Where) -> Optional[Record]:
        found = self.find_many(where)
        return found[0] if found else None

    def create(self, data: Record) -> Record:
        self._session._ensure_open()
        if not isinstance(data, dict):
            raise StorageError(f"Record for {self.name} must be a document")
        if PRIMARY_KEY in data:
            raise StorageError(f"Field '{PRIMARY_KEY}' is generated by the store")

        with self._store._lock:
            data_all = self._store._read_data()
            records = data_all.setdefault(self.name, {})

            record = copy.deepcopy(data)
            record[PRIMARY_KEY] = uuid.uuid4().hex
            self._check_unique(records, record)

            records[record[PRIMARY_KEY]] = record
            self._store._write_data(data_all)

        logger.debug(f"Created {self.name} record {record[PRIMARY_KEY]}")
        return copy.deepcopy(record)

    def update(self, where: Where, data: Record) -> Record:
        self._session._ensure_open()
        if PRIMARY_KEY in data:
            raise StorageError(f"Field '{PRIMARY_KEY}' cannot be updated")

        with self._store._lock:
            data_all = self._store._read_data()
            records = data_all.setdefault(self.name, {})
            record = copy.deepcopy(self._single_match(records, where))

            for path, value in data.items():
                _set_dotted(record, path, copy.deepcopy(value))
            self._check_unique(records, record)

            records[record[PRIMARY_KEY]] = record
            self._store._write_data(data_all)

        logger.debug(f"Updated {self.name} record {record[PRIMARY_KEY]}")
        return copy.deepcopy(record)

    def delete(self, where: Where) -> Record:
        self._session._ensure_open()
        with self._store._lock:
            data_all = self._store._read_data()
            records = data_all.setdefault(self.name, {})
            record = self._single_match(records, where)

            del records[record[PRIMARY_KEY]]
            self._store._write_data(data_all)

        logger.debug(f"Deleted {self.name} record {record[PRIMARY_KEY]}")
        return record

    def _single_match(self, records: Dict[str, Record], where: Where) -> Record:
        found = [r for r in records.values() if matches(r, where)]
        if not found:
            raise RecordNotFoundError(f"No {self.name} record matches {where}")
        if len(found) > 1:
            raise StorageError(f"{len(found)} {self.name} records match {where}")
        return found[0]

    def _check_unique(self, records: Dict[str, Record], record: Record) -> None:
        collided = []
        for path in self._store.unique_fields.get(self.name, ()):
            found, value = _get_dotted(record, path)
            if not found or value is None:
                continue
            for other in records.values():
                if other[PRIMARY_KEY] == record[PRIMARY_KEY]:
                    continue
                other_found, other_value = _get_dotted(other, path)
                if other_found and other_value == value:
                    collided.append(path)
                    break
        if collided:
            raise UniqueConstraintError(self.name, collided)
