"""
Attribute Mapper Service

Translates between canonical SCIM resources and storage documents using a
declarative mapping table loaded once from YAML at startup.
"""

import copy
import logging
import re
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import yaml
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import MappingError
from ..models import GROUP_RESOURCE, USER_RESOURCE

logger = logging.getLogger(__name__)

# Storage fields owned by the store or the membership synchronizer
RESERVED_STORAGE_FIELDS = frozenset({"id", "members"})

# Canonical fields derived by the connector, never mapped
RESERVED_CANONICAL_FIELDS = frozenset({"id", "schemas", "meta", "members", "groups"})

_SEGMENT_PATTERN = re.compile(r"^([A-Za-z_$][A-Za-z0-9_$\-]*)(?:\[([A-Za-z0-9_\-]+)\])?$")

Segment = Tuple[str, Optional[str]]


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ValueError(f"not a boolean: {value!r}")


def _to_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    return int(value)


def _check_datetime(value: Any) -> Any:
    """Validate an ISO-8601 timestamp; valid text is returned as given."""
    if isinstance(value, datetime):
        return value.isoformat()
    if not isinstance(value, str):
        raise ValueError(f"not an ISO-8601 timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    datetime.fromisoformat(text)
    return value


# name -> (outbound, inbound)
TRANSFORMS: Dict[str, Tuple[Callable[[Any], Any], Callable[[Any], Any]]] = {
    "string": (str, str),
    "boolean": (_to_bool, _to_bool),
    "integer": (_to_int, _to_int),
    "datetime": (_check_datetime, _check_datetime),
}


class MappingEntry(BaseModel):
    """One canonical path <-> storage path pair with an optional transform"""
    canonical: str
    storage: str
    transform: Optional[str] = None

    class Config:
        frozen = True


class FieldMapping(BaseModel):
    """
    Ordered, immutable mapping table for one resource type.

    Example:
        >>> mapping = build_field_mapping("user", [
        ...     {"canonical": "userName", "storage": "username"},
        ...     {"canonical": "active", "storage": "enabled", "transform": "boolean"},
        ... ])
        >>> map_outbound({"userName": "jane", "active": "true"}, mapping)
        {'username': 'jane', 'enabled': True}
    """
    resource_type: str
    entries: Tuple[MappingEntry, ...] = ()

    class Config:
        frozen = True

    def storage_path(self, canonical_path: str) -> Optional[str]:
        """Return the storage path mapped to a canonical path, if any."""
        for entry in self.entries:
            if entry.canonical == canonical_path:
                return entry.storage
        return None


@lru_cache(maxsize=512)
def _parse_path(path: str) -> Tuple[Segment, ...]:
    segments = []
    for part in path.split("."):
        match = _SEGMENT_PATTERN.match(part)
        if not match:
            raise MappingError(f"Invalid attribute path: {path!r}")
        segments.append((match.group(1), match.group(2)))
    return tuple(segments)


def _select(items: Any, type_value: str) -> Optional[Dict[str, Any]]:
    if not isinstance(items, list):
        return None
    for item in items:
        if isinstance(item, dict) and item.get("type") == type_value:
            return item
    return None


def _get_path(source: Dict[str, Any], segments: Tuple[Segment, ...]) -> Tuple[bool, Any]:
    current: Any = source
    for key, selector in segments:
        if not isinstance(current, dict) or key not in current:
            return False, None
        current = current[key]
        if selector is not None:
            current = _select(current, selector)
            if current is None:
                return False, None
    return True, current


def _set_path(target: Dict[str, Any], segments: Tuple[Segment, ...], value: Any) -> None:
    current = target
    last = len(segments) - 1
    for index, (key, selector) in enumerate(segments):
        if selector is None:
            if index == last:
                current[key] = value
                return
            child = current.get(key)
            if not isinstance(child, dict):
                child = current[key] = {}
            current = child
        else:
            items = current.get(key)
            if not isinstance(items, list):
                items = current[key] = []
            element = _select(items, selector)
            if element is None:
                element = {"type": selector}
                items.append(element)
            current = element


def _translate(source: Dict[str, Any], mapping: FieldMapping, outbound: bool) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for entry in mapping.entries:
        if outbound:
            source_path, target_path = entry.canonical, entry.storage
        else:
            source_path, target_path = entry.storage, entry.canonical

        found, value = _get_path(source, _parse_path(source_path))
        if not found:
            continue

        if value is not None and entry.transform:
            convert = TRANSFORMS[entry.transform][0 if outbound else 1]
            try:
                value = convert(value)
            except (TypeError, ValueError) as exc:
                raise MappingError(
                    f"Cannot map {source_path} to {target_path} "
                    f"({entry.transform}): {exc}"
                ) from exc

        _set_path(result, _parse_path(target_path), copy.deepcopy(value))
    return result


def map_outbound(canonical: Dict[str, Any], mapping: FieldMapping) -> Dict[str, Any]:
    """
    Map a canonical resource (or a partial one) to a storage document.

    Only entries whose canonical path is present in the input are written;
    everything not declared in the mapping is dropped.

    Raises:
        MappingError: If a transform rejects a value
    """
    return _translate(canonical, mapping, outbound=True)


def map_inbound(record: Dict[str, Any], mapping: FieldMapping) -> Dict[str, Any]:
    """
    Map a storage document to a canonical resource.

    Raises:
        MappingError: If a transform rejects a stored value
    """
    return _translate(record, mapping, outbound=False)


def flatten(document: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten nested dicts into dotted keys.

    Lists are kept as values. Used to build storage filters and partial
    update patches from mapped documents.

    Example:
        >>> flatten({"profile": {"firstName": "Jane"}, "enabled": True})
        {'profile.firstName': 'Jane', 'enabled': True}
    """
    flat: Dict[str, Any] = {}
    for key, value in document.items():
        path = f"{prefix}{key}"
        if isinstance(value, dict) and value:
            flat.update(flatten(value, prefix=f"{path}."))
        else:
            flat[path] = value
    return flat


def build_field_mapping(resource_type: str, raw_entries: Any) -> FieldMapping:
    """
    Build and validate the mapping table for one resource type.

    Args:
        resource_type: "user" or "group"
        raw_entries: List of dicts with canonical, storage and optional transform

    Raises:
        MappingError: On malformed entries, unknown transforms, invalid
            paths, duplicate targets or reserved field collisions
    """
    if not isinstance(raw_entries, list):
        raise MappingError(f"Mapping for {resource_type} must be a list of entries")

    try:
        entries = tuple(MappingEntry(**raw) for raw in raw_entries)
    except (PydanticValidationError, TypeError) as exc:
        raise MappingError(f"Invalid mapping entry for {resource_type}: {exc}") from exc

    seen_canonical = set()
    seen_storage = set()
    for entry in entries:
        canonical_segments = _parse_path(entry.canonical)
        storage_segments = _parse_path(entry.storage)

        if entry.transform is not None and entry.transform not in TRANSFORMS:
            raise MappingError(
                f"Unknown transform {entry.transform!r} for {entry.canonical}; "
                f"expected one of: {', '.join(sorted(TRANSFORMS))}"
            )
        if canonical_segments[0][0] in RESERVED_CANONICAL_FIELDS:
            raise MappingError(f"Canonical field {entry.canonical!r} is reserved")
        if storage_segments[0][0] in RESERVED_STORAGE_FIELDS:
            raise MappingError(f"Storage field {entry.storage!r} is reserved")
        if canonical_segments[-1][1] is not None:
            raise MappingError(
                f"Canonical path {entry.canonical!r} must end on a sub-attribute"
            )
        if any(selector is not None for _, selector in storage_segments):
            raise MappingError(f"Storage path {entry.storage!r} cannot select by type")
        if entry.canonical in seen_canonical:
            raise MappingError(f"Canonical path {entry.canonical!r} is mapped twice")
        if entry.storage in seen_storage:
            raise MappingError(f"Storage path {entry.storage!r} is mapped twice")
        seen_canonical.add(entry.canonical)
        seen_storage.add(entry.storage)

    return FieldMapping(resource_type=resource_type, entries=entries)


def load_field_mappings(mapping_file: Path) -> Dict[str, FieldMapping]:
    """
    Load the user and group mapping tables from a YAML file.

    Args:
        mapping_file: Path to the mapping YAML file

    Returns:
        Dictionary with "user" and "group" FieldMapping tables

    Raises:
        MappingError: If the file cannot be read or is invalid
    """
    try:
        with open(mapping_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        raise MappingError(f"Failed to load mapping file {mapping_file}: {exc}") from exc

    if not isinstance(data, dict):
        raise MappingError(f"Mapping file {mapping_file} must contain a mapping")

    mappings = {}
    for resource_type in (USER_RESOURCE, GROUP_RESOURCE):
        if resource_type not in data:
            raise MappingError(f"Mapping file {mapping_file} has no {resource_type!r} section")
        mappings[resource_type] = build_field_mapping(resource_type, data[resource_type])
        logger.info(
            f"Loaded {len(mappings[resource_type].entries)} {resource_type} "
            f"mapping entries from {mapping_file}"
        )
    return mappings
