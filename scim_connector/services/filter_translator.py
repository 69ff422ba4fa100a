"""
Filter Translator Service

Converts a SCIM query predicate into a storage filter. Only the mandatory
subset of the filter grammar is supported: unique lookup by identity
attributes, the group "members.value" lookup and unconditional listing.
Everything else is rejected rather than answered with a wrong result set.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..errors import UnsupportedFilterError
from ..models import GROUP_RESOURCE, IDENTITY_ATTRIBUTES, USER_RESOURCE, QueryPredicate
from .attribute_mapper import FieldMapping, flatten, map_outbound

# Attributes accepted for unique lookup, per resource type
UNIQUE_ATTRIBUTES = {
    USER_RESOURCE: ("id", "userName", "externalId"),
    GROUP_RESOURCE: ("id", "displayName", "externalId"),
}

USER_GROUP_ATTRIBUTE = "group.value"
GROUP_MEMBER_ATTRIBUTE = "members.value"


class FilterKind(str, Enum):
    ALL = "all"
    UNIQUE = "unique"
    MEMBERS = "members"


@dataclass(frozen=True)
class StorageFilter:
    """
    Storage-side filter produced by translate().

    kind ALL matches every record, UNIQUE carries a flat where clause of
    dotted storage paths, MEMBERS carries the canonical user id whose
    groups are requested.
    """
    kind: FilterKind
    where: Dict[str, Any] = field(default_factory=dict)
    member_value: Optional[str] = None


def _nest(path: str, value: Any) -> Dict[str, Any]:
    document: Dict[str, Any] = {}
    current = document
    parts = path.split(".")
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value
    return document


def translate(predicate: Optional[QueryPredicate], mapping: FieldMapping, resource_type: str) -> StorageFilter:
    """
    Translate a query predicate into a storage filter.

    Args:
        predicate: Predicate from the protocol handler, None means "all"
        mapping: Mapping table of the queried resource type
        resource_type: "user" or "group"

    Returns:
        StorageFilter for the query

    Raises:
        UnsupportedFilterError: For any predicate outside the supported subset
    """
    if predicate is None or predicate.is_empty:
        return StorageFilter(kind=FilterKind.ALL)

    if predicate.operator:
        attribute = predicate.attribute
        operator = predicate.operator.lower()

        if operator == "eq" and attribute in UNIQUE_ATTRIBUTES[resource_type]:
            canonical_attribute = IDENTITY_ATTRIBUTES[resource_type] if attribute == "id" else attribute
            where = flatten(map_outbound(_nest(canonical_attribute, predicate.value), mapping))
            if not where:
                raise UnsupportedFilterError(
                    f"Attribute {attribute} is not mapped for {resource_type} lookup"
                )
            return StorageFilter(kind=FilterKind.UNIQUE, where=where)

        if operator == "eq" and resource_type == GROUP_RESOURCE and attribute == GROUP_MEMBER_ATTRIBUTE:
            return StorageFilter(kind=FilterKind.MEMBERS, member_value=str(predicate.value))

        if operator == "eq" and resource_type == USER_RESOURCE and attribute == USER_GROUP_ATTRIBUTE:
            raise UnsupportedFilterError(
                f"Not supporting groups member of user filtering: {predicate.describe()}"
            )

        raise UnsupportedFilterError(f"Not supporting simple filtering: {predicate.describe()}")

    raise UnsupportedFilterError(f"Not supporting advanced filtering: {predicate.describe()}")
