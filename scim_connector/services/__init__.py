"""
SCIM Connector Services

Attribute mapping, filter translation, membership synchronization and the
user/group entity services built on them.
"""

from .attribute_mapper import (
    FieldMapping,
    MappingEntry,
    build_field_mapping,
    load_field_mappings,
    map_inbound,
    map_outbound,
)
from .entity_service import EntityService, GroupService, UserService
from .filter_translator import FilterKind, StorageFilter, translate
from .membership import MembershipSynchronizer

__all__ = [
    "FieldMapping",
    "MappingEntry",
    "build_field_mapping",
    "load_field_mappings",
    "map_inbound",
    "map_outbound",
    "EntityService",
    "GroupService",
    "UserService",
    "FilterKind",
    "StorageFilter",
    "translate",
    "MembershipSynchronizer",
]
