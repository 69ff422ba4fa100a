"""
SCIM Connector - Bootstrap

Wires the connector together from settings: logging, the attribute mapping
tables, the document store and the user/group services handed to the SCIM
protocol handler.

Usage:
    from scim_connector.main import create_connector

    connector = create_connector()
    connector.users.create({"userName": "jane.example", "active": True})
    connector.groups.update("Engineering", {"members": [{"value": "jane.example"}]})
    connector.users.list(QueryPredicate.from_request(get_obj), attributes)
"""

import logging
from typing import Dict, List, Optional

from .config import ConnectorSettings, get_settings
from .models import GROUP_RESOURCE, IDENTITY_ATTRIBUTES, USER_RESOURCE
from .services import (
    FieldMapping,
    GroupService,
    MembershipSynchronizer,
    UserService,
    load_field_mappings,
)
from .storage import DocumentStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Canonical attributes backed by a unique storage field, besides the identity attribute
UNIQUE_CANONICAL_ATTRIBUTES = ("externalId",)


class Connector:
    """Entry point for the protocol handler: one service per resource type."""

    def __init__(
        self,
        users: UserService,
        groups: GroupService,
        store: DocumentStore,
        mappings: Dict[str, FieldMapping],
    ):
        self.users = users
        self.groups = groups
        self.store = store
        self.mappings = mappings


def configure_logging(level: str) -> None:
    """Configure root logging for the connector process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def derive_unique_fields(
    mappings: Dict[str, FieldMapping], settings: ConnectorSettings
) -> Dict[str, List[str]]:
    """
    Storage fields that must be unique, per collection.

    The storage paths of the identity attribute and externalId are unique
    wherever they are mapped.
    """
    collections = {
        USER_RESOURCE: settings.user_collection,
        GROUP_RESOURCE: settings.group_collection,
    }

    unique_fields = {}
    for resource_type, collection in collections.items():
        fields = []
        for attribute in (IDENTITY_ATTRIBUTES[resource_type],) + UNIQUE_CANONICAL_ATTRIBUTES:
            path = mappings[resource_type].storage_path(attribute)
            if path:
                fields.append(path)
        unique_fields[collection] = fields
    return unique_fields


def create_connector(settings: Optional[ConnectorSettings] = None) -> Connector:
    """
    Build a connector from settings.

    Args:
        settings: Connector settings, defaults to the global settings instance

    Returns:
        Connector with user and group services sharing one store

    Raises:
        MappingError: If the mapping file is missing or invalid
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting SCIM connector...")

    mappings = load_field_mappings(settings.mapping_file)

    store = DocumentStore(
        str(settings.store_file),
        unique_fields=derive_unique_fields(mappings, settings),
    )

    synchronizer = MembershipSynchronizer(
        mappings[USER_RESOURCE],
        mappings[GROUP_RESOURCE],
        max_workers=settings.membership_workers,
    )

    users = UserService(
        store,
        mappings[USER_RESOURCE],
        synchronizer,
        user_collection=settings.user_collection,
        group_collection=settings.group_collection,
    )
    groups = GroupService(
        store,
        mappings[GROUP_RESOURCE],
        synchronizer,
        user_collection=settings.user_collection,
        group_collection=settings.group_collection,
    )

    logger.info(f"SCIM connector initialized (store: {settings.store_file})")
    return Connector(users=users, groups=groups, store=store, mappings=mappings)
