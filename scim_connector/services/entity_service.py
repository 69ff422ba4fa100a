"""
Entity Services

User and group operations consumed by the SCIM protocol handler: list, get,
create, update and delete. Each operation runs inside one storage session
and translates storage failures into the connector error taxonomy.

Architecture:
    protocol handler -> UserService / GroupService
        - filter_translator: query predicate -> storage filter
        - attribute_mapper: canonical <-> storage documents
        - MembershipSynchronizer: group membership
        - StorageBackend: document store sessions
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ..errors import (
    DuplicateKeyError,
    MappingError,
    NotFoundError,
    StorageUnavailableError,
    UnsupportedFilterError,
    ValidationError,
)
from ..models import (
    GROUP_RESOURCE,
    IDENTITY_ATTRIBUTES,
    SCIM_GROUP_SCHEMA,
    SCIM_USER_SCHEMA,
    USER_RESOURCE,
    CanonicalGroup,
    CanonicalUser,
    MemberOperation,
    QueryPredicate,
    SCIMListResponse,
)
from ..storage.base import (
    CollectionAccessor,
    Record,
    RecordNotFoundError,
    StorageBackend,
    StorageError,
    StorageSession,
    UniqueConstraintError,
)
from .attribute_mapper import FieldMapping, flatten, map_inbound, map_outbound
from .filter_translator import FilterKind, StorageFilter, translate
from .membership import MEMBERS_FIELD, PRIMARY_KEY, MembershipSynchronizer

logger = logging.getLogger(__name__)


def _describe_validation(error: PydanticValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'resource'}: {err['msg']}"
        for err in error.errors()
    )


def _top_level_attribute(attribute: str) -> str:
    """
    Lowercased top-level name of a requested attribute.

    Example:
        >>> _top_level_attribute("urn:ietf:params:scim:schemas:core:2.0:User:name.givenName")
        'name'
    """
    return attribute.strip().rsplit(":", 1)[-1].split(".")[0].lower()


class EntityService(ABC):
    """
    Shared CRUD logic for one resource type.

    Subclasses set the resource type, name their collection and may hook
    into relation handling (group membership) by overriding _prepare_create,
    _prepare_update, _before_delete and _expand_relations. The base hooks
    leave records unchanged.
    """

    resource_type: str = ""
    label: str = ""
    schema: str = ""
    model: type = BaseModel

    def __init__(
        self,
        backend: StorageBackend,
        mapping: FieldMapping,
        synchronizer: MembershipSynchronizer,
        user_collection: str = "users",
        group_collection: str = "groups",
    ):
        """
        Initialize the service.

        Args:
            backend: Storage backend providing scoped sessions
            mapping: Attribute mapping table for this resource type
            synchronizer: Membership synchronizer shared by users and groups
            user_collection: Storage collection holding users
            group_collection: Storage collection holding groups
        """
        self.backend = backend
        self.mapping = mapping
        self.synchronizer = synchronizer
        self.user_collection = user_collection
        self.group_collection = group_collection

    @property
    def identity_attribute(self) -> str:
        return IDENTITY_ATTRIBUTES[self.resource_type]

    @property
    @abstractmethod
    def collection_name(self) -> str:
        """Storage collection holding this resource type."""

    def list(
        self,
        predicate: Optional[QueryPredicate] = None,
        attributes: Optional[Union[str, Iterable[str]]] = None,
        base_entity: Optional[str] = None,
    ) -> SCIMListResponse:
        """
        List resources matching a predicate.

        Args:
            predicate: Query predicate, None or empty lists everything
            attributes: Attributes to return, empty returns all mapped ones
            base_entity: Routing context of the protocol handler (logging only)

        Returns:
            SCIMListResponse with totalResults equal to the number of resources

        Raises:
            UnsupportedFilterError: For predicates outside the supported subset
            StorageUnavailableError: If the storage query fails
        """
        action = f"get{self.label}s"
        logger.debug(
            f'[{base_entity}] handling "{action}" '
            f"predicate={predicate.describe() if predicate else '<all>'} attributes={attributes}"
        )

        storage_filter = translate(predicate, self.mapping, self.resource_type)

        with self.backend.session() as session:
            records = self._find(session, storage_filter)
            resources = [
                self._project(self._to_resource(session, record), attributes)
                for record in records
            ]

        return SCIMListResponse.from_resources(resources)

    def get(
        self,
        resource_id: str,
        attributes: Optional[Union[str, Iterable[str]]] = None,
        base_entity: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get one resource by id (unique lookup through list).

        Raises:
            NotFoundError: If no resource has this id
        """
        predicate = QueryPredicate(attribute="id", operator="eq", value=resource_id)
        result = self.list(predicate, attributes, base_entity=base_entity)
        if not result.Resources:
            raise NotFoundError(f"{self.label} {resource_id} not found")
        return result.Resources[0]

    def create(self, resource: Dict[str, Any], base_entity: Optional[str] = None) -> str:
        """
        Create a resource.

        Args:
            resource: Canonical resource
            base_entity: Routing context of the protocol handler (logging only)

        Returns:
            Canonical id of the created resource

        Raises:
            ValidationError: If the resource is invalid or storage rejects it
            DuplicateKeyError: If a unique field collides with an existing record
            MappingError: If a transform rejects a value
        """
        action = f"create{self.label}"
        logger.debug(f'[{base_entity}] handling "{action}" resource={resource}')

        try:
            canonical = self.model.model_validate(resource)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {self.label}: {_describe_validation(e)}") from e

        record = map_outbound(resource, self.mapping)

        with self.backend.session() as session:
            record = self._prepare_create(session, canonical, record)
            collection = session.collection(self.collection_name)
            try:
                created = collection.create(record)
            except UniqueConstraintError as e:
                raise DuplicateKeyError(f"Duplicate key at {', '.join(e.fields)}", e.fields) from e
            except StorageError as e:
                logger.error(f"Storage rejected {action}: {e}")
                raise ValidationError(f"Error creating {self.label}: {e}") from e

        resource_id = map_inbound(created, self.mapping).get(
            self.identity_attribute, resource[self.identity_attribute]
        )
        logger.info(f"{self.label} created: {resource_id}")
        return resource_id

    def update(self, resource_id: str, partial: Dict[str, Any], base_entity: Optional[str] = None) -> None:
        """
        Update a resource with a partial canonical object.

        Only mapped fields present in partial are written; nothing else is
        cleared.

        Raises:
            NotFoundError: If the resource does not exist (or vanished)
            DuplicateKeyError: If the update collides with a unique field
            ValidationError: If storage rejects the write
        """
        action = f"modify{self.label}"
        logger.debug(f'[{base_entity}] handling "{action}" id={resource_id} partial={partial}')

        if not isinstance(partial, dict):
            raise ValidationError(f"{self.label} modification must be an object")

        patch = flatten(map_outbound(partial, self.mapping))

        with self.backend.session() as session:
            collection = session.collection(self.collection_name)
            existing = self._lookup(collection, resource_id)
            patch = self._prepare_update(session, existing, partial, patch)

            if not patch:
                logger.debug(f"Nothing to update for {self.label} {resource_id}")
                return

            try:
                collection.update({PRIMARY_KEY: existing[PRIMARY_KEY]}, patch)
            except UniqueConstraintError as e:
                raise DuplicateKeyError(f"Duplicate key at {', '.join(e.fields)}", e.fields) from e
            except RecordNotFoundError as e:
                raise NotFoundError(f"{self.label} {resource_id} not found") from e
            except StorageError as e:
                logger.error(f"Storage rejected {action}: {e}")
                raise ValidationError(f"Error updating {self.label} {resource_id}: {e}") from e

        logger.info(f"{self.label} updated: {resource_id}")

    def delete(self, resource_id: str, base_entity: Optional[str] = None) -> None:
        """
        Delete a resource.

        Raises:
            NotFoundError: If the resource does not exist or vanished before
                the delete (no retry)
            MembershipCleanupError: If a user cannot be detached from its groups
            ValidationError: If storage rejects the delete
        """
        action = f"delete{self.label}"
        logger.debug(f'[{base_entity}] handling "{action}" id={resource_id}')

        with self.backend.session() as session:
            collection = session.collection(self.collection_name)
            existing = self._lookup(collection, resource_id)
            self._before_delete(session, existing)

            try:
                collection.delete({PRIMARY_KEY: existing[PRIMARY_KEY]})
            except RecordNotFoundError as e:
                raise NotFoundError(f"{self.label} {resource_id} not found") from e
            except StorageError as e:
                logger.error(f"Storage rejected {action}: {e}")
                raise ValidationError(f"Error deleting {self.label} {resource_id}: {e}") from e

        logger.info(f"{self.label} deleted: {resource_id}")

    def _find(self, session: StorageSession, storage_filter: StorageFilter) -> List[Record]:
        collection = session.collection(self.collection_name)
        if storage_filter.kind == FilterKind.ALL:
            where = {}
        elif storage_filter.kind == FilterKind.UNIQUE:
            where = storage_filter.where
        else:
            raise UnsupportedFilterError(
                f"Filter kind {storage_filter.kind.value} is not supported for {self.label}"
            )

        try:
            return collection.find_many(where)
        except StorageError as e:
            logger.error(f"Storage query on {self.collection_name} failed: {e}")
            raise StorageUnavailableError(f"Failed to list {self.label}s: {e}") from e

    def _lookup(self, collection: CollectionAccessor, resource_id: str) -> Record:
        where = flatten(map_outbound({self.identity_attribute: resource_id}, self.mapping))
        if not where:
            raise MappingError(f"{self.label} attribute {self.identity_attribute} is not mapped")

        try:
            record = collection.find_unique(where)
        except StorageError as e:
            logger.error(f"Storage lookup of {self.label} {resource_id} failed: {e}")
            raise StorageUnavailableError(f"Failed to look up {self.label} {resource_id}: {e}") from e

        if record is None:
            raise NotFoundError(f"{self.label} {resource_id} not found")
        return record

    def _to_resource(self, session: StorageSession, record: Record) -> Dict[str, Any]:
        mapped = map_inbound(record, self.mapping)
        resource = {
            "schemas": [self.schema],
            "id": mapped.get(self.identity_attribute),
            **mapped,
            "meta": {"resourceType": self.label},
        }
        self._expand_relations(session, record, resource)
        return resource

    def _project(
        self, resource: Dict[str, Any], attributes: Optional[Union[str, Iterable[str]]]
    ) -> Dict[str, Any]:
        if not attributes:
            return resource
        if isinstance(attributes, str):
            attributes = attributes.split(",")

        wanted = {_top_level_attribute(attribute) for attribute in attributes if attribute.strip()}
        if not wanted:
            return resource
        wanted |= {"id", "schemas", "meta", self.identity_attribute.lower()}
        return {key: value for key, value in resource.items() if key.lower() in wanted}

    def _prepare_create(self, session: StorageSession, canonical: BaseModel, record: Record) -> Record:
        """Return the storage record to insert."""
        return record

    def _prepare_update(
        self, session: StorageSession, existing: Record, partial: Dict[str, Any], patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Return the dotted-path patch to write."""
        return patch

    def _before_delete(self, session: StorageSession, existing: Record) -> None:
        """Release relations of a record about to be deleted."""

    def _expand_relations(self, session: StorageSession, record: Record, resource: Dict[str, Any]) -> None:
        """Add derived relation attributes to an outgoing resource."""


class UserService(EntityService):
    """
    User operations.

    A user's groups are derived from group member lists on every read; deleting
    a user first detaches it from every group.
    """

    resource_type = USER_RESOURCE
    label = "User"
    schema = SCIM_USER_SCHEMA
    model = CanonicalUser

    @property
    def collection_name(self) -> str:
        return self.user_collection

    def _before_delete(self, session: StorageSession, existing: Record) -> None:
        groups = session.collection(self.group_collection)
        self.synchronizer.detach_user(groups, existing[PRIMARY_KEY])

    def _expand_relations(self, session: StorageSession, record: Record, resource: Dict[str, Any]) -> None:
        groups = session.collection(self.group_collection)
        resource["groups"] = self.synchronizer.groups_of(groups, record[PRIMARY_KEY])


class GroupService(EntityService):
    """
    Group operations.

    Members are stored as user storage keys on the group record and
    returned as {value, display} pairs. Member changes in a modification are
    resolved up front and written as one replacement of the member list.
    """

    resource_type = GROUP_RESOURCE
    label = "Group"
    schema = SCIM_GROUP_SCHEMA
    model = CanonicalGroup

    @property
    def collection_name(self) -> str:
        return self.group_collection

    def _find(self, session: StorageSession, storage_filter: StorageFilter) -> List[Record]:
        if storage_filter.kind == FilterKind.MEMBERS:
            return self.synchronizer.groups_with_member(
                session.collection(self.user_collection),
                session.collection(self.group_collection),
                storage_filter.member_value,
            )
        return super()._find(session, storage_filter)

    def _prepare_create(self, session: StorageSession, canonical: BaseModel, record: Record) -> Record:
        values = [member.value for member in canonical.members or [] if not member.is_delete]
        keys = self.synchronizer.resolve_members(session.collection(self.user_collection), values)
        return {**record, MEMBERS_FIELD: [keys[value] for value in dict.fromkeys(values)]}

    def _prepare_update(
        self, session: StorageSession, existing: Record, partial: Dict[str, Any], patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        raw_members = partial.get(MEMBERS_FIELD)
        if not raw_members:
            return patch

        try:
            operations = [MemberOperation.model_validate(member) for member in raw_members]
        except (PydanticValidationError, TypeError) as e:
            raise ValidationError(f"Invalid member operations: {e}") from e

        members = self.synchronizer.apply_member_operations(
            session.collection(self.user_collection),
            existing.get(MEMBERS_FIELD, []),
            operations,
        )
        return {**patch, MEMBERS_FIELD: members}

    def _expand_relations(self, session: StorageSession, record: Record, resource: Dict[str, Any]) -> None:
        users = session.collection(self.user_collection)
        resource["members"] = self.synchronizer.members_of(users, record.get(MEMBERS_FIELD))
