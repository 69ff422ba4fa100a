"""
Membership Synchronizer Service

Keeps group membership consistent. Membership lives only on the group
record, as a list of user storage keys; user group lists and group member
lists are reconstructed from it on every read.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..errors import (
    MappingError,
    MemberNotFoundError,
    MembershipCleanupError,
    StorageUnavailableError,
)
from ..models import GROUP_RESOURCE, IDENTITY_ATTRIBUTES, USER_RESOURCE, MemberOperation, SCIMMember
from ..storage.base import (
    CollectionAccessor,
    Record,
    RecordNotFoundError,
    StorageError,
    UnsupportedQueryError,
    Where,
)
from .attribute_mapper import FieldMapping, flatten, map_inbound, map_outbound

logger = logging.getLogger(__name__)

MEMBERS_FIELD = "members"
PRIMARY_KEY = "id"


class MembershipSynchronizer:
    """
    Maintains the denormalized member list on group records.

    Fan-out work (detaching a user from many groups, resolving many
    referenced users) runs on a thread pool scoped to the call. The call
    returns only once every sub-operation finished; the first failure
    aborts the rest and is raised.

    Example usage:
        sync = MembershipSynchronizer(user_mapping, group_mapping, max_workers=8)

        with store.session() as session:
            users = session.collection("users")
            groups = session.collection("groups")

            # Before deleting a user
            sync.detach_user(groups, user_record["id"])

            # Group modification
            new_members = sync.apply_member_operations(
                users, group_record["members"], [MemberOperation(value="jane")]
            )
    """

    def __init__(self, user_mapping: FieldMapping, group_mapping: FieldMapping, max_workers: int = 8):
        """
        Initialize the synchronizer.

        Args:
            user_mapping: Mapping table for users
            group_mapping: Mapping table for groups
            max_workers: Upper bound on concurrent storage calls per fan-out
        """
        self.user_mapping = user_mapping
        self.group_mapping = group_mapping
        self.max_workers = max_workers

    def _dispatch(self, func: Callable[[Any], Any], items: List[Any]) -> List[Any]:
        """Run func over items concurrently, returning results in item order."""
        if not items:
            return []

        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(items))) as pool:
            futures = [pool.submit(func, item) for item in items]
            try:
                for future in as_completed(futures):
                    future.result()
            except Exception:
                for future in futures:
                    future.cancel()
                raise
            return [future.result() for future in futures]

    def user_where(self, user_id: str) -> Where:
        """Storage filter selecting a user by canonical id (userName)."""
        identity = IDENTITY_ATTRIBUTES[USER_RESOURCE]
        where = flatten(map_outbound({identity: user_id}, self.user_mapping))
        if not where:
            raise MappingError(f"User attribute {identity} is not mapped")
        return where

    def _to_reference(self, record: Record, mapping: FieldMapping, resource_type: str) -> Optional[Dict[str, Any]]:
        canonical = map_inbound(record, mapping)
        resource_id = canonical.get(IDENTITY_ATTRIBUTES[resource_type])
        if resource_id is None:
            return None
        return SCIMMember(value=resource_id, display=resource_id).model_dump()

    def resolve_members(self, users: CollectionAccessor, member_values: Iterable[str]) -> Dict[str, str]:
        """
        Resolve canonical user ids to storage keys.

        Args:
            users: User collection accessor
            member_values: Canonical user ids (userName)

        Returns:
            Dictionary mapping each canonical id to its storage key

        Raises:
            MemberNotFoundError: If any referenced user does not exist
            StorageUnavailableError: If a lookup fails
        """
        values = list(dict.fromkeys(member_values))

        def _resolve(value: str) -> Optional[Record]:
            try:
                return users.find_first(self.user_where(value))
            except StorageError as e:
                raise StorageUnavailableError(f"Failed to look up member {value}: {e}") from e

        records = self._dispatch(_resolve, values)

        missing = [value for value, record in zip(values, records) if record is None]
        if missing:
            raise MemberNotFoundError(f"User {', '.join(missing)} not found")

        return {value: record[PRIMARY_KEY] for value, record in zip(values, records)}

    def apply_member_operations(
        self,
        users: CollectionAccessor,
        current_members: Optional[List[str]],
        operations: List[MemberOperation],
    ) -> List[str]:
        """
        Compute the new member list for a group modification.

        Every referenced user is resolved before anything changes, so a
        missing user fails the whole modification. Operations are applied in
        order to one snapshot of the current list: adding a present member and
        deleting an absent one are no-ops.

        Args:
            users: User collection accessor
            current_members: Stored member keys of the group
            operations: Requested member changes

        Returns:
            New list of member keys, to be written as one replacement
        """
        keys = self.resolve_members(users, [op.value for op in operations])

        members = list(current_members or [])
        for op in operations:
            key = keys[op.value]
            if op.is_delete:
                members = [member for member in members if member != key]
            elif key not in members:
                members.append(key)
            else:
                logger.debug(f"Member {op.value} already present, skipping add")
        return members

    def detach_user(self, groups: CollectionAccessor, user_key: str) -> int:
        """
        Remove a user's storage key from every group that lists it.

        Must complete before the user record is deleted. A group deleted
        concurrently counts as detached.

        Args:
            groups: Group collection accessor
            user_key: Storage key of the user being deleted

        Returns:
            Number of groups updated

        Raises:
            MembershipCleanupError: If the groups cannot be listed or any
                group update fails
        """
        try:
            affected = groups.find_many({MEMBERS_FIELD: {"has": user_key}})
        except StorageError as e:
            raise MembershipCleanupError(f"Failed to find groups of user {user_key}: {e}") from e

        def _detach(group: Record) -> bool:
            remaining = [member for member in group.get(MEMBERS_FIELD, []) if member != user_key]
            try:
                groups.update({PRIMARY_KEY: group[PRIMARY_KEY]}, {MEMBERS_FIELD: remaining})
            except RecordNotFoundError:
                logger.info(f"Group {group[PRIMARY_KEY]} vanished during cleanup of user {user_key}")
                return False
            return True

        try:
            results = self._dispatch(_detach, affected)
        except StorageError as e:
            raise MembershipCleanupError(f"Failed to remove user {user_key} from groups: {e}") from e

        updated = sum(1 for result in results if result)
        logger.info(f"Removed user {user_key} from {updated} group(s)")
        return updated

    def members_of(self, users: CollectionAccessor, member_keys: Optional[List[str]]) -> List[Dict[str, Any]]:
        """
        Reconstruct a group's members as {value, display} pairs.

        Keys that no longer resolve to a live user are dropped.
        """
        keys = list(dict.fromkeys(member_keys or []))
        if not keys:
            return []

        try:
            records = users.find_many({PRIMARY_KEY: {"in": keys}})
        except StorageError as e:
            raise StorageUnavailableError(f"Failed to resolve group members: {e}") from e

        by_key = {record[PRIMARY_KEY]: record for record in records}
        members = []
        for key in keys:
            record = by_key.get(key)
            reference = self._to_reference(record, self.user_mapping, USER_RESOURCE) if record else None
            if reference is None:
                logger.warning(f"Dropping dangling member reference {key}")
                continue
            members.append(reference)
        return members

    def groups_of(self, groups: CollectionAccessor, user_key: str) -> List[Dict[str, Any]]:
        """
        Reconstruct a user's groups as {value, display} pairs.

        An accessor that cannot evaluate the membership query yields no groups.
        """
        records = self._groups_containing(groups, user_key)
        references = (self._to_reference(record, self.group_mapping, GROUP_RESOURCE) for record in records)
        return [reference for reference in references if reference is not None]

    def groups_with_member(
        self, users: CollectionAccessor, groups: CollectionAccessor, member_value: str
    ) -> List[Record]:
        """
        Group records containing the user with canonical id member_value.

        An unknown user or an accessor without membership queries yields an
        empty list.
        """
        try:
            user = users.find_first(self.user_where(member_value))
        except StorageError as e:
            raise StorageUnavailableError(f"Failed to look up member {member_value}: {e}") from e
        if user is None:
            return []
        return self._groups_containing(groups, user[PRIMARY_KEY])

    def _groups_containing(self, groups: CollectionAccessor, user_key: str) -> List[Record]:
        try:
            return groups.find_many({MEMBERS_FIELD: {"has": user_key}})
        except UnsupportedQueryError as e:
            logger.warning(f"Storage cannot evaluate membership lookup: {e}")
            return []
        except StorageError as e:
            raise StorageUnavailableError(f"Failed to look up groups of {user_key}: {e}") from e
