"""
Shared fixtures for the SCIM connector tests.

Services run against a real DocumentStore in a temporary directory; failure
injection uses unittest.mock in the individual tests.
"""

import pytest

from scim_connector.services import (
    GroupService,
    MembershipSynchronizer,
    UserService,
    build_field_mapping,
)
from scim_connector.storage import DocumentStore


USER_MAPPING_ENTRIES = [
    {"canonical": "userName", "storage": "userName"},
    {"canonical": "externalId", "storage": "externalId"},
    {"canonical": "displayName", "storage": "displayName"},
    {"canonical": "name.givenName", "storage": "profile.firstName"},
    {"canonical": "name.familyName", "storage": "profile.lastName"},
    {"canonical": "emails[work].value", "storage": "email"},
    {"canonical": "title", "storage": "jobTitle"},
    {"canonical": "active", "storage": "enabled", "transform": "boolean"},
]

GROUP_MAPPING_ENTRIES = [
    {"canonical": "displayName", "storage": "name"},
    {"canonical": "externalId", "storage": "externalId"},
]

UNIQUE_FIELDS = {
    "users": ["userName", "externalId"],
    "groups": ["name", "externalId"],
}


@pytest.fixture
def user_mapping():
    return build_field_mapping("user", USER_MAPPING_ENTRIES)


@pytest.fixture
def group_mapping():
    return build_field_mapping("group", GROUP_MAPPING_ENTRIES)


@pytest.fixture
def store(tmp_path):
    """Document store backed by a temporary JSON file"""
    return DocumentStore(str(tmp_path / "store.json"), unique_fields=UNIQUE_FIELDS)


@pytest.fixture
def synchronizer(user_mapping, group_mapping):
    return MembershipSynchronizer(user_mapping, group_mapping, max_workers=4)


@pytest.fixture
def user_service(store, user_mapping, synchronizer):
    return UserService(store, user_mapping, synchronizer)


@pytest.fixture
def group_service(store, group_mapping, synchronizer):
    return GroupService(store, group_mapping, synchronizer)


@pytest.fixture
def sample_user():
    """Canonical user with every mapped attribute populated"""
    return {
        "schemas": ["urn:ietf:params:scim:schemas:core:2.0:User"],
        "userName": "jane.example",
        "externalId": "ext-jane",
        "displayName": "Jane Example",
        "name": {"givenName": "Jane", "familyName": "Example"},
        "emails": [{"type": "work", "value": "jane.example@contoso.com"}],
        "title": "Senior Engineer",
        "active": True,
    }


@pytest.fixture
def stored_records(store):
    """Read raw records of a collection straight from the store"""
    def _read(collection):
        with store.session() as session:
            return session.collection(collection).find_many()
    return _read
