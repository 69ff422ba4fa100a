"""
Test file for connector bootstrap
"""

import pytest
import yaml

from scim_connector.config import ConnectorSettings
from scim_connector.errors import MappingError
from scim_connector.main import create_connector, derive_unique_fields
from scim_connector.services import build_field_mapping

from conftest import GROUP_MAPPING_ENTRIES, USER_MAPPING_ENTRIES


@pytest.fixture
def settings(tmp_path):
    mapping_file = tmp_path / "mapping.yaml"
    mapping_file.write_text(yaml.safe_dump({"user": USER_MAPPING_ENTRIES, "group": GROUP_MAPPING_ENTRIES}))
    return ConnectorSettings(
        _env_file=None,
        mapping_file=mapping_file,
        store_file=tmp_path / "data" / "store.json",
        membership_workers=2,
    )


def test_create_connector(settings):
    connector = create_connector(settings)

    connector.users.create({"userName": "jane.example", "active": True})
    connector.groups.create({"displayName": "Engineering", "members": [{"value": "jane.example"}]})

    assert connector.groups.get("Engineering")["members"] == [
        {"value": "jane.example", "display": "jane.example"}
    ]
    assert connector.store.data_file == settings.store_file
    assert connector.store.unique_fields == {
        "users": ("userName", "externalId"),
        "groups": ("name", "externalId"),
    }


def test_create_connector_with_bad_mapping(settings):
    settings.mapping_file.write_text(yaml.safe_dump({"user": USER_MAPPING_ENTRIES}))

    with pytest.raises(MappingError):
        create_connector(settings)


def test_derive_unique_fields_skips_unmapped(settings):
    mappings = {
        "user": build_field_mapping("user", [{"canonical": "userName", "storage": "login"}]),
        "group": build_field_mapping("group", GROUP_MAPPING_ENTRIES),
    }

    assert derive_unique_fields(mappings, settings) == {
        "users": ["login"],
        "groups": ["name", "externalId"],
    }
