"""
Test file for the Attribute Mapper

Tests mapping table validation and the outbound/inbound translation:
- Dotted and type-selected paths
- Partial input and unmapped attributes
- Transforms and their failures
- Reserved field collisions
- Loading tables from YAML
"""

import copy

import pytest
import yaml

from scim_connector.errors import MappingError
from scim_connector.services.attribute_mapper import (
    TRANSFORMS,
    build_field_mapping,
    flatten,
    load_field_mappings,
    map_inbound,
    map_outbound,
)

from conftest import GROUP_MAPPING_ENTRIES, USER_MAPPING_ENTRIES


class TestMapOutbound:
    """Canonical -> storage"""

    def test_full_user(self, user_mapping, sample_user):
        record = map_outbound(sample_user, user_mapping)

        assert record == {
            "userName": "jane.example",
            "externalId": "ext-jane",
            "displayName": "Jane Example",
            "profile": {"firstName": "Jane", "lastName": "Example"},
            "email": "jane.example@contoso.com",
            "jobTitle": "Senior Engineer",
            "enabled": True,
        }

    def test_partial_input_only_maps_present_fields(self, user_mapping):
        record = map_outbound({"name": {"givenName": "Janet"}}, user_mapping)

        assert record == {"profile": {"firstName": "Janet"}}

    def test_unmapped_attributes_are_dropped(self, user_mapping):
        record = map_outbound(
            {"userName": "jane", "nickName": "JJ", "schemas": ["x"], "id": "jane"},
            user_mapping,
        )

        assert record == {"userName": "jane"}

    def test_selects_multi_valued_element_by_type(self, user_mapping):
        record = map_outbound(
            {
                "emails": [
                    {"type": "home", "value": "jane@home.example"},
                    {"type": "work", "value": "jane@work.example"},
                ]
            },
            user_mapping,
        )

        assert record == {"email": "jane@work.example"}

    def test_missing_type_element_is_absent(self, user_mapping):
        record = map_outbound({"emails": [{"type": "home", "value": "jane@home.example"}]}, user_mapping)

        assert record == {}

    def test_boolean_transform_accepts_strings(self, user_mapping):
        assert map_outbound({"active": "false"}, user_mapping) == {"enabled": False}
        assert map_outbound({"active": "True"}, user_mapping) == {"enabled": True}

    def test_invalid_boolean_raises_mapping_error(self, user_mapping):
        with pytest.raises(MappingError) as exc_info:
            map_outbound({"active": "maybe"}, user_mapping)

        assert "active" in exc_info.value.detail

    def test_none_passes_through_transform(self, user_mapping):
        assert map_outbound({"active": None}, user_mapping) == {"enabled": None}

    def test_input_is_not_mutated(self, user_mapping, sample_user):
        original = copy.deepcopy(sample_user)

        map_outbound(sample_user, user_mapping)

        assert sample_user == original

    def test_output_does_not_alias_input(self):
        mapping = build_field_mapping("user", [{"canonical": "tags", "storage": "labels"}])
        user = {"tags": ["a"]}

        record = map_outbound(user, mapping)
        record["labels"].append("b")

        assert user["tags"] == ["a"]


class TestMapInbound:
    """Storage -> canonical"""

    def test_full_record(self, user_mapping):
        canonical = map_inbound(
            {
                "id": "0f3c",
                "userName": "jane.example",
                "profile": {"firstName": "Jane", "lastName": "Example"},
                "email": "jane.example@contoso.com",
                "enabled": False,
                "internalNote": "not mapped",
            },
            user_mapping,
        )

        assert canonical == {
            "userName": "jane.example",
            "name": {"givenName": "Jane", "familyName": "Example"},
            "emails": [{"type": "work", "value": "jane.example@contoso.com"}],
            "active": False,
        }

    def test_storage_key_is_never_mapped(self, group_mapping):
        canonical = map_inbound({"id": "abc", "name": "Engineering", "members": ["k1"]}, group_mapping)

        assert canonical == {"displayName": "Engineering"}


class TestRoundTrip:
    """mapInbound(mapOutbound(x)) == x on mapped fields"""

    def test_round_trip_on_mapped_fields(self, user_mapping, sample_user):
        restricted = {key: value for key, value in sample_user.items() if key != "schemas"}

        assert map_inbound(map_outbound(sample_user, user_mapping), user_mapping) == restricted

    def test_round_trip_drops_unmapped_sub_attributes(self, user_mapping):
        user = {
            "userName": "jane",
            "name": {"givenName": "Jane", "middleName": "Q"},
            "emails": [{"type": "work", "value": "jane@work.example", "primary": True}],
        }

        result = map_inbound(map_outbound(user, user_mapping), user_mapping)

        assert result == {
            "userName": "jane",
            "name": {"givenName": "Jane"},
            "emails": [{"type": "work", "value": "jane@work.example"}],
        }

    def test_datetime_round_trip(self):
        mapping = build_field_mapping(
            "user", [{"canonical": "employment.hired", "storage": "hiredAt", "transform": "datetime"}]
        )
        user = {"employment": {"hired": "2024-03-01T10:30:00Z"}}

        record = map_outbound(user, mapping)

        assert record == {"hiredAt": "2024-03-01T10:30:00Z"}
        assert map_inbound(record, mapping) == user

    @pytest.mark.parametrize("transform,value", [
        ("string", "Jane.Example"),
        ("boolean", True),
        ("boolean", False),
        ("integer", 42),
        ("datetime", "2024-03-01T10:30:00Z"),
        ("datetime", "2024-03-01T10:30:00+00:00"),
        ("datetime", "2024-03-01T12:30:00+02:00"),
        ("datetime", "2024-03-01T10:30:00"),
    ])
    def test_every_transform_round_trips(self, transform, value):
        mapping = build_field_mapping(
            "user", [{"canonical": "attribute", "storage": "field", "transform": transform}]
        )
        user = {"attribute": value}

        assert map_inbound(map_outbound(user, mapping), mapping) == user

    def test_transform_table_is_covered(self):
        assert set(TRANSFORMS) == {"string", "boolean", "integer", "datetime"}

    def test_datetime_keeps_offset_form(self):
        mapping = build_field_mapping(
            "user", [{"canonical": "hired", "storage": "hiredAt", "transform": "datetime"}]
        )

        assert map_outbound({"hired": "2024-03-01T10:30:00+00:00"}, mapping) == {
            "hiredAt": "2024-03-01T10:30:00+00:00"
        }

    def test_lowercase_transform_is_rejected(self):
        with pytest.raises(MappingError, match="Unknown transform"):
            build_field_mapping("user", [{"canonical": "userName", "storage": "login", "transform": "lowercase"}])

    @pytest.mark.parametrize("value", ["not-a-date", 1709288400])
    def test_invalid_datetime_values(self, value):
        mapping = build_field_mapping(
            "user", [{"canonical": "hired", "storage": "hiredAt", "transform": "datetime"}]
        )

        with pytest.raises(MappingError):
            map_outbound({"hired": value}, mapping)

    def test_invalid_datetime_raises_mapping_error(self):
        mapping = build_field_mapping(
            "user", [{"canonical": "hired", "storage": "hiredAt", "transform": "datetime"}]
        )

        with pytest.raises(MappingError):
            map_outbound({"hired": "not-a-date"}, mapping)


class TestBuildFieldMapping:
    """Mapping table validation"""

    @pytest.mark.parametrize("entry", [
        {"canonical": "userName", "storage": "id"},
        {"canonical": "userName", "storage": "members"},
        {"canonical": "userName", "storage": "members.primary"},
    ])
    def test_reserved_storage_fields(self, entry):
        with pytest.raises(MappingError, match="reserved"):
            build_field_mapping("user", [entry])

    @pytest.mark.parametrize("canonical", ["id", "groups", "members", "meta.created", "schemas"])
    def test_reserved_canonical_fields(self, canonical):
        with pytest.raises(MappingError, match="reserved"):
            build_field_mapping("group", [{"canonical": canonical, "storage": "something"}])

    def test_unknown_transform(self):
        with pytest.raises(MappingError, match="Unknown transform"):
            build_field_mapping("user", [{"canonical": "active", "storage": "enabled", "transform": "yesno"}])

    def test_duplicate_storage_target(self):
        with pytest.raises(MappingError, match="mapped twice"):
            build_field_mapping("user", [
                {"canonical": "userName", "storage": "login"},
                {"canonical": "displayName", "storage": "login"},
            ])

    def test_canonical_path_cannot_end_on_selector(self):
        with pytest.raises(MappingError):
            build_field_mapping("user", [{"canonical": "emails[work]", "storage": "email"}])

    def test_storage_path_cannot_select_by_type(self):
        with pytest.raises(MappingError):
            build_field_mapping("user", [{"canonical": "title", "storage": "titles[work].value"}])

    @pytest.mark.parametrize("raw", [
        {"canonical": "userName", "storage": "userName"},
        [{"canonical": "userName"}],
        ["userName"],
        [{"canonical": "user name", "storage": "userName"}],
    ])
    def test_malformed_entries(self, raw):
        with pytest.raises(MappingError):
            build_field_mapping("user", raw)

    def test_mapping_is_immutable(self, user_mapping):
        with pytest.raises(Exception):
            user_mapping.entries = ()

    def test_storage_path_lookup(self, user_mapping):
        assert user_mapping.storage_path("name.givenName") == "profile.firstName"
        assert user_mapping.storage_path("nickName") is None


class TestLoadFieldMappings:
    """YAML mapping file loading"""

    def test_load_valid_file(self, tmp_path):
        mapping_file = tmp_path / "mapping.yaml"
        mapping_file.write_text(yaml.safe_dump({"user": USER_MAPPING_ENTRIES, "group": GROUP_MAPPING_ENTRIES}))

        mappings = load_field_mappings(mapping_file)

        assert set(mappings) == {"user", "group"}
        assert len(mappings["user"].entries) == len(USER_MAPPING_ENTRIES)
        assert mappings["group"].storage_path("displayName") == "name"

    def test_missing_file(self, tmp_path):
        with pytest.raises(MappingError, match="Failed to load"):
            load_field_mappings(tmp_path / "missing.yaml")

    def test_missing_group_section(self, tmp_path):
        mapping_file = tmp_path / "mapping.yaml"
        mapping_file.write_text(yaml.safe_dump({"user": USER_MAPPING_ENTRIES}))

        with pytest.raises(MappingError, match="group"):
            load_field_mappings(mapping_file)

    def test_invalid_yaml(self, tmp_path):
        mapping_file = tmp_path / "mapping.yaml"
        mapping_file.write_text("user: [unclosed")

        with pytest.raises(MappingError):
            load_field_mappings(mapping_file)

    def test_bundled_mapping_file_is_valid(self):
        from pathlib import Path

        mappings = load_field_mappings(Path(__file__).parent.parent / "config" / "mapping.yaml")

        assert mappings["user"].storage_path("userName") == "userName"


def test_flatten_nested_document():
    assert flatten({"profile": {"firstName": "Jane", "address": {"city": "Oslo"}}, "enabled": True}) == {
        "profile.firstName": "Jane",
        "profile.address.city": "Oslo",
        "enabled": True,
    }
