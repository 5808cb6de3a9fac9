"""
Tests for the attribute translator.

Covers role mapping into the downstream extension, email handling, response
reconstruction and PATCH classification.
"""

import pytest

from scim_gateway.errors import ValidationError
from scim_gateway.models import (
    DOWNSTREAM_EXTENSION_SCHEMA,
    ActivePatch,
    DownstreamUser,
    PassthroughPatch,
    RolesPatch,
    SCIMPatchOperation,
    SCIMUser,
)
from scim_gateway.services import RoleMappingTable
from scim_gateway.services.translator import (
    DOWNSTREAM_ROLE_TYPE,
    classify_patch_operation,
    derive_custom_roles,
    derive_role_update,
    should_update_roles,
    to_downstream,
    to_downstream_operation,
    to_upstream,
)


def make_user(**fields):
    fields.setdefault("userName", "alice@example.com")
    return SCIMUser(**fields)


class TestToDownstream:

    @pytest.mark.parametrize("roles, expected", [
        (["ld-developer"], ["developer"]),
        (["ld-developer", "ld-viewer"], ["developer", "viewer"]),
        (["unknown", "ld-viewer"], ["viewer"]),
        (["ld-release-manager", "ld-developer"], ["release-manager", "developer"]),
    ])
    def test_matched_roles_set_custom_roles_only(self, role_table, roles, expected):
        user = make_user(roles=[{"value": r} for r in roles])

        payload = to_downstream(user, role_table)

        extension = payload[DOWNSTREAM_EXTENSION_SCHEMA]
        assert extension == {"customRole": expected}
        assert "role" not in extension

    @pytest.mark.parametrize("roles", [None, [], [{"value": "unknown"}], [{"value": "LD-DEVELOPER"}]])
    def test_unmatched_roles_fall_back_to_default_role(self, role_table, roles):
        payload = to_downstream(make_user(roles=roles), role_table)

        assert payload[DOWNSTREAM_EXTENSION_SCHEMA] == {"role": "reader"}

    def test_default_role_comes_from_table(self):
        table = RoleMappingTable.from_dict({"default_role": "no_access"})

        payload = to_downstream(make_user(), table)

        assert payload[DOWNSTREAM_EXTENSION_SCHEMA] == {"role": "no_access"}

    def test_strict_table_rejects_unmatched_role(self):
        table = RoleMappingTable.from_dict(
            {"role_mappings": [{"role": "ld-developer", "custom_roles": ["developer"]}]},
            strict=True,
        )

        with pytest.raises(ValidationError):
            to_downstream(make_user(roles=[{"value": "ld-developer"}, {"value": "other"}]), table)

    def test_emails_are_carried_with_default_type(self, role_table):
        user = make_user(emails=[
            {"value": "alice@example.com", "primary": True},
            {"value": "alice@home.example", "type": "home"},
        ])

        payload = to_downstream(user, role_table)

        assert payload["emails"] == [
            {"value": "alice@example.com", "type": "work", "primary": True},
            {"value": "alice@home.example", "type": "home"},
        ]

    def test_email_is_synthesized_from_username(self, role_table):
        payload = to_downstream(make_user(), role_table)

        assert payload["emails"] == [{"value": "alice@example.com", "primary": True, "type": "work"}]

    def test_missing_email_and_username_is_rejected(self, role_table):
        with pytest.raises(ValidationError):
            to_downstream(make_user(userName="   "), role_table)

    def test_active_defaults_to_true(self, role_table):
        assert to_downstream(make_user(), role_table)["active"] is True
        assert to_downstream(make_user(active=False), role_table)["active"] is False

    def test_optional_fields_are_not_invented(self, role_table):
        payload = to_downstream(make_user(), role_table)

        assert "name" not in payload
        assert "externalId" not in payload
        assert payload["schemas"] == [
            "urn:ietf:params:scim:schemas:core:2.0:User",
            DOWNSTREAM_EXTENSION_SCHEMA,
        ]

    def test_name_and_external_id_are_carried(self, role_table):
        user = make_user(externalId="ext-1", name={"givenName": "Alice"})

        payload = to_downstream(user, role_table)

        assert payload["externalId"] == "ext-1"
        assert payload["name"] == {"givenName": "Alice"}


class TestToUpstream:

    def make_downstream_user(self, **fields):
        data = {
            "id": "ld-123",
            "userName": "alice@example.com",
            "active": True,
            "meta": {
                "resourceType": "User",
                "created": "2024-01-01T00:00:00Z",
                "lastModified": "2024-01-02T00:00:00Z",
                "location": "https://downstream.example/Users/ld-123",
            },
        }
        data.update(fields)
        return DownstreamUser.model_validate(data)

    def test_custom_roles_become_tagged_roles(self):
        user = self.make_downstream_user(**{
            DOWNSTREAM_EXTENSION_SCHEMA: {"customRole": ["developer", "viewer"]}
        })

        resource = to_upstream(user, "internal-1", "https://gw/scim/v2")

        assert resource["roles"] == [
            {"value": "developer", "type": DOWNSTREAM_ROLE_TYPE},
            {"value": "viewer", "type": DOWNSTREAM_ROLE_TYPE},
        ]

    def test_missing_extension_gives_empty_roles(self):
        resource = to_upstream(self.make_downstream_user(), "internal-1", "https://gw/scim/v2")

        assert resource["roles"] == []

    def test_internal_id_replaces_downstream_id(self):
        resource = to_upstream(self.make_downstream_user(), "internal-1", "https://gw/scim/v2/")

        assert resource["id"] == "internal-1"
        assert resource["meta"] == {
            "resourceType": "User",
            "location": "https://gw/scim/v2/Users/internal-1",
            "created": "2024-01-01T00:00:00Z",
            "lastModified": "2024-01-02T00:00:00Z",
        }
        assert "ld-123" not in str(resource)


class TestRoleUpdates:

    def test_roles_patch_replaces_extension(self, role_table):
        operation = derive_role_update([{"value": "ld-developer"}], role_table)

        assert operation == {
            "op": "replace",
            "path": DOWNSTREAM_EXTENSION_SCHEMA,
            "value": {"customRole": ["developer"]},
        }

    def test_unmatched_roles_patch_sets_default_role(self, role_table):
        operation = derive_role_update([{"value": "unknown"}], role_table)

        assert operation["value"] == {"role": "reader"}

    def test_derive_custom_roles_deduplicates(self, role_table):
        assert derive_custom_roles(
            ["ld-developer", "ld-release-manager"], role_table
        ) == ["developer", "release-manager"]

    def test_should_update_roles(self):
        assert should_update_roles(None, ["developer"])
        assert should_update_roles(["viewer"], ["developer"])
        assert not should_update_roles(["viewer", "developer"], ["developer", "viewer"])


class TestPatchClassification:

    def test_roles_operation(self):
        patch = classify_patch_operation(
            SCIMPatchOperation(op="replace", path="roles", value=[{"value": "ld-viewer"}])
        )

        assert isinstance(patch, RolesPatch)
        assert patch.roles == ["ld-viewer"]

    def test_roles_remove_clears_roles(self, role_table):
        patch = classify_patch_operation(SCIMPatchOperation(op="remove", path="roles"))

        assert patch.roles == []
        assert to_downstream_operation(patch, role_table)["value"] == {"role": "reader"}

    def test_roles_remove_with_value_is_rejected(self):
        with pytest.raises(ValidationError):
            classify_patch_operation(
                SCIMPatchOperation(op="remove", path="roles", value=[{"value": "ld-viewer"}])
            )

    @pytest.mark.parametrize("value, expected", [(False, False), ("False", False), ("true", True)])
    def test_active_operation_is_normalized(self, value, expected):
        patch = classify_patch_operation(SCIMPatchOperation(op="Replace", path="active", value=value))

        assert isinstance(patch, ActivePatch)
        assert patch.active is expected

    @pytest.mark.parametrize("value", ["yes", 0, None, {"active": False}])
    def test_ambiguous_active_value_is_rejected(self, value):
        with pytest.raises(ValidationError):
            classify_patch_operation(SCIMPatchOperation(op="replace", path="active", value=value))

    def test_other_paths_pass_through(self, role_table):
        operation = SCIMPatchOperation(op="replace", path="name.givenName", value="Alicia")

        patch = classify_patch_operation(operation)

        assert isinstance(patch, PassthroughPatch)
        assert to_downstream_operation(patch, role_table) == {
            "op": "replace", "path": "name.givenName", "value": "Alicia"
        }

    def test_unknown_op_is_rejected(self):
        with pytest.raises(ValidationError):
            classify_patch_operation(SCIMPatchOperation(op="move", path="active", value=True))
