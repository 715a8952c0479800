"""Unit tests for the role and permission catalog."""

import pytest

from app.core.errors import Forbidden, InvalidInput, InvalidPermission
from app.features.permissions.catalog import (
    ALL_PERMISSIONS,
    DEFAULT_ADMIN_PERMISSIONS,
    PERMISSION_CATEGORIES,
    PermissionCatalog,
    Role,
)


class TestRole:
    def test_roles_are_ranked_by_privilege(self):
        assert Role.USER.rank < Role.ADMIN.rank < Role.SUPERADMIN.rank
        # value order would put "superadmin" below "user"
        assert sorted(Role, key=lambda role: role.rank) == [Role.USER, Role.ADMIN, Role.SUPERADMIN]

    def test_catalog_lists_roles_in_rank_order(self, catalog: PermissionCatalog):
        assert catalog.roles == (Role.USER, Role.ADMIN, Role.SUPERADMIN)

    def test_parse_known_role(self):
        assert Role.parse("admin") is Role.ADMIN

    def test_parse_unknown_role_names_the_field(self):
        with pytest.raises(InvalidInput) as exc_info:
            Role.parse("owner")
        assert exc_info.value.field == "role"
        assert exc_info.value.invalid == ["owner"]


class TestVocabulary:
    def test_vocabulary_has_seventeen_tokens(self):
        assert len(ALL_PERMISSIONS) == 17
        assert len(set(ALL_PERMISSIONS)) == 17

    def test_every_token_belongs_to_exactly_one_category(self):
        categorized = [p for category in PERMISSION_CATEGORIES for p in category.permissions]
        assert sorted(categorized) == sorted(ALL_PERMISSIONS)

    def test_validate_reports_every_unknown_token(self, catalog: PermissionCatalog):
        with pytest.raises(InvalidPermission) as exc_info:
            catalog.validate_permissions(["export_data", "fly", "teleport"], field="permissions")
        assert exc_info.value.invalid == ["fly", "teleport"]
        assert exc_info.value.field == "permissions"
        assert exc_info.value.status_code == 400

    def test_validate_accepts_known_tokens(self, catalog: PermissionCatalog):
        catalog.validate_permissions(["export_data", "manage_users"])

    def test_categorize_skips_empty_categories(self, catalog: PermissionCatalog):
        grouped = catalog.categorize(["export_data", "manage_users"])
        assert grouped == {"user_management": ["manage_users"], "analytics": ["export_data"]}


class TestRoleTemplates:
    def test_builtin_defaults(self, catalog: PermissionCatalog):
        assert catalog.defaults_for(Role.USER) == ()
        assert catalog.defaults_for(Role.ADMIN) == DEFAULT_ADMIN_PERMISSIONS
        assert catalog.defaults_for(Role.SUPERADMIN) == ALL_PERMISSIONS

    def test_configured_user_defaults_are_validated(self):
        with pytest.raises(InvalidPermission):
            PermissionCatalog(user_defaults=["not_a_permission"])

    def test_update_swaps_snapshot_and_bumps_version(self, catalog: PermissionCatalog):
        before = catalog.snapshot
        after = catalog.update_role_template(Role.USER, ["view_analytics", "view_analytics", "create_content"])

        assert after.version == before.version + 1
        assert catalog.snapshot is after
        assert catalog.defaults_for(Role.USER) == ("view_analytics", "create_content")
        # Readers holding the old snapshot still see the old mapping
        assert before.defaults_for(Role.USER) == ()

    def test_update_rejects_unknown_tokens_without_changing_anything(self, catalog: PermissionCatalog):
        before = catalog.snapshot
        with pytest.raises(InvalidPermission):
            catalog.update_role_template(Role.ADMIN, ["manage_users", "bogus"])
        assert catalog.snapshot is before

    def test_superadmin_template_is_not_editable(self, catalog: PermissionCatalog):
        with pytest.raises(Forbidden):
            catalog.update_role_template(Role.SUPERADMIN, [])

    def test_role_defaults_lists_every_role(self, catalog: PermissionCatalog):
        defaults = catalog.role_defaults()
        assert set(defaults) == {"user", "admin", "superadmin"}
        assert defaults["superadmin"] == list(ALL_PERMISSIONS)
