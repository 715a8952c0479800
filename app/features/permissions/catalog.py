"""
Role and permission vocabulary, and the role templates built on it.

Role templates live in an immutable snapshot. Updating a template builds a new
snapshot and swaps the catalog's reference to it, so concurrent readers always
see either the old or the new mapping in full.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping

from app.core.errors import Forbidden, InvalidInput, InvalidPermission
from app.utils import get_logger


log = get_logger(__name__)


class Role(str, Enum):
    """Account role, ordered by privilege: user < admin < superadmin."""

    USER = "user"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"

    @property
    def rank(self) -> int:
        """Privilege level. Compare ranks, not values: the values sort as strings."""
        return _ROLE_RANK[self]

    @classmethod
    def parse(cls, value: str) -> "Role":
        try:
            return cls(value)
        except ValueError:
            raise InvalidInput(f"Invalid role: {value}", field="role", invalid=[str(value)])


_ROLE_RANK = {Role.USER: 0, Role.ADMIN: 1, Role.SUPERADMIN: 2}


class Permission(str, Enum):
    # User management
    MANAGE_USERS = "manage_users"
    DEACTIVATE_USERS = "deactivate_users"
    VIEW_ALL_USERS = "view_all_users"

    # Content management
    MANAGE_CONTENT = "manage_content"
    CREATE_CONTENT = "create_content"
    EDIT_CONTENT = "edit_content"
    DELETE_CONTENT = "delete_content"
    PUBLISH_CONTENT = "publish_content"

    # Settings
    MANAGE_SETTINGS = "manage_settings"
    UPDATE_SYSTEM_SETTINGS = "update_system_settings"
    VIEW_AUDIT_LOGS = "view_audit_logs"

    # Roles & permissions
    MANAGE_ROLES = "manage_roles"
    ASSIGN_PERMISSIONS = "assign_permissions"

    # Analytics
    VIEW_ANALYTICS = "view_analytics"
    EXPORT_DATA = "export_data"

    # Notifications
    SEND_NOTIFICATIONS = "send_notifications"
    MANAGE_NOTIFICATIONS = "manage_notifications"


ALL_PERMISSIONS: tuple[str, ...] = tuple(p.value for p in Permission)


@dataclass(frozen=True)
class PermissionCategory:
    key: str
    name: str
    description: str
    permissions: tuple[str, ...]


# Reporting only; categories never take part in resolution.
PERMISSION_CATEGORIES: tuple[PermissionCategory, ...] = (
    PermissionCategory(
        "user_management", "User Management", "Manage users, roles, and access",
        (Permission.MANAGE_USERS.value, Permission.DEACTIVATE_USERS.value, Permission.VIEW_ALL_USERS.value),
    ),
    PermissionCategory(
        "content_management", "Content Management", "Create, edit, and publish content",
        (
            Permission.MANAGE_CONTENT.value,
            Permission.CREATE_CONTENT.value,
            Permission.EDIT_CONTENT.value,
            Permission.DELETE_CONTENT.value,
            Permission.PUBLISH_CONTENT.value,
        ),
    ),
    PermissionCategory(
        "settings", "System Settings", "System configuration and settings",
        (
            Permission.MANAGE_SETTINGS.value,
            Permission.UPDATE_SYSTEM_SETTINGS.value,
            Permission.VIEW_AUDIT_LOGS.value,
        ),
    ),
    PermissionCategory(
        "roles_permissions", "Roles & Permissions", "Role and permission management",
        (Permission.MANAGE_ROLES.value, Permission.ASSIGN_PERMISSIONS.value),
    ),
    PermissionCategory(
        "analytics", "Analytics", "View and analyze data",
        (Permission.VIEW_ANALYTICS.value, Permission.EXPORT_DATA.value),
    ),
    PermissionCategory(
        "notifications", "Notifications", "Send and manage notifications",
        (Permission.SEND_NOTIFICATIONS.value, Permission.MANAGE_NOTIFICATIONS.value),
    ),
)


ROLE_DESCRIPTIONS: Mapping[Role, dict] = MappingProxyType({
    Role.USER: {
        "label": "Regular User",
        "description": "Basic user with limited access",
        "can_manage": [Role.ADMIN.value, Role.SUPERADMIN.value],
    },
    Role.ADMIN: {
        "label": "Administrator",
        "description": "Full administrative access",
        "can_manage": [Role.SUPERADMIN.value],
    },
    Role.SUPERADMIN: {
        "label": "Super Administrator",
        "description": "Complete system access",
        "can_manage": [],
    },
})


DEFAULT_ADMIN_PERMISSIONS: tuple[str, ...] = (
    Permission.MANAGE_USERS.value,
    Permission.DEACTIVATE_USERS.value,
    Permission.VIEW_ALL_USERS.value,
    Permission.MANAGE_CONTENT.value,
    Permission.CREATE_CONTENT.value,
    Permission.EDIT_CONTENT.value,
    Permission.DELETE_CONTENT.value,
    Permission.PUBLISH_CONTENT.value,
    Permission.VIEW_ANALYTICS.value,
    Permission.SEND_NOTIFICATIONS.value,
)


def _ordered_unique(tokens: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for token in tokens:
        seen.setdefault(token, None)
    return tuple(seen)


@dataclass(frozen=True)
class RoleTemplates:
    """
    Immutable snapshot of the editable role templates.

    Only user and admin templates are stored. The superadmin default is
    always the whole vocabulary and is computed on read.
    """

    vocabulary: tuple[str, ...]
    templates: Mapping[Role, tuple[str, ...]] = field(default_factory=dict)
    version: int = 1

    def defaults_for(self, role: Role) -> tuple[str, ...]:
        if role is Role.SUPERADMIN:
            return self.vocabulary
        return self.templates.get(role, ())

    def replace(self, role: Role, permissions: Iterable[str]) -> "RoleTemplates":
        templates = dict(self.templates)
        templates[role] = _ordered_unique(permissions)
        return RoleTemplates(
            vocabulary=self.vocabulary,
            templates=MappingProxyType(templates),
            version=self.version + 1,
        )


class PermissionCatalog:
    """
    Read-mostly registry of roles, permissions and role templates.

    Instances are injected into the resolver and the routes; there is no
    module-level mutable state.
    """

    def __init__(
        self,
        vocabulary: Iterable[str] = ALL_PERMISSIONS,
        user_defaults: Iterable[str] = (),
        admin_defaults: Iterable[str] = DEFAULT_ADMIN_PERMISSIONS,
    ):
        vocabulary = _ordered_unique(vocabulary)
        self._vocabulary_set = frozenset(vocabulary)
        user_defaults = list(user_defaults)
        admin_defaults = list(admin_defaults)
        self.validate_permissions(user_defaults, field="user_defaults")
        self.validate_permissions(admin_defaults, field="admin_defaults")
        self._snapshot = RoleTemplates(
            vocabulary=vocabulary,
            templates=MappingProxyType({
                Role.USER: _ordered_unique(user_defaults),
                Role.ADMIN: _ordered_unique(admin_defaults),
            }),
        )

    @property
    def snapshot(self) -> RoleTemplates:
        return self._snapshot

    @property
    def permissions(self) -> tuple[str, ...]:
        return self._snapshot.vocabulary

    @property
    def roles(self) -> tuple[Role, ...]:
        """Every role, lowest privilege first."""
        return tuple(sorted(Role, key=lambda role: role.rank))

    def is_permission(self, token: str) -> bool:
        return token in self._vocabulary_set

    def validate_permissions(self, tokens: Iterable[str], field: str = "permissions") -> None:
        """Raise InvalidPermission naming every token outside the vocabulary."""
        invalid = [t for t in tokens if not isinstance(t, str) or t not in self._vocabulary_set]
        if invalid:
            raise InvalidPermission([str(t) for t in invalid], field=field)

    def defaults_for(self, role: Role) -> tuple[str, ...]:
        return self._snapshot.defaults_for(role)

    def role_defaults(self) -> dict[str, list[str]]:
        snapshot = self._snapshot
        return {role.value: list(snapshot.defaults_for(role)) for role in self.roles}

    def update_role_template(self, role: Role, permissions: Iterable[str]) -> RoleTemplates:
        """
        Replace the default permission list of a non-superadmin role.

        Stored account overrides are left alone; only later resolutions see
        the new defaults.
        """
        if role is Role.SUPERADMIN:
            raise Forbidden("Cannot modify superadmin template")
        permissions = list(permissions)
        self.validate_permissions(permissions, field="default_permissions")
        previous = self._snapshot
        self._snapshot = previous.replace(role, permissions)
        log.info(
            "Role template %s updated to version %s with %s permissions",
            role.value, self._snapshot.version, len(self._snapshot.defaults_for(role)),
        )
        return self._snapshot

    def categorize(self, tokens: Iterable[str]) -> dict[str, list[str]]:
        """Group tokens by category, skipping empty categories."""
        held = set(tokens)
        result = {}
        for category in PERMISSION_CATEGORIES:
            matched = [p for p in category.permissions if p in held]
            if matched:
                result[category.key] = matched
        return result
