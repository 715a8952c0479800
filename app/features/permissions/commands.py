"""
Commands for per-account role and override mutations.

Each command is executed by OverrideStore as one compare-and-swap update.
"""
from dataclasses import dataclass
from typing import Optional

from app.features.permissions.catalog import Role


@dataclass(frozen=True)
class GrantPermissionCommand:
    account_id: str
    permission: str
    reason: str = ""


@dataclass(frozen=True)
class RevokePermissionCommand:
    account_id: str
    permission: str
    reason: str = ""


@dataclass(frozen=True)
class ResetPermissionsCommand:
    account_id: str
    reason: str = ""


@dataclass(frozen=True)
class BulkPermissionCommand:
    account_id: str
    permissions: tuple[str, ...]
    grant: bool
    reason: str = ""


@dataclass(frozen=True)
class ChangeRoleCommand:
    account_id: str
    role: Role
    reset_overrides: bool
    expected_role: Optional[Role] = None
    reason: str = ""
