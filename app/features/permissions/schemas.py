"""
Pydantic schemas for permission management.

Request and response models for overrides, role changes, role templates,
permission checks and statistics.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Requests
# ============================================================================

class ReasonRequest(BaseModel):
    """Optional free-text justification, stored with the audit entry."""
    reason: Optional[str] = Field(None, max_length=1000)

    @field_validator('reason')
    @classmethod
    def strip_reason(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v


class PermissionChangeRequest(ReasonRequest):
    """Schema for granting or revoking a single permission."""
    permission: str = Field(..., min_length=1, max_length=100, description="Permission token")


class BulkPermissionRequest(ReasonRequest):
    """Schema for granting or revoking several permissions at once."""
    permissions: List[str] = Field(..., min_length=1, description="Permission tokens")


class ChangeRoleRequest(ReasonRequest):
    """Schema for changing an account's role."""
    role: str = Field(..., min_length=1, description="Target role: user, admin or superadmin")


class RoleTemplateUpdate(ReasonRequest):
    """Schema for replacing a role's default permissions."""
    default_permissions: List[str] = Field(..., description="New default permission list")


# ============================================================================
# Shared response parts
# ============================================================================

class AccountSummary(BaseModel):
    """Affected account with its effective permissions."""
    id: str
    name: str
    email: str
    role: str
    is_active: bool
    permissions: List[str]


class OverridesResponse(BaseModel):
    granted: List[str] = []
    revoked: List[str] = []


class PermissionStatistics(BaseModel):
    total: int
    granted: int
    available: int
    coverage: int


# ============================================================================
# Mutation responses
# ============================================================================

class PermissionChangeResponse(BaseModel):
    success: bool = True
    message: str
    user: AccountSummary
    permission: str
    old_permissions: List[str]
    new_permissions: List[str]


class ResetPermissionsResponse(BaseModel):
    success: bool = True
    message: str
    user: AccountSummary
    old_permissions: List[str]
    new_permissions: List[str]
    previous_overrides: OverridesResponse
    reset_permissions: List[str]


class BulkPermissionResponse(BaseModel):
    success: bool = True
    message: str
    user: AccountSummary
    applied: List[str]
    unchanged: List[str]
    total_processed: int
    old_permissions: List[str]
    new_permissions: List[str]


class RoleChangeResponse(BaseModel):
    success: bool = True
    message: str
    user: AccountSummary
    old_role: str
    new_role: str
    previous_permissions: List[str]
    new_permissions: List[str]
    reset_permissions: List[str] = []


# ============================================================================
# Catalog and check responses
# ============================================================================

class CategoryResponse(BaseModel):
    name: str
    description: str
    permissions: List[str]


class RoleInfoResponse(BaseModel):
    label: str
    description: str
    default_permissions: List[str]


class CatalogMetadata(BaseModel):
    total_permissions: int
    total_categories: int
    total_roles: int


class CatalogResponse(BaseModel):
    success: bool = True
    all_permissions: List[str]
    roles: Dict[str, RoleInfoResponse]
    categories: Dict[str, CategoryResponse]
    role_permissions: Dict[str, List[str]]
    metadata: CatalogMetadata


class CheckedAccount(AccountSummary):
    permission_count: int


class PermissionCheckResponse(BaseModel):
    success: bool = True
    has_permission: bool
    permission: str
    user: CheckedAccount


class UserPermissionsResponse(BaseModel):
    success: bool = True
    user: AccountSummary
    effective_permissions: List[str]
    custom_permissions: OverridesResponse
    available_permissions: List[str]
    categorized_permissions: Dict[str, List[str]]
    statistics: PermissionStatistics
    is_superadmin: bool
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Statistics
# ============================================================================

class CategoryStats(BaseModel):
    name: str
    total: int
    granted: int
    coverage: int
    permissions: List[str]


class UserPermissionStats(PermissionStatistics):
    by_category: Dict[str, CategoryStats]


class UserPermissionStatsResponse(BaseModel):
    success: bool = True
    stats: UserPermissionStats
    user: AccountSummary


class RoleUsage(BaseModel):
    count: int
    total_permissions: int
    average_permissions: int


class PermissionUsage(BaseModel):
    count: int
    percentage: int


class SystemStats(BaseModel):
    total_users: int
    by_role: Dict[str, RoleUsage]
    permission_usage: Dict[str, PermissionUsage]
    average_permissions: int


class SystemStatsResponse(BaseModel):
    success: bool = True
    stats: SystemStats
    total_permissions: int
    timestamp: datetime


# ============================================================================
# Role templates
# ============================================================================

class RoleTemplateResponse(BaseModel):
    name: str
    description: str
    default_permissions: List[str]
    customizable: bool
    can_manage: List[str]


class RoleTemplatesResponse(BaseModel):
    success: bool = True
    templates: Dict[str, RoleTemplateResponse]
    version: int


class RoleTemplateUpdateResponse(BaseModel):
    success: bool = True
    message: str
    role: str
    default_permissions: List[str]
    total_permissions: int
    version: int
