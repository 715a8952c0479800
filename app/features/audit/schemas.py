"""
Pydantic schemas for audit log queries.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict


class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: str
    user_name: Optional[str]
    user_role: Optional[str]
    target_user_id: Optional[str]
    target_user_name: Optional[str]
    target_user_role: Optional[str]
    action: str
    details: str
    reason: str
    status: str
    permission: Optional[str]
    permissions: Optional[List[str]]
    old_role: Optional[str]
    new_role: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    endpoint: Optional[str]
    method: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    success: bool = True
    logs: List[AuditLogResponse]
    pagination: Pagination
