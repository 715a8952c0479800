"""
Audit log model.
"""
from typing import Any
from sqlalchemy import String, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class AuditStatus:
    SUCCESS = "SUCCESS"
    DENIED = "DENIED"
    FAILURE = "FAILURE"


class AuditLog(Base, TimestampMixin):
    """
    Audit log for tracking role and permission changes.

    Tracks who did what to whom, when, and from where. Names and roles are
    copied at write time so entries stay readable after the accounts change.
    No foreign keys: entries outlive the accounts they mention.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_role: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Target
    target_user_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    target_user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    target_user_role: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(10), nullable=False, default=AuditStatus.SUCCESS, index=True)

    permission: Mapped[str | None] = mapped_column(String(100), nullable=True)
    permissions: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    old_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_role: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Request provenance
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)
    endpoint: Mapped[str | None] = mapped_column(String(255), nullable=True)
    method: Mapped[str | None] = mapped_column(String(10), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, target={self.target_user_id})>"
