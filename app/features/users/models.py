"""
Account model with ULID primary keys.
"""
from datetime import datetime
from sqlalchemy import String, Boolean, Integer, JSON, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.catalog import Role
from app.features.permissions.resolver import OverrideSet, Subject


class User(Base, TimestampMixin):
    """
    Account holding a role and per-account permission overrides.

    Role and override columns are only written through OverrideStore, which
    bumps `version` on every change (compare-and-swap).
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER.value, index=True)
    granted_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    revoked_permissions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Audit linkage
    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    updated_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    last_login_at: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def role_enum(self) -> Role:
        return Role(self.role)

    @property
    def overrides(self) -> OverrideSet:
        return OverrideSet.of(self.granted_permissions or (), self.revoked_permissions or ())

    def subject(self) -> Subject:
        return Subject(id=self.id, role=self.role_enum, overrides=self.overrides)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
