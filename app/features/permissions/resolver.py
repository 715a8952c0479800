"""
Effective permission resolution.

The resolver works on plain data (role + override sets) and never touches the
database, so it is safe to call from any request without locking.
"""
from dataclasses import dataclass, field
from typing import Iterable

from app.features.permissions.catalog import PermissionCatalog, Role


@dataclass(frozen=True)
class OverrideSet:
    """Per-account exceptions to the role defaults."""

    granted: frozenset[str] = field(default_factory=frozenset)
    revoked: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, granted: Iterable[str] = (), revoked: Iterable[str] = ()) -> "OverrideSet":
        return cls(granted=frozenset(granted), revoked=frozenset(revoked))

    @property
    def is_empty(self) -> bool:
        return not self.granted and not self.revoked

    def to_dict(self) -> dict[str, list[str]]:
        return {"granted": sorted(self.granted), "revoked": sorted(self.revoked)}


@dataclass(frozen=True)
class Subject:
    """The parts of an account that resolution depends on."""

    id: str
    role: Role
    overrides: OverrideSet = field(default_factory=OverrideSet)


class PermissionResolver:
    def __init__(self, catalog: PermissionCatalog):
        self.catalog = catalog

    def resolve(self, subject: Subject) -> frozenset[str]:
        """
        Compute the effective permissions of a subject.

        Superadmin always gets the whole vocabulary and its overrides are
        ignored. Other roles get (defaults | granted) - revoked.
        """
        snapshot = self.catalog.snapshot
        if subject.role is Role.SUPERADMIN:
            return frozenset(snapshot.vocabulary)

        effective = set(snapshot.defaults_for(subject.role))
        effective |= subject.overrides.granted
        effective -= subject.overrides.revoked
        return frozenset(effective)

    def resolve_sorted(self, subject: Subject) -> list[str]:
        """Effective permissions in catalog order, for display."""
        effective = self.resolve(subject)
        return [p for p in self.catalog.permissions if p in effective]

    def has_permission(self, subject: Subject, permission: str) -> bool:
        return permission in self.resolve(subject)

    def has_any(self, subject: Subject, permissions: Iterable[str]) -> bool:
        effective = self.resolve(subject)
        return any(p in effective for p in permissions)
