"""
Permission coverage statistics for single accounts and the whole system.
"""
from typing import Iterable

from app.features.permissions.catalog import PERMISSION_CATEGORIES, Role
from app.features.permissions.resolver import PermissionResolver, Subject


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0


def account_statistics(resolver: PermissionResolver, subject: Subject) -> dict:
    """Totals and per-category coverage of one account's effective permissions."""
    vocabulary = resolver.catalog.permissions
    effective = resolver.resolve(subject)
    by_category = {}
    for category in PERMISSION_CATEGORIES:
        held = [p for p in category.permissions if p in effective]
        by_category[category.key] = {
            "name": category.name,
            "total": len(category.permissions),
            "granted": len(held),
            "coverage": _percent(len(held), len(category.permissions)),
            "permissions": held,
        }
    return {
        "total": len(vocabulary),
        "granted": len(effective),
        "available": len(vocabulary) - len(effective),
        "coverage": _percent(len(effective), len(vocabulary)),
        "by_category": by_category,
    }


def system_statistics(resolver: PermissionResolver, subjects: Iterable[Subject]) -> dict:
    """Per-role averages and per-permission usage across all accounts."""
    vocabulary = resolver.catalog.permissions
    by_role = {role.value: {"count": 0, "total_permissions": 0, "average_permissions": 0} for role in Role}
    usage = {permission: 0 for permission in vocabulary}
    total_users = 0
    total_permissions = 0

    for subject in subjects:
        effective = resolver.resolve(subject)
        total_users += 1
        total_permissions += len(effective)
        bucket = by_role[subject.role.value]
        bucket["count"] += 1
        bucket["total_permissions"] += len(effective)
        for permission in effective:
            if permission in usage:
                usage[permission] += 1

    for bucket in by_role.values():
        if bucket["count"]:
            bucket["average_permissions"] = round(bucket["total_permissions"] / bucket["count"])

    return {
        "total_users": total_users,
        "by_role": by_role,
        "permission_usage": {
            permission: {"count": count, "percentage": _percent(count, total_users)}
            for permission, count in usage.items()
        },
        "average_permissions": round(total_permissions / total_users) if total_users else 0,
    }
