from __future__ import annotations

from typing import Any

PERM_WILDCARD = "*"
PERM_ASSET_READ = "asset.read"
PERM_ASSET_WRITE = "asset.write"
PERM_ASSIGNMENT_READ = "assignment.read"
PERM_ASSIGNMENT_MANAGE = "assignment.manage"
PERM_ASSIGNMENT_RESPOND = "assignment.respond"
PERM_NOTIFICATION_READ = "notification.read"

ADMIN_PERMISSIONS = [PERM_WILDCARD]
STAFF_PERMISSIONS = [PERM_ASSIGNMENT_RESPOND, PERM_NOTIFICATION_READ]


def has_permission(claims: dict[str, Any], permission: str) -> bool:
    permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        return False
    return permission in permissions or PERM_WILDCARD in permissions
