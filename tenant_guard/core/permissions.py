# tenant_guard/core/permissions.py
from typing import Iterable

from tenant_guard.core.roles import Role

CROSS_DEPARTMENT_ACCESS = "cross_department_access"
SECURITY_VIEW = "security:view"
SECURITY_MANAGE = "security:manage"

# Rôles autorisés à consulter et piloter la sécurité d'une institution
SECURITY_ADMIN_ROLES = {Role.SYSTEM_ADMIN, Role.INSTITUTION_ADMIN}


def has_permission(permissions: Iterable[str], permission: str) -> bool:
    """Vérifie si un ensemble de permissions contient une permission (ou "*")"""
    perms = set(permissions)
    if "*" in perms or permission in perms:
        return True

    # Permissions de module (ex: "security:*")
    module = permission.split(":")[0] + ":*"
    return module in perms


def can_manage_security(role: Role, permissions: Iterable[str]) -> bool:
    return role in SECURITY_ADMIN_ROLES or has_permission(permissions, SECURITY_MANAGE)


def can_view_security(role: Role, permissions: Iterable[str]) -> bool:
    return can_manage_security(role, permissions) or has_permission(permissions, SECURITY_VIEW)
