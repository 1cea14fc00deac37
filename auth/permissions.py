"""
auth/permissions.py -- Roles, permissions, and the static role -> permission table.

Every authorization decision in Atlas goes through PERMISSION_MATRIX. Handlers
never compare role names; they declare the permission they need and the guard
dependencies in auth/dependencies.py ask the matrix.

Invariants:
  - Every Role has an explicit entry (possibly empty). PermissionMatrix raises
    at construction if one is missing, so a bad table fails at import time.
  - The table is frozen: frozenset values inside a MappingProxyType. There is
    no mutation API.
  - Roles are not ranked. ADMIN is not "SUPER_ADMIN minus something" -- its
    set is listed out in full.
  - An unknown role string resolves to the empty permission set (fail closed).

Layer rule: no imports from api/. Pure data, no I/O.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auth.models import AuthContext


class Role(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    ADMIN = "ADMIN"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    MEDIA_BUYER = "MEDIA_BUYER"
    SALES_AGENT = "SALES_AGENT"
    ANALYST = "ANALYST"
    VIEWER = "VIEWER"


class Permission(str, Enum):
    # User management
    MANAGE_USERS = "manage_users"
    VIEW_USERS = "view_users"
    ASSIGN_ROLES = "assign_roles"

    # Media reports
    CREATE_MEDIA_REPORTS = "create_media_reports"
    VIEW_MEDIA_REPORTS = "view_media_reports"
    EDIT_MEDIA_REPORTS = "edit_media_reports"
    DELETE_MEDIA_REPORTS = "delete_media_reports"
    VIEW_ALL_MEDIA_REPORTS = "view_all_media_reports"

    # Sales reports
    CREATE_SALES_REPORTS = "create_sales_reports"
    VIEW_SALES_REPORTS = "view_sales_reports"
    EDIT_SALES_REPORTS = "edit_sales_reports"
    DELETE_SALES_REPORTS = "delete_sales_reports"
    VIEW_ALL_SALES_REPORTS = "view_all_sales_reports"

    # Analytics
    VIEW_ANALYTICS = "view_analytics"
    VIEW_DETAILED_ANALYTICS = "view_detailed_analytics"
    VIEW_FINANCIAL_METRICS = "view_financial_metrics"
    EXPORT_ANALYTICS = "export_analytics"
    VIEW_ALL_BRANCHES_ANALYTICS = "view_all_branches_analytics"

    # System administration
    MANAGE_SYSTEM_SETTINGS = "manage_system_settings"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_BRANCHES = "manage_branches"
    MANAGE_AGENTS = "manage_agents"

    # Data management
    IMPORT_DATA = "import_data"
    EXPORT_DATA = "export_data"
    BULK_OPERATIONS = "bulk_operations"

    # Branch-scoped
    MANAGE_BRANCH_USERS = "manage_branch_users"
    VIEW_BRANCH_ANALYTICS = "view_branch_analytics"
    MANAGE_BRANCH_AGENTS = "manage_branch_agents"


def parse_role(value: str | Role | None) -> Role | None:
    """Map a stored role string to Role, or None if it is not a known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


class PermissionMatrix:
    """Immutable role -> permission-set lookup.

    Built once at import time (PERMISSION_MATRIX below) and shared by every
    request. Reads need no locking because nothing can write.
    """

    def __init__(self, table: Mapping[Role, Iterable[Permission]]) -> None:
        missing = [role.value for role in Role if role not in table]
        if missing:
            raise ValueError(f"PermissionMatrix has no entry for role(s): {', '.join(missing)}")
        unknown = [str(key) for key in table if not isinstance(key, Role)]
        if unknown:
            raise ValueError(f"PermissionMatrix has entries for unknown role(s): {', '.join(unknown)}")
        self._table: Mapping[Role, frozenset[Permission]] = MappingProxyType(
            {role: frozenset(Permission(p) for p in perms) for role, perms in table.items()}
        )

    def permissions_for(self, role: str | Role | None) -> frozenset[Permission]:
        """Return the permission set for role. Unknown roles get the empty set."""
        parsed = parse_role(role)
        if parsed is None:
            return frozenset()
        return self._table[parsed]

    def has_permission(self, role: str | Role | None, permission: Permission) -> bool:
        return permission in self.permissions_for(role)

    def has_all(self, role: str | Role | None, permissions: Iterable[Permission]) -> bool:
        granted = self.permissions_for(role)
        return all(p in granted for p in permissions)

    def has_any(self, role: str | Role | None, permissions: Iterable[Permission]) -> bool:
        granted = self.permissions_for(role)
        return any(p in granted for p in permissions)


_MEDIA_REPORTS = (
    Permission.CREATE_MEDIA_REPORTS,
    Permission.VIEW_MEDIA_REPORTS,
    Permission.EDIT_MEDIA_REPORTS,
    Permission.DELETE_MEDIA_REPORTS,
)
_SALES_REPORTS = (
    Permission.CREATE_SALES_REPORTS,
    Permission.VIEW_SALES_REPORTS,
    Permission.EDIT_SALES_REPORTS,
    Permission.DELETE_SALES_REPORTS,
)

PERMISSION_MATRIX = PermissionMatrix(
    {
        # SUPER_ADMIN holds the full catalogue. Listed via the enum so a new
        # permission is granted here without a second edit.
        Role.SUPER_ADMIN: tuple(Permission),
        # ADMIN sees all branches but cannot restructure them or touch system settings.
        Role.ADMIN: (
            Permission.MANAGE_USERS,
            Permission.VIEW_USERS,
            Permission.ASSIGN_ROLES,
            *_MEDIA_REPORTS,
            Permission.VIEW_ALL_MEDIA_REPORTS,
            *_SALES_REPORTS,
            Permission.VIEW_ALL_SALES_REPORTS,
            Permission.VIEW_ANALYTICS,
            Permission.VIEW_DETAILED_ANALYTICS,
            Permission.VIEW_FINANCIAL_METRICS,
            Permission.EXPORT_ANALYTICS,
            Permission.VIEW_ALL_BRANCHES_ANALYTICS,
            Permission.VIEW_AUDIT_LOGS,
            Permission.MANAGE_AGENTS,
            Permission.IMPORT_DATA,
            Permission.EXPORT_DATA,
            Permission.BULK_OPERATIONS,
        ),
        Role.BRANCH_MANAGER: (
            *_MEDIA_REPORTS,
            *_SALES_REPORTS,
            Permission.VIEW_ANALYTICS,
            Permission.VIEW_DETAILED_ANALYTICS,
            Permission.EXPORT_ANALYTICS,
            Permission.VIEW_BRANCH_ANALYTICS,
            Permission.MANAGE_BRANCH_USERS,
            Permission.MANAGE_BRANCH_AGENTS,
            Permission.EXPORT_DATA,
        ),
        # Media buyers only ever see their own records (see data_filters()).
        Role.MEDIA_BUYER: (
            Permission.CREATE_MEDIA_REPORTS,
            Permission.VIEW_MEDIA_REPORTS,
            Permission.EDIT_MEDIA_REPORTS,
            Permission.CREATE_SALES_REPORTS,
            Permission.VIEW_SALES_REPORTS,
            Permission.EDIT_SALES_REPORTS,
            Permission.VIEW_ANALYTICS,
            Permission.EXPORT_DATA,
        ),
        Role.SALES_AGENT: (
            Permission.CREATE_SALES_REPORTS,
            Permission.VIEW_SALES_REPORTS,
            Permission.EDIT_SALES_REPORTS,
            Permission.VIEW_ANALYTICS,
        ),
        Role.ANALYST: (
            Permission.VIEW_MEDIA_REPORTS,
            Permission.VIEW_SALES_REPORTS,
            Permission.VIEW_ANALYTICS,
            Permission.VIEW_DETAILED_ANALYTICS,
            Permission.VIEW_FINANCIAL_METRICS,
            Permission.EXPORT_ANALYTICS,
            Permission.EXPORT_DATA,
        ),
        Role.VIEWER: (Permission.VIEW_ANALYTICS,),
    }
)


# ---------------------------------------------------------------------------
# Branch scoping and role assignment -- expressed through permissions only
# ---------------------------------------------------------------------------


def can_access_branch(identity: AuthContext, branch_id: str) -> bool:
    """Return True if identity may read data belonging to branch_id."""
    if PERMISSION_MATRIX.has_permission(identity.role, Permission.VIEW_ALL_BRANCHES_ANALYTICS):
        return True
    return identity.branch_id is not None and identity.branch_id == branch_id


def data_filters(identity: AuthContext) -> dict:
    """Describe how list queries must be narrowed for identity.

    Returns {"branch_id": str | None, "restrict_to_own": bool, "user_id": str}.
    All-branch readers are unrestricted, branch readers are pinned to their
    branch, everyone else only sees records they created.
    """
    if PERMISSION_MATRIX.has_permission(identity.role, Permission.VIEW_ALL_BRANCHES_ANALYTICS):
        return {"branch_id": None, "restrict_to_own": False, "user_id": identity.id}
    if PERMISSION_MATRIX.has_permission(identity.role, Permission.VIEW_BRANCH_ANALYTICS) and identity.branch_id:
        return {"branch_id": identity.branch_id, "restrict_to_own": False, "user_id": identity.id}
    return {"branch_id": None, "restrict_to_own": True, "user_id": identity.id}


def validate_role_assignment(
    assigner_role: str | Role,
    target_role: Role,
    target_branch_id: str | None = None,
) -> str | None:
    """Check whether assigner_role may create a user with target_role.

    Returns None when allowed, otherwise a human-readable reason. Holders of
    every permission (SUPER_ADMIN today) may assign anything; other holders of
    ASSIGN_ROLES may only create branchless media buyers.
    """
    if not PERMISSION_MATRIX.has_permission(assigner_role, Permission.ASSIGN_ROLES):
        return "Insufficient permissions to assign roles"
    if PERMISSION_MATRIX.has_all(assigner_role, Permission):
        return None
    if target_role is not Role.MEDIA_BUYER:
        return "Only the Media Buyer role may be assigned"
    if target_branch_id:
        return "Media buyers should not be assigned to specific branches"
    return None
