"""
Roles and the declared permission catalog.

Roles are a closed set. ``SUPER_ADMIN`` is the top role: it bypasses every
fine-grained check and always holds all active permission codes. Every
other role gets a static default set, validated against the declared
catalog when this module is imported. A bad mapping fails the import.

Permission codes are upper-case identifiers (``EVENTS_VALIDATE``). Input
is normalised before validation and the resulting string is interned so
that hot-path comparisons are identity checks in practice.
"""
from __future__ import annotations

import re
import sys
from enum import Enum
from typing import Final, Iterable, NamedTuple, NewType

PermissionCode = NewType("PermissionCode", str)

MAX_CODE_LENGTH: Final = 100
CODE_PATTERN: Final = re.compile(r"^[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)*$")


class Role(str, Enum):
    CITIZEN = "CITIZEN"
    DELEGATION = "DELEGATION"
    LOCAL_AUTHORITY = "LOCAL_AUTHORITY"
    ACTIVITY_COORDINATOR = "ACTIVITY_COORDINATOR"
    ADMIN = "ADMIN"
    GOVERNOR = "GOVERNOR"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def is_top(self) -> bool:
        return self is TOP_ROLE

    @classmethod
    def parse(cls, value: "str | Role") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}") from None


TOP_ROLE: Final = Role.SUPER_ADMIN


def parse_permission_code(raw: str) -> PermissionCode:
    """Normalise and validate a permission code.

    ``"events.validate"``, ``"Events-Validate"`` and ``"EVENTS_VALIDATE"``
    all yield ``EVENTS_VALIDATE``. Anything else raises ValueError.
    """
    if not isinstance(raw, str):
        raise ValueError("permission code must be a string")
    normalized = raw.strip().upper().replace(".", "_").replace("-", "_")
    if not normalized or len(normalized) > MAX_CODE_LENGTH:
        raise ValueError(f"permission code must be 1..{MAX_CODE_LENGTH} characters")
    if not CODE_PATTERN.match(normalized):
        raise ValueError(f"invalid permission code: {raw!r}")
    return PermissionCode(sys.intern(normalized))


class PermissionDefinition(NamedTuple):
    code: str
    name: str
    group: str
    group_label: str


def _group(group: str, label: str, entries: Iterable[tuple[str, str]]) -> list[PermissionDefinition]:
    return [PermissionDefinition(code, name, group, label) for code, name in entries]


PERMISSION_CATALOG: Final[tuple[PermissionDefinition, ...]] = tuple(
    _group("auth", "Authentication", [
        ("AUTH_LOGIN", "Sign in"),
        ("AUTH_REGISTER", "Sign up"),
        ("AUTH_LOGOUT", "Sign out"),
        ("AUTH_RESET_PASSWORD", "Reset password"),
    ])
    + _group("users", "Users", [
        ("USERS_READ", "View users (basic)"),
        ("USERS_READ_FULL", "View users (full)"),
        ("USERS_CREATE", "Create user"),
        ("USERS_EDIT", "Edit user"),
        ("USERS_EDIT_ROLE", "Change user role"),
        ("USERS_DELETE", "Delete user (soft)"),
        ("USERS_HARD_DELETE", "Delete user permanently"),
        ("USERS_ACTIVATE", "Activate or deactivate account"),
        ("USERS_SECURITY", "View security information"),
        ("USERS_ME_READ", "View own profile"),
        ("USERS_ME_EDIT", "Edit own profile"),
    ])
    + _group("complaints", "Complaints", [
        ("COMPLAINTS_READ", "View own complaints"),
        ("COMPLAINTS_READ_ALL", "View all complaints"),
        ("COMPLAINTS_READ_ASSIGNED", "View assigned complaints"),
        ("COMPLAINTS_CREATE", "File complaint"),
        ("COMPLAINTS_EDIT", "Edit complaint"),
        ("COMPLAINTS_DELETE", "Delete complaint"),
        ("COMPLAINTS_ARCHIVE", "Archive complaint"),
        ("COMPLAINTS_ASSIGN", "Assign complaint"),
        ("COMPLAINTS_VALIDATE", "Accept or reject complaint"),
        ("COMPLAINTS_RESOLVE", "Mark complaint resolved"),
        ("COMPLAINTS_COMMENT_INTERNAL", "Add internal comment"),
    ])
    + _group("events", "Events", [
        ("EVENTS_READ", "View events"),
        ("EVENTS_READ_ALL", "View all events"),
        ("EVENTS_CREATE", "Create event"),
        ("EVENTS_EDIT", "Edit own event"),
        ("EVENTS_EDIT_ALL", "Edit any event"),
        ("EVENTS_DELETE", "Delete event"),
        ("EVENTS_VALIDATE", "Validate event"),
        ("EVENTS_FEATURE", "Feature event"),
        ("EVENTS_SUBSCRIBE", "Subscribe to event"),
        ("EVENTS_PARTICIPATE", "Participate in event"),
        ("EVENTS_REPORT", "View event report"),
    ])
    + _group("news", "News", [
        ("NEWS_READ", "Read news"),
        ("NEWS_CREATE", "Create news"),
        ("NEWS_EDIT", "Edit news"),
        ("NEWS_DELETE", "Delete news"),
        ("NEWS_PUBLISH", "Publish news"),
        ("NEWS_VALIDATE", "Validate news"),
    ])
    + _group("establishments", "Establishments", [
        ("ESTABLISHMENTS_READ", "View establishments"),
        ("ESTABLISHMENTS_CREATE", "Create establishment"),
        ("ESTABLISHMENTS_EDIT", "Edit establishment"),
        ("ESTABLISHMENTS_DELETE", "Delete establishment"),
        ("ESTABLISHMENTS_VALIDATE", "Validate establishment"),
        ("ESTABLISHMENTS_PUBLISH", "Publish establishment"),
        ("ESTABLISHMENTS_SUBSCRIBE", "Follow establishment"),
    ])
    + _group("reviews", "Reviews", [
        ("REVIEWS_READ", "Read reviews"),
        ("REVIEWS_CREATE", "Write review"),
        ("REVIEWS_EDIT", "Edit review"),
        ("REVIEWS_DELETE", "Delete review"),
        ("REVIEWS_VALIDATE", "Moderate review"),
        ("REVIEWS_REPORT", "Report review"),
    ])
    + _group("campaigns", "Campaigns", [
        ("CAMPAIGNS_READ", "View campaigns"),
        ("CAMPAIGNS_CREATE", "Create campaign"),
        ("CAMPAIGNS_EDIT", "Edit campaign"),
        ("CAMPAIGNS_DELETE", "Delete campaign"),
        ("CAMPAIGNS_ACTIVATE", "Manage campaign status"),
        ("CAMPAIGNS_PARTICIPATE", "Join campaign"),
    ])
    + _group("programs", "Activity programs", [
        ("PROGRAMS_READ", "View programs"),
        ("PROGRAMS_CREATE", "Create program"),
        ("PROGRAMS_EDIT", "Edit program"),
        ("PROGRAMS_DELETE", "Delete program"),
        ("PROGRAMS_VALIDATE", "Validate program"),
        ("PROGRAMS_REPORT", "File activity report"),
    ])
    + _group("suggestions", "Suggestions", [
        ("SUGGESTIONS_CREATE", "Submit suggestion"),
        ("SUGGESTIONS_READ_OWN", "View own suggestions"),
    ])
    + _group("stats", "Statistics & reports", [
        ("STATS_VIEW_GLOBAL", "View global statistics"),
        ("STATS_VIEW_SECTOR", "View sector statistics"),
        ("STATS_VIEW_MUNICIPALITY", "View municipality statistics"),
        ("STATS_VIEW_ESTABLISHMENT", "View establishment statistics"),
        ("REPORTS_EXPORT", "Export reports"),
    ])
    + _group("map", "Map", [
        ("MAP_VIEW", "View map"),
        ("MAP_VIEW_FULL", "View advanced map"),
    ])
    + _group("system", "System & administration", [
        ("SYSTEM_SETTINGS_READ", "View settings"),
        ("SYSTEM_SETTINGS_EDIT", "Edit settings"),
        ("SYSTEM_LOGS_VIEW", "View system logs"),
        ("SYSTEM_BACKUP", "Manage backups"),
        ("SYSTEM_RESTORE", "Restore system"),
        ("PERMISSIONS_MANAGE", "Manage permissions"),
        ("MUNICIPALITIES_MANAGE", "Manage municipalities"),
    ])
)

DECLARED_CODES: Final[frozenset[str]] = frozenset(item.code for item in PERMISSION_CATALOG)

_BASE: Final = (
    "AUTH_LOGIN",
    "AUTH_LOGOUT",
    "AUTH_RESET_PASSWORD",
    "USERS_ME_READ",
    "USERS_ME_EDIT",
)
_STAFF_READ: Final = (
    "MAP_VIEW",
    "NEWS_READ",
    "CAMPAIGNS_READ",
    "EVENTS_READ",
    "ESTABLISHMENTS_READ",
)

ROLE_DEFAULT_PERMISSIONS: Final[dict[Role, frozenset[str]]] = {
    Role.CITIZEN: frozenset({
        *_BASE,
        "COMPLAINTS_CREATE", "COMPLAINTS_READ", "COMPLAINTS_EDIT", "COMPLAINTS_DELETE",
        "ESTABLISHMENTS_READ", "ESTABLISHMENTS_SUBSCRIBE",
        "EVENTS_READ", "EVENTS_SUBSCRIBE", "EVENTS_PARTICIPATE",
        "REVIEWS_CREATE", "REVIEWS_READ", "REVIEWS_EDIT", "REVIEWS_DELETE", "REVIEWS_REPORT",
        "NEWS_READ",
        "CAMPAIGNS_READ", "CAMPAIGNS_PARTICIPATE",
        "SUGGESTIONS_CREATE", "SUGGESTIONS_READ_OWN",
        "MAP_VIEW",
    }),
    Role.DELEGATION: frozenset({
        *_BASE,
        *_STAFF_READ,
        "EVENTS_CREATE", "EVENTS_EDIT", "EVENTS_DELETE", "EVENTS_REPORT",
        "NEWS_CREATE", "NEWS_EDIT", "NEWS_DELETE", "NEWS_PUBLISH",
        "CAMPAIGNS_CREATE", "CAMPAIGNS_EDIT", "CAMPAIGNS_ACTIVATE",
        "STATS_VIEW_SECTOR", "STATS_VIEW_ESTABLISHMENT",
    }),
    Role.LOCAL_AUTHORITY: frozenset({
        *_BASE,
        *_STAFF_READ,
        "COMPLAINTS_READ_ASSIGNED", "COMPLAINTS_RESOLVE", "COMPLAINTS_COMMENT_INTERNAL",
        "EVENTS_REPORT",
        "STATS_VIEW_MUNICIPALITY", "STATS_VIEW_ESTABLISHMENT",
    }),
    Role.ACTIVITY_COORDINATOR: frozenset({
        *_BASE,
        *_STAFF_READ,
        "PROGRAMS_READ", "PROGRAMS_CREATE", "PROGRAMS_EDIT", "PROGRAMS_DELETE", "PROGRAMS_REPORT",
        "STATS_VIEW_ESTABLISHMENT",
    }),
    Role.ADMIN: frozenset({
        *_BASE,
        *_STAFF_READ,
        "USERS_READ", "USERS_READ_FULL", "USERS_CREATE", "USERS_EDIT", "USERS_EDIT_ROLE",
        "USERS_ACTIVATE",
        "COMPLAINTS_READ_ALL", "COMPLAINTS_VALIDATE", "COMPLAINTS_ASSIGN", "COMPLAINTS_ARCHIVE",
        "EVENTS_READ_ALL", "EVENTS_VALIDATE", "EVENTS_DELETE", "EVENTS_FEATURE",
        "EVENTS_EDIT_ALL", "EVENTS_REPORT",
        "NEWS_VALIDATE", "NEWS_PUBLISH", "NEWS_DELETE",
        "ESTABLISHMENTS_CREATE", "ESTABLISHMENTS_EDIT", "ESTABLISHMENTS_VALIDATE",
        "ESTABLISHMENTS_PUBLISH", "ESTABLISHMENTS_DELETE",
        "REVIEWS_VALIDATE", "REVIEWS_DELETE",
        "CAMPAIGNS_ACTIVATE",
        "PROGRAMS_VALIDATE",
        "STATS_VIEW_GLOBAL", "STATS_VIEW_SECTOR", "STATS_VIEW_MUNICIPALITY", "REPORTS_EXPORT",
        "MUNICIPALITIES_MANAGE",
        "SYSTEM_LOGS_VIEW",
    }),
    Role.GOVERNOR: frozenset({
        *_BASE,
        "USERS_READ",
        "COMPLAINTS_READ_ALL",
        "EVENTS_READ_ALL",
        "NEWS_READ",
        "ESTABLISHMENTS_READ",
        "CAMPAIGNS_READ",
        "PROGRAMS_READ",
        "STATS_VIEW_GLOBAL", "STATS_VIEW_SECTOR", "STATS_VIEW_MUNICIPALITY",
        "STATS_VIEW_ESTABLISHMENT",
        "REPORTS_EXPORT",
        "MAP_VIEW_FULL",
    }),
}


def role_defaults(role: Role) -> frozenset[str]:
    """Static default codes for ``role``; the top role has none, it bypasses."""
    return ROLE_DEFAULT_PERMISSIONS.get(role, frozenset())


def _validate_catalog() -> None:
    seen: set[str] = set()
    for definition in PERMISSION_CATALOG:
        if parse_permission_code(definition.code) != definition.code:
            raise ValueError(f"catalog code is not canonical: {definition.code}")
        if definition.code in seen:
            raise ValueError(f"duplicate catalog code: {definition.code}")
        seen.add(definition.code)

    if TOP_ROLE in ROLE_DEFAULT_PERMISSIONS:
        raise ValueError("the top role must not carry default permissions")
    for role in Role:
        if role is not TOP_ROLE and role not in ROLE_DEFAULT_PERMISSIONS:
            raise ValueError(f"role {role.value} has no default permission set")
    for role, codes in ROLE_DEFAULT_PERMISSIONS.items():
        unknown = codes - DECLARED_CODES
        if unknown:
            raise ValueError(f"role {role.value} references unknown codes: {sorted(unknown)}")


_validate_catalog()
