"""
Role hierarchy and resource permission table.

Roles form a total order: owner > admin > officer. The resource table is a
closed enum of resources x closed enum of actions -> frozen set of roles;
it is built once at import and never mutated.
"""
from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Union


class Role(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    OFFICER = "officer"

    @property
    def rank(self) -> int:
        return ROLE_RANKS[self]

    @classmethod
    def parse(cls, value: Union["Role", str]) -> "Role":
        """Coerce a string to a Role; raises ValueError for unknown names."""
        if isinstance(value, cls):
            return value
        return cls(value)


class Resource(str, Enum):
    CLASSES = "classes"
    EVENTS = "events"
    TEAM = "team"
    USERS = "users"
    HSK = "hsk"
    INQUIRIES = "inquiries"
    AUDIT_LOGS = "auditLogs"

    @classmethod
    def parse(cls, value: Union["Resource", str]) -> "Resource":
        if isinstance(value, cls):
            return value
        return cls(value)


class Action(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Union["Action", str]) -> "Action":
        if isinstance(value, cls):
            return value
        return cls(value)


ROLE_RANKS: Mapping[Role, int] = MappingProxyType({
    Role.OWNER: 3,
    Role.ADMIN: 2,
    Role.OFFICER: 1,
})

# Roles that can be granted through an invitation. Owner never is.
INVITABLE_ROLES = frozenset({Role.ADMIN, Role.OFFICER})

_ALL = frozenset({Role.OWNER, Role.ADMIN, Role.OFFICER})
_MANAGERS = frozenset({Role.OWNER, Role.ADMIN})
_OWNER = frozenset({Role.OWNER})

PERMISSIONS: Mapping[Resource, Mapping[Action, frozenset]] = MappingProxyType({
    Resource.CLASSES: MappingProxyType({
        Action.VIEW: _ALL,
        Action.CREATE: _ALL,
        Action.EDIT: _ALL,
        Action.DELETE: _MANAGERS,
    }),
    Resource.EVENTS: MappingProxyType({
        Action.VIEW: _ALL,
        Action.CREATE: _ALL,
        Action.EDIT: _ALL,
        Action.DELETE: _MANAGERS,
    }),
    Resource.TEAM: MappingProxyType({
        Action.VIEW: _MANAGERS,
        Action.CREATE: _MANAGERS,
        Action.EDIT: _MANAGERS,
        Action.DELETE: _MANAGERS,
    }),
    Resource.USERS: MappingProxyType({
        Action.VIEW: _MANAGERS,
        Action.CREATE: _MANAGERS,
        Action.EDIT: _MANAGERS,
        Action.DELETE: _OWNER,
    }),
    Resource.HSK: MappingProxyType({
        Action.VIEW: _ALL,
        Action.CREATE: _ALL,
        Action.EDIT: _ALL,
        Action.DELETE: _MANAGERS,
    }),
    Resource.INQUIRIES: MappingProxyType({
        Action.VIEW: _ALL,
        Action.EDIT: _ALL,
        Action.DELETE: _MANAGERS,
    }),
    Resource.AUDIT_LOGS: MappingProxyType({
        Action.VIEW: _MANAGERS,
    }),
})


def _coerce_role(value) -> Optional[Role]:
    try:
        return Role.parse(value)
    except ValueError:
        return None


def has_permission(user_role, required_role) -> bool:
    """True iff user_role ranks at or above required_role."""
    user = _coerce_role(user_role)
    required = _coerce_role(required_role)
    if user is None or required is None:
        return False
    return user.rank >= required.rank


def can_manage_role(user_role, target_role) -> bool:
    """Strict: a role never manages an equal or higher role, itself included."""
    user = _coerce_role(user_role)
    target = _coerce_role(target_role)
    if user is None or target is None:
        return False
    return user.rank > target.rank


def can_invite_role(user_role, role_to_invite) -> bool:
    """Owner may invite admin or officer; admin only officer; officer nobody."""
    user = _coerce_role(user_role)
    invitee = _coerce_role(role_to_invite)
    if user is None or invitee is None or invitee not in INVITABLE_ROLES:
        return False
    if user is Role.OWNER:
        return True
    return user is Role.ADMIN and invitee is Role.OFFICER


def allowed_roles(resource, action) -> frozenset:
    """Roles allowed to perform action on resource; empty set if none."""
    try:
        res = Resource.parse(resource)
        act = Action.parse(action)
    except ValueError:
        return frozenset()
    return PERMISSIONS.get(res, {}).get(act, frozenset())


def has_resource_permission(user_role, resource, action) -> bool:
    """Membership lookup in PERMISSIONS. Unknown names are denied."""
    role = _coerce_role(user_role)
    if role is None:
        return False
    return role in allowed_roles(resource, action)
