"""Role based permission guard used by appealdesk services.

Actions are ``"<area>:<verb>"`` strings such as ``"appeals:create"`` or
``"approvals:approve"``. The table below is the single place that decides
which role may do what; the workflow engine additionally receives an
:class:`ApprovalPolicy` so the set of approver roles can be configured per
deployment instead of being hard-coded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional

from appealdesk import settings


class Role(str, Enum):
    """User roles used for permission checks."""

    SUPER_ADMIN = "super_admin"
    ITC_ADMIN = "itc_admin"
    MISSION_AUTHORITY = "mission_authority"
    ACCOUNTS_USER = "accounts_user"
    VIEWER = "viewer"


PERMISSIONS: Dict[Role, Dict[str, FrozenSet[str]]] = {
    Role.ITC_ADMIN: {
        "appeals": frozenset({"create", "view", "edit"}),
        "approvals": frozenset({"view"}),
        "communication": frozenset({"send", "view"}),
        "donations": frozenset({"record", "view"}),
        "utilization": frozenset({"record", "view"}),
        "assets": frozenset({"link", "view"}),
        "beneficiaries": frozenset({"add", "view"}),
        "reports": frozenset({"generate", "export", "view"}),
        "settings": frozenset({"view"}),
    },
    Role.MISSION_AUTHORITY: {
        "appeals": frozenset({"view"}),
        "approvals": frozenset({"approve", "reject", "view"}),
        "reports": frozenset({"view"}),
    },
    Role.ACCOUNTS_USER: {
        "donations": frozenset({"record", "view"}),
        "utilization": frozenset({"record", "view"}),
        "assets": frozenset({"link", "view"}),
        "reports": frozenset({"view"}),
    },
    Role.VIEWER: {
        "appeals": frozenset({"view"}),
        "donations": frozenset({"view"}),
        "utilization": frozenset({"view"}),
        "assets": frozenset({"view"}),
        "beneficiaries": frozenset({"view"}),
        "reports": frozenset({"view"}),
    },
}


def parse_role(value) -> Optional[Role]:
    """Return :class:`Role` for ``value`` or ``None`` if it is not a known role."""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def can(role: Role, action: str) -> bool:
    """Return ``True`` if a user with ``role`` can perform ``action``.

    Parameters
    ----------
    role:
        Role of the user. ``super_admin`` bypasses all checks.
    action:
        ``"<area>:<verb>"``, e.g. ``"donations:record"``. Malformed actions
        are always denied.
    """

    role = parse_role(role)
    if role is None:
        return False
    if role == Role.SUPER_ADMIN:
        return True
    area, sep, verb = action.partition(":")
    if not sep:
        return False
    return verb in PERMISSIONS.get(role, {}).get(area, frozenset())


def _roles(values: Iterable) -> FrozenSet[Role]:
    roles = set()
    for v in values:
        r = parse_role(v)
        if r is None:
            raise ValueError(f"unknown role: {v!r}")
        roles.add(r)
    return frozenset(roles)


@dataclass(frozen=True)
class ApprovalPolicy:
    """Who may decide on submitted appeals and who may act for a creator.

    Attributes
    ----------
    approver_roles:
        Roles allowed to approve or reject a submitted appeal.
    override_roles:
        Roles allowed to edit, submit or delete an appeal they did not create.
    """

    approver_roles: FrozenSet[Role] = field(default_factory=frozenset)
    override_roles: FrozenSet[Role] = field(default_factory=frozenset)

    @classmethod
    def from_names(cls, approver_roles: Iterable, override_roles: Iterable = ()) -> "ApprovalPolicy":
        return cls(_roles(approver_roles), _roles(override_roles))

    @classmethod
    def from_settings(cls) -> "ApprovalPolicy":
        return cls.from_names(settings.APPROVER_ROLES, settings.OVERRIDE_ROLES)

    def may_decide(self, role) -> bool:
        return parse_role(role) in self.approver_roles

    def may_override(self, role) -> bool:
        return parse_role(role) in self.override_roles
