"""Appeal status enumeration and the transition table."""
from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from .errors import ValidationError


class AppealStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @classmethod
    def parse(cls, value) -> "AppealStatus":
        """Normalise ``value`` read from an API payload or a database row.

        Accepts members, case-insensitive names and the legacy ``pending``
        alias for SUBMITTED. Anything else is a :class:`ValidationError`.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper()
            key = _ALIASES.get(key, key)
            if key in cls.__members__:
                return cls[key]
        raise ValidationError({"status": f"unknown appeal status: {value!r}"})

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self]


_ALIASES = {"PENDING": "SUBMITTED"}

# action -> (source, target); every allowed move is listed here
ACTIONS: Dict[str, tuple] = {
    "submit": (AppealStatus.DRAFT, AppealStatus.SUBMITTED),
    "approve": (AppealStatus.SUBMITTED, AppealStatus.APPROVED),
    "reject": (AppealStatus.SUBMITTED, AppealStatus.REJECTED),
}

TRANSITIONS: Dict[AppealStatus, FrozenSet[AppealStatus]] = {
    AppealStatus.DRAFT: frozenset({AppealStatus.SUBMITTED}),
    AppealStatus.SUBMITTED: frozenset({AppealStatus.APPROVED, AppealStatus.REJECTED}),
    AppealStatus.APPROVED: frozenset(),
    AppealStatus.REJECTED: frozenset(),
}


def can_transition(src, dst) -> bool:
    return AppealStatus.parse(dst) in TRANSITIONS[AppealStatus.parse(src)]


def required_status(action: str) -> AppealStatus:
    """Status an appeal must be in for ``action``.

    Editing, attaching documents and deleting share the DRAFT requirement
    of ``submit``.
    """
    if action in ("update", "add_document", "delete"):
        return AppealStatus.DRAFT
    return ACTIONS[action][0]
