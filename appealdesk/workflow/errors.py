"""Error taxonomy of the appeal workflow."""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class AppealDeskError(Exception):
    """Base class for errors reported to callers of appealdesk services."""


class ValidationError(AppealDeskError):
    """Malformed or missing input. ``errors`` maps field name to message."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        detail = "; ".join(f"{k}: {v}" for k, v in self.errors.items())
        super().__init__(f"invalid input ({detail})")


class InvalidTransition(AppealDeskError):
    """Operation attempted from a status that does not permit it."""

    def __init__(self, current, action: str, required=None, subject: str = "Appeal"):
        self.current = current
        self.action = action
        self.required = required
        cur = getattr(current, "value", current)
        if required is not None:
            req = getattr(required, "label", None) or str(getattr(required, "value", required)).capitalize()
            msg = f"{subject} must be in {req} state to {action} (current: {cur})"
        else:
            msg = f"cannot {action} {subject.lower()} in state {cur}"
        super().__init__(msg)


class Forbidden(AppealDeskError):
    """Actor lacks rights for the requested operation."""

    def __init__(self, actor_id: Any, action: str):
        self.actor_id = actor_id
        self.action = action
        super().__init__(f"user {actor_id} is not allowed to {action}")


class AppealNotFound(AppealDeskError, LookupError):
    def __init__(self, appeal_id: Any, kind: str = "appeal"):
        self.appeal_id = appeal_id
        super().__init__(f"{kind} {appeal_id} not found")


class NotificationDeliveryFailed(AppealDeskError):
    """The post-commit notify step failed.

    The transition that produced ``instruction`` is committed and stands.
    Engines return this as a warning; only the dispatcher raises it.
    """

    def __init__(self, instruction: Any, failures: Optional[List[str]] = None):
        self.instruction = instruction
        self.failures = list(failures or [])
        appeal_id = getattr(instruction, "appeal_id", None)
        trigger = getattr(getattr(instruction, "trigger_type", None), "value", None)
        detail = f": {', '.join(self.failures)}" if self.failures else ""
        super().__init__(f"donor notification for appeal {appeal_id} ({trigger}) failed to send{detail}")
