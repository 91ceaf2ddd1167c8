"""Actor lookup shared by the services."""
import logging

from sqlalchemy.orm import Session

from appealdesk.permissions import can
from .errors import Forbidden
from .models import User

log = logging.getLogger(__name__)


def load_actor(session: Session, actor_id) -> User:
    """Return the active user ``actor_id`` or raise :class:`Forbidden`."""
    user = session.get(User, actor_id) if actor_id is not None else None
    if user is None or not user.is_active:
        log.warning("unknown or inactive actor %s", actor_id)
        raise Forbidden(actor_id, "act")
    return user


def require(session: Session, actor_id, action: str) -> User:
    """Return the actor if their role allows ``action`` (``"area:verb"``)."""
    user = load_actor(session, actor_id)
    if not can(user.role, action):
        log.warning("user=%s role=%s denied %s", user.id, user.role, action)
        raise Forbidden(actor_id, action)
    return user
