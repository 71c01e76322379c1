"""Role checks shared by the slot and request services"""

import logging

from ...auth import Actor
from .errors import AuthorizationError

logger = logging.getLogger(__name__)


def require_teacher(actor: Actor, action: str) -> None:
    if not actor.is_teacher:
        logger.warning(f"🚫 {actor.role} {actor.id} attempted teacher-only action: {action}")
        raise AuthorizationError(f"Only teachers may {action}")


def require_self_or_teacher(actor: Actor, student_id: str, action: str) -> None:
    """Students act only on their own behalf; teachers may act for anyone"""
    if actor.is_teacher or actor.id == student_id:
        return
    logger.warning(f"🚫 {actor.id} attempted to {action} on behalf of {student_id}")
    raise AuthorizationError(f"Students may only {action} for themselves")
