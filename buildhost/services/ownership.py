"""Namespace ownership rules."""
import logging
from typing import Tuple

from buildhost.lib.errors import AccessDeniedError, MalformedInputError
from buildhost.models.user import User

logger = logging.getLogger(__name__)


def can_access(user: User, namespace: str) -> bool:
    """Admins may access every namespace; everyone else only their own."""
    if user.is_admin:
        return True
    return user.username == namespace


def require_access(user: User, namespace: str) -> None:
    """Raise AccessDeniedError unless ``user`` may act on ``namespace``."""
    if not can_access(user, namespace):
        logger.warning("Namespace access denied: user=%s namespace=%s", user.username, namespace)
        raise AccessDeniedError()


def parse_target(target: str) -> Tuple[str, str]:
    """Split ``namespace/game`` into its two segments."""
    if not target:
        raise MalformedInputError("missing build target (need game_id or target)")

    parts = target.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedInputError("invalid target format, expected username/gamename")

    return parts[0], parts[1]
