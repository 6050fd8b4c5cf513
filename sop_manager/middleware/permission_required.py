"""
Route guards on top of ``g.actor``.

Usage:
    @user_bp.route("/users", methods=["POST"])
    @require_role("admin")
    def create_user():
        actor = current_actor()
        ...

Role checks here only gate whole endpoints (user admin, reference data).
Per-document decisions go through the capability resolver.
"""

import functools
import logging

from flask import g

from sop_manager.core.actor import ActorContext
from sop_manager.core.exceptions import AuthenticationRequired, PermissionDenied

logger = logging.getLogger(__name__)


def current_actor() -> ActorContext:
    actor = getattr(g, "actor", None)
    if actor is None:
        raise AuthenticationRequired()
    return actor


def require_auth(f):
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current_actor()
        return f(*args, **kwargs)
    return decorated


def require_role(*roles: str):
    """Decorator: the authenticated actor must hold one of ``roles``."""
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = current_actor()
            if actor.role not in roles:
                logger.warning("User %s (%s) denied on %s", actor.user_id, actor.role, f.__name__)
                raise PermissionDenied(actor.role, f.__name__)
            return f(*args, **kwargs)
        return decorated
    return decorator
