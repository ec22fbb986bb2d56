# Overview: Request decorators resolving the acting user and enforcing roles.

from functools import wraps
from flask import request, g, current_app

from .errors import Forbidden, Unauthenticated
from .extensions import db
from .models import User


def _resolve_actor():
    raw = request.headers.get(current_app.config["ACTOR_HEADER"], "").strip()
    if not raw.isdigit():
        return None
    user = db.session.get(User, int(raw))
    if user is None or not user.is_active:
        return None
    return user


def require_auth(f):
    """
    Require a resolved actor.

    The upstream auth layer authenticates the caller and forwards the user
    id in ACTOR_HEADER. Sets g.current_user.

    Returns 401 if the header is missing or names an unknown or
    deactivated user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = _resolve_actor()
        if user is None:
            raise Unauthenticated("Authentication required")

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """Require g.current_user.role to be one of `roles` (use after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                raise Unauthenticated("Authentication required")
            if g.current_user.role not in roles:
                raise Forbidden(
                    "Permission denied",
                    details={"required_roles": list(roles)},
                )
            return f(*args, **kwargs)

        return decorated_function
    return decorator
