"""
``require_user`` — view decorator that resolves the caller.

Loads the User behind ``g.jwt_user_id`` into ``g.current_user``. Missing
or unknown identities get 401; inactive accounts get 403.
"""

from functools import wraps

from flask import g

from refportal.models import db
from refportal.models.auth import User
from refportal.utils.errors import E, api_error


def require_user(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        user_id = getattr(g, "jwt_user_id", None)
        if user_id is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        user = db.session.get(User, user_id)
        if user is None:
            return api_error(E.UNAUTHORIZED, "Unknown user")
        if user.status != "active":
            return api_error(E.FORBIDDEN, "Account is not active")
        g.current_user = user
        return fn(*args, **kwargs)

    return wrapper
