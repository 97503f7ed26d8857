import logging
from functools import wraps
from typing import Optional

from flask import current_app, g, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from security import session as session_manager
from security.session import SessionContext
from utils.errors import AuthError, MissingToken, PasswordChangeRequired
from utils.request_meta import client_ip, user_agent

logger = logging.getLogger(__name__)

# endpoints that answer even when the session store is unreachable
STORE_TOLERANT_ENDPOINTS = {"auth.logout"}


def extract_access_token() -> Optional[str]:
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "admin_token")
    token = request.cookies.get(cookie_name)
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def load_current_context():
    """
    Authenticates the request once. The outcome is kept for the decorators:
    a SessionContext on success, the AuthError otherwise.
    """
    g.auth = None
    g.auth_error = None

    token = extract_access_token()
    if not token:
        return
    try:
        g.auth = session_manager.validate(token, ip=client_ip(), user_agent=user_agent())
    except AuthError as exc:
        g.auth_error = exc
    except SQLAlchemyError:
        if request.endpoint not in STORE_TOLERANT_ENDPOINTS:
            raise
        db.session.rollback()
        logger.warning("Session lookup failed on %s; continuing unauthenticated", request.endpoint, exc_info=True)


def current_context() -> Optional[SessionContext]:
    return getattr(g, "auth", None)


def login_required(fn=None, *, allow_password_change: bool = False):
    """
    Passes the SessionContext to the view as its first argument.

    Usage: @login_required or @login_required(allow_password_change=True)
    """
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            ctx = current_context()
            if ctx is None:
                raise getattr(g, "auth_error", None) or MissingToken()
            if ctx.must_change_password and not allow_password_change:
                raise PasswordChangeRequired()
            return view(ctx, *args, **kwargs)
        return wrapper

    if fn is not None:
        return decorator(fn)
    return decorator
