"""
Double-submit CSRF protection.

The token is sent as a readable cookie and in a response header; mutating
requests must echo it in the X-CSRF-Token header. A server-side record
(token digest, owning session, expiry) stops a forged cookie alone from
passing.

A token is not invalidated after a rejected comparison; it simply expires on
its own TTL.
"""
import hmac
import logging
import secrets
from datetime import timedelta

from flask import current_app, request
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.csrf_token import CSRFToken
from security.tokens import hash_token
from utils import clock
from utils.audit import log_event

logger = logging.getLogger(__name__)

ANONYMOUS_SESSION = "anonymous"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def issue(session_id: str = None) -> str:
    token = secrets.token_hex(32)
    now = clock.utcnow()
    ttl = current_app.config.get("CSRF_TOKEN_TTL_SECONDS", 3600)
    db.session.add(CSRFToken(
        token_hash=hash_token(token),
        session_key=session_id or ANONYMOUS_SESSION,
        created_at=now,
        expires_at=now + timedelta(seconds=ttl),
    ))
    db.session.commit()
    return token


def verify(cookie_token: str, header_token: str, session_id: str = None) -> bool:
    if not cookie_token or not header_token:
        return False
    if not hmac.compare_digest(cookie_token.encode("utf-8"), header_token.encode("utf-8")):
        return False

    row = (
        CSRFToken.query
        .filter_by(token_hash=hash_token(header_token), session_key=session_id or ANONYMOUS_SESSION)
        .first()
    )
    return bool(row and row.expires_at > clock.utcnow())


def set_csrf_cookie(resp, token: str):
    resp.set_cookie(
        current_app.config.get("CSRF_COOKIE_NAME", "csrf-token"),
        token,
        httponly=False,  # must be readable by client JS
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        max_age=current_app.config.get("CSRF_COOKIE_MAX_AGE_SECONDS", 24 * 60 * 60),
        path="/",
    )
    resp.headers[current_app.config.get("CSRF_HEADER_NAME", "X-CSRF-Token")] = token
    return resp


def issue_csrf_token(resp, session_id: str = None):
    return set_csrf_cookie(resp, issue(session_id))


def require_csrf(session_id: str = None, account_id: int = None) -> bool:
    """
    Checks the current request. Safe methods always pass. A failure is
    recorded as a forgery attempt; a store error fails closed.
    """
    if request.method in SAFE_METHODS:
        return True

    cookie_token = request.cookies.get(current_app.config.get("CSRF_COOKIE_NAME", "csrf-token"))
    header_token = request.headers.get(current_app.config.get("CSRF_HEADER_NAME", "X-CSRF-Token"))

    try:
        ok = verify(cookie_token, header_token, session_id)
    except SQLAlchemyError:
        db.session.rollback()
        logger.error("CSRF verification could not reach the store", exc_info=True)
        ok = False

    if not ok:
        logger.warning("CSRF validation failed for %s %s", request.method, request.path)
        log_event(
            "CSRF_ATTACK_ATTEMPT",
            account_id=account_id,
            success=False,
            severity="high",
            metadata={
                "endpoint": request.path,
                "session_id": session_id or ANONYMOUS_SESSION,
                "header_present": bool(header_token),
                "cookie_present": bool(cookie_token),
            },
        )
    return ok
