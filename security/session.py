"""
Token/session manager.

A login issues a signed access token and an opaque refresh token, both bound
to one Session row. The Session row is authoritative: a correctly signed
access token is rejected once its session is inactive or expired, which is
what makes logout and remote revocation immediate.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, NamedTuple, Optional

from flask import current_app
from sqlalchemy import update

from models import db
from models.account import Account
from models.session import Session
from security.lockout import is_locked
from security.tokens import (
    create_access_token,
    decode_access_token,
    generate_refresh_token,
    hash_token,
)
from utils import clock
from utils.audit import log_event
from utils.errors import (
    AccountInactive,
    AccountLocked,
    AuthError,
    InvalidSession,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionContext:
    """Authenticated request context, produced once per request."""

    account_id: int
    email: str
    role: str
    must_change_password: bool
    session_id: str
    access_token: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    expires_at: Optional[datetime] = None


class IssuedTokens(NamedTuple):
    access_token: str
    refresh_token: str
    session_id: str
    expires_at: datetime


def _lifetime() -> timedelta:
    return timedelta(seconds=current_app.config.get("SESSION_LIFETIME_SECONDS", 24 * 60 * 60))


def _is_usable(sess: Session, now: datetime) -> bool:
    return bool(sess and sess.is_active and sess.expires_at > now)


def issue(account: Account, ip: str, user_agent: str) -> IssuedTokens:
    now = clock.utcnow()
    expires_at = now + _lifetime()

    access_token = create_access_token(account, expires_at, now=now)
    refresh_token = generate_refresh_token()

    row = Session(
        account_id=account.id,
        token_hash=hash_token(access_token),
        refresh_token_hash=hash_token(refresh_token),
        ip=ip,
        user_agent=(user_agent or "")[:255],
        is_active=True,
        created_at=now,
        last_activity_at=now,
        expires_at=expires_at,
    )
    db.session.add(row)
    db.session.commit()
    return IssuedTokens(access_token, refresh_token, row.id, expires_at)


def validate(access_token: str, ip: str = None, user_agent: str = None) -> SessionContext:
    """
    Signature, issuer and audience first, then the backing session. Both
    active and expiry are re-checked on every call.
    """
    try:
        claims = decode_access_token(access_token)
    except AuthError as exc:
        log_event("AUTH_INVALID_TOKEN", success=False, severity="medium", error=exc.code, ip=ip, agent=user_agent)
        raise

    now = clock.utcnow()
    sess = Session.query.filter_by(token_hash=hash_token(access_token)).first()
    if not _is_usable(sess, now) or str(sess.account_id) != claims["sub"]:
        log_event(
            "AUTH_INVALID_SESSION",
            account_id=sess.account_id if sess else None,
            success=False,
            severity="medium",
            error="Session not found, inactive or expired",
            ip=ip,
            agent=user_agent,
        )
        raise InvalidSession()

    account = db.session.get(Account, sess.account_id)
    if account is None:
        raise InvalidSession()
    if not account.is_active:
        log_event("AUTH_ACCOUNT_INACTIVE", account_id=account.id, success=False, ip=ip, agent=user_agent)
        raise AccountInactive()
    if is_locked(account, now):
        log_event("AUTH_ACCOUNT_LOCKED", account_id=account.id, success=False, ip=ip, agent=user_agent)
        raise AccountLocked()

    previous_ip = sess.ip
    sess.last_activity_at = now
    if ip:
        sess.ip = ip
    db.session.commit()

    if ip and previous_ip and previous_ip != ip:
        # IP churn is recorded, the request still succeeds
        log_event(
            "SESSION_IP_CHANGED",
            account_id=account.id,
            severity="medium",
            metadata={"session_id": sess.id, "previous_ip": previous_ip},
            ip=ip,
            agent=user_agent,
        )

    return SessionContext(
        account_id=account.id,
        email=account.email,
        role=account.role,
        must_change_password=bool(account.must_change_password),
        session_id=sess.id,
        access_token=access_token,
        ip=ip,
        user_agent=user_agent,
        expires_at=sess.expires_at,
    )


def refresh(refresh_token: str) -> Optional[IssuedTokens]:
    """
    Exchanges a refresh token for a new access token on the same session.
    The refresh token itself is not rotated. Returns None when invalid.
    """
    if not refresh_token:
        return None

    now = clock.utcnow()
    sess = Session.query.filter_by(refresh_token_hash=hash_token(refresh_token)).first()
    if not _is_usable(sess, now):
        return None

    account = db.session.get(Account, sess.account_id)
    if account is None or not account.is_active or is_locked(account, now):
        return None

    # an access token never outlives its session
    access_token = create_access_token(account, sess.expires_at, now=now)
    sess.token_hash = hash_token(access_token)
    sess.last_activity_at = now
    db.session.commit()
    return IssuedTokens(access_token, refresh_token, sess.id, sess.expires_at)


def get_session(session_id: str) -> Optional[Session]:
    return db.session.get(Session, session_id)


def list_active(account_id: int) -> List[Session]:
    now = clock.utcnow()
    return (
        Session.query
        .filter(Session.account_id == account_id, Session.is_active.is_(True), Session.expires_at > now)
        .order_by(Session.last_activity_at.desc())
        .all()
    )


def revoke(session_id: str, account_id: int = None) -> bool:
    """
    Deactivates one session. When account_id is given the session must
    belong to that account.
    """
    now = clock.utcnow()
    stmt = (
        update(Session)
        .where(Session.id == session_id, Session.is_active.is_(True))
        .values(is_active=False, last_activity_at=now, updated_at=now)
    )
    if account_id is not None:
        stmt = stmt.where(Session.account_id == account_id)
    result = db.session.execute(stmt)
    db.session.commit()
    return result.rowcount > 0


def revoke_all_except(account_id: int, current_token: str = None) -> int:
    """Deactivates every active session of the account except the current one."""
    now = clock.utcnow()
    stmt = (
        update(Session)
        .where(Session.account_id == account_id, Session.is_active.is_(True))
        .values(is_active=False, last_activity_at=now, updated_at=now)
    )
    if current_token:
        stmt = stmt.where(Session.token_hash != hash_token(current_token))
    result = db.session.execute(stmt)
    db.session.commit()
    return result.rowcount


def revoke_all(account_id: int) -> int:
    return revoke_all_except(account_id, None)
