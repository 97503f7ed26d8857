"""
Expiry sweeper: deactivates expired sessions, deletes expired CSRF and
password-reset tokens, and purges audit rows past their retention.
Stateless and idempotent; running it with nothing expired changes nothing.
"""
import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import delete, or_, update

from models import db
from models.blocked_ip import BlockedIp
from models.csrf_token import CSRFToken
from models.login_attempt import LoginAttempt
from models.password_reset_token import PasswordResetToken
from models.rate_limit_event import RateLimitEvent
from models.security_event import SecurityEvent
from models.session import Session
from utils import clock

logger = logging.getLogger(__name__)


def _days(name: str, default: int) -> timedelta:
    return timedelta(days=current_app.config.get(name, default))


def sweep_expired() -> dict:
    now = clock.utcnow()
    counts = {}

    counts["sessions_deactivated"] = db.session.execute(
        update(Session)
        .where(Session.is_active.is_(True), Session.expires_at <= now)
        .values(is_active=False, updated_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount

    counts["csrf_tokens_deleted"] = db.session.execute(
        delete(CSRFToken)
        .where(CSRFToken.expires_at <= now)
        .execution_options(synchronize_session=False)
    ).rowcount

    counts["reset_tokens_deleted"] = db.session.execute(
        delete(PasswordResetToken)
        .where(or_(PasswordResetToken.expires_at <= now, PasswordResetToken.used_at.is_not(None)))
        .execution_options(synchronize_session=False)
    ).rowcount

    counts["login_attempts_purged"] = db.session.execute(
        delete(LoginAttempt)
        .where(LoginAttempt.attempted_at < now - _days("LOGIN_ATTEMPT_RETENTION_DAYS", 7))
        .execution_options(synchronize_session=False)
    ).rowcount

    counts["security_events_purged"] = db.session.execute(
        delete(SecurityEvent)
        .where(SecurityEvent.created_at < now - _days("SECURITY_LOG_RETENTION_DAYS", 30))
        .execution_options(synchronize_session=False)
    ).rowcount

    counts["rate_limit_events_purged"] = db.session.execute(
        delete(RateLimitEvent)
        .where(RateLimitEvent.created_at < now - _days("RATE_LIMIT_RETENTION_DAYS", 1))
        .execution_options(synchronize_session=False)
    ).rowcount

    counts["ip_blocks_expired"] = db.session.execute(
        delete(BlockedIp)
        .where(BlockedIp.blocked_until <= now)
        .execution_options(synchronize_session=False)
    ).rowcount

    db.session.commit()

    if any(counts.values()):
        logger.info("Expiry sweep: %s", counts)
    return counts
