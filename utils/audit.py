import json
import logging

from flask import has_request_context
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.login_attempt import LoginAttempt
from models.security_event import SecurityEvent
from utils import clock
from utils.request_meta import client_ip, user_agent

logger = logging.getLogger(__name__)


def _request_meta(ip, agent):
    if has_request_context():
        ip = ip or client_ip()
        agent = agent or user_agent()
    return ip, agent


def log_event(
    action: str,
    account_id=None,
    success: bool = True,
    severity: str = "low",
    error=None,
    metadata=None,
    ip=None,
    agent=None,
) -> bool:
    """
    Append a SecurityEvent row. Best effort: a failed write is logged and
    swallowed, it never fails the request that triggered it.

    Callers commit their own work first; a failure here rolls back the session.
    """
    ip, agent = _request_meta(ip, agent)
    row = SecurityEvent(
        account_id=account_id,
        action=action,
        ip=ip,
        user_agent=agent,
        success=success,
        severity=severity,
        error_message=str(error)[:255] if error else None,
        metadata_json=json.dumps(metadata, default=str) if metadata else None,
        created_at=clock.utcnow(),
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Could not write security event %s", action, exc_info=True)
        return False
    return True


def record_login_attempt(email: str, success: bool, failure_reason: str = None, ip=None, agent=None) -> bool:
    ip, agent = _request_meta(ip, agent)
    row = LoginAttempt(
        email=(email or "")[:255],
        ip=ip or "unknown",
        user_agent=agent,
        success=success,
        failure_reason=failure_reason,
        attempted_at=clock.utcnow(),
    )
    try:
        db.session.add(row)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Could not record login attempt", exc_info=True)
        return False
    return True
