"""
IP threat scoring and suspicious-activity monitoring.

Scores are computed at query time from the LoginAttempt and SecurityEvent rows
of one IP inside a trailing window. Pattern matches on request content only
raise event severity; blocking is decided from the score or by the periodic
monitor.
"""
import json
import logging
import re
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, NamedTuple, Optional

from flask import current_app, request

from models import db
from models.account import Account
from models.blocked_ip import BlockedIp
from models.login_attempt import LoginAttempt
from models.security_event import SecurityEvent
from models.session import Session
from utils import clock
from utils.audit import log_event
from utils.emailer import send_suspicious_activity_alert
from utils.request_meta import client_ip
from utils.roles import ADMIN_ROLES

logger = logging.getLogger(__name__)

MAX_SCORE = 100
BLOCK_SCORE = 50
FAILED_LOGIN_GRACE = 3
FAILED_LOGIN_POINTS = 10
HIGH_VOLUME_EVENTS = 50
HIGH_VOLUME_POINTS = 20
SUSPICIOUS_EVENT_POINTS = 15
BLOCK_FAILED_ATTEMPTS = 5

HIGH_SEVERITIES = frozenset({"high", "critical"})
SUSPICIOUS_MARKERS = ("attack", "suspicious")

ATTACK_PATTERNS: Dict[str, List[re.Pattern]] = {
    "path_traversal": [
        re.compile(r"\.\./"),
        re.compile(r"\.\.\\"),
        re.compile(r"%2e%2e(%2f|/)", re.IGNORECASE),
    ],
    "script_injection": [
        re.compile(r"<script", re.IGNORECASE),
        re.compile(r"javascript:", re.IGNORECASE),
        re.compile(r"on(error|load)\s*=", re.IGNORECASE),
    ],
    "sql_injection": [
        re.compile(r"union.*select", re.IGNORECASE),
        re.compile(r";\s*drop\s+table", re.IGNORECASE),
        re.compile(r"'\s*or\s+'?1'?\s*=\s*'?1", re.IGNORECASE),
        re.compile(r"\bsleep\s*\(\s*\d+\s*\)", re.IGNORECASE),
    ],
    "command_injection": [
        re.compile(r"eval\(", re.IGNORECASE),
        re.compile(r"exec\(", re.IGNORECASE),
        re.compile(r"[;&|]\s*(rm|cat|wget|curl|nc|bash|sh)\s", re.IGNORECASE),
        re.compile(r"\$\([^)]*\)"),
    ],
}


class IPAnalysis(NamedTuple):
    ip: str
    risk_score: int
    is_blocked: bool
    failed_attempts: int
    login_attempts: int
    event_count: int
    last_activity: Optional[datetime]
    user_agent: Optional[str]
    threats: List[str]


def detect_attack_patterns(text: str) -> List[str]:
    """Names of the attack categories whose patterns match the text."""
    if not text:
        return []
    return [
        name for name, patterns in ATTACK_PATTERNS.items()
        if any(p.search(text) for p in patterns)
    ]


def is_suspicious(event: SecurityEvent) -> bool:
    action = (event.action or "").lower()
    return event.severity in HIGH_SEVERITIES or any(m in action for m in SUSPICIOUS_MARKERS)


def score(failed_attempts: int, event_count: int, suspicious_count: int) -> int:
    risk = 0
    if failed_attempts > FAILED_LOGIN_GRACE:
        risk += (failed_attempts - FAILED_LOGIN_GRACE) * FAILED_LOGIN_POINTS
    if event_count > HIGH_VOLUME_EVENTS:
        risk += HIGH_VOLUME_POINTS
    risk += suspicious_count * SUSPICIOUS_EVENT_POINTS
    return min(risk, MAX_SCORE)


def analyze_ip(ip: str, window_seconds: int = None) -> IPAnalysis:
    window_seconds = window_seconds or current_app.config.get("THREAT_WINDOW_SECONDS", 3600)
    window_start = clock.utcnow() - timedelta(seconds=window_seconds)

    attempts = (
        LoginAttempt.query
        .filter(LoginAttempt.ip == ip, LoginAttempt.attempted_at >= window_start)
        .order_by(LoginAttempt.attempted_at.desc())
        .all()
    )
    events = (
        SecurityEvent.query
        .filter(SecurityEvent.ip == ip, SecurityEvent.created_at >= window_start)
        .order_by(SecurityEvent.created_at.desc())
        .all()
    )

    failed = sum(1 for a in attempts if not a.success)
    suspicious = sum(1 for e in events if is_suspicious(e))
    risk = score(failed, len(events), suspicious)

    threats = []
    if failed > FAILED_LOGIN_GRACE:
        threats.append(f"{failed} failed login attempts")
    if len(events) > HIGH_VOLUME_EVENTS:
        threats.append(f"{len(events)} security events in window")
    if suspicious:
        threats.append(f"{suspicious} suspicious events")

    latest_attempt = attempts[0] if attempts else None
    latest_event = events[0] if events else None
    if latest_attempt and (not latest_event or latest_attempt.attempted_at >= latest_event.created_at):
        last_activity, agent = latest_attempt.attempted_at, latest_attempt.user_agent
    elif latest_event:
        last_activity, agent = latest_event.created_at, latest_event.user_agent
    else:
        last_activity, agent = None, None

    return IPAnalysis(
        ip=ip,
        risk_score=risk,
        is_blocked=risk > BLOCK_SCORE or failed >= BLOCK_FAILED_ATTEMPTS,
        failed_attempts=failed,
        login_attempts=len(attempts),
        event_count=len(events),
        last_activity=last_activity,
        user_agent=agent,
        threats=threats,
    )


def inspect_request() -> List[str]:
    """
    Matches the current request against the attack patterns and records a
    high-severity event on a hit. Never blocks.
    """
    body = request.get_data(cache=True, as_text=True) or ""
    subject = " ".join([
        request.method,
        request.path,
        json.dumps(request.args.to_dict(flat=False)),
        body[:8192],
    ])
    matches = detect_attack_patterns(subject)
    if matches:
        logger.warning("Suspicious request from %s: %s", client_ip(), ",".join(matches))
        log_event(
            "SUSPICIOUS_ACTIVITY_DETECTED",
            success=False,
            severity="high",
            metadata={"patterns": matches, "method": request.method, "path": request.path},
        )
    return matches


def is_ip_blocked(ip: str) -> bool:
    now = clock.utcnow()
    return BlockedIp.query.filter(BlockedIp.ip == ip, BlockedIp.blocked_until > now).first() is not None


def block_ip(ip: str, reason: str, duration_seconds: int = None) -> bool:
    """
    Persists (or extends) an IP block. Returns True when the IP was not
    already blocked.
    """
    duration_seconds = duration_seconds or current_app.config.get("IP_BLOCK_SECONDS", 3600)
    now = clock.utcnow()
    until = now + timedelta(seconds=duration_seconds)

    row = BlockedIp.query.filter_by(ip=ip).first()
    newly_blocked = row is None or row.blocked_until <= now
    if row is None:
        row = BlockedIp(ip=ip, created_at=now)
        db.session.add(row)
    row.reason = reason[:255]
    row.blocked_until = until
    db.session.commit()

    logger.warning("IP %s blocked until %s: %s", ip, until.isoformat(), reason)
    log_event("IP_BLOCKED", severity="high", metadata={"reason": reason, "blocked_until": until}, ip=ip, agent="system")
    return newly_blocked


def _notify_admins(ip: str, user_agent: str, detected_at: datetime) -> int:
    recipients = (
        Account.query
        .filter(Account.role.in_(ADMIN_ROLES), Account.is_active.is_(True))
        .all()
    )
    sent = 0
    for admin in recipients:
        ok, err = send_suspicious_activity_alert(admin.email, ip, user_agent, detected_at)
        if ok:
            sent += 1
        else:
            logger.warning("Suspicious activity alert to account %s not sent: %s", admin.id, err)
    return sent


def monitor_suspicious_activity(window_seconds: int = None) -> List[str]:
    """
    Groups recent events by IP and blocks any IP with at least
    THREAT_MONITOR_MIN_EVENTS suspicious events. Returns the newly blocked IPs.
    """
    window_seconds = window_seconds or current_app.config.get("THREAT_MONITOR_WINDOW_SECONDS", 300)
    threshold = current_app.config.get("THREAT_MONITOR_MIN_EVENTS", 3)
    now = clock.utcnow()

    events = (
        SecurityEvent.query
        .filter(SecurityEvent.created_at >= now - timedelta(seconds=window_seconds))
        .order_by(SecurityEvent.created_at.desc())
        .all()
    )

    by_ip = defaultdict(list)
    for event in events:
        if event.ip and event.action != "IP_BLOCKED":
            by_ip[event.ip].append(event)

    blocked = []
    for ip, ip_events in by_ip.items():
        suspicious = [e for e in ip_events if is_suspicious(e)]
        if len(suspicious) < threshold or is_ip_blocked(ip):
            continue
        if not block_ip(ip, f"{len(suspicious)} suspicious events in {window_seconds // 60} minutes"):
            continue
        blocked.append(ip)
        _notify_admins(ip, ip_events[0].user_agent or "unknown", now)

    return blocked


def security_stats(window_seconds: int = 24 * 60 * 60) -> dict:
    now = clock.utcnow()
    window_start = now - timedelta(seconds=window_seconds)
    attempts = LoginAttempt.query.filter(LoginAttempt.attempted_at >= window_start).all()
    suspicious = [
        e for e in SecurityEvent.query.filter(SecurityEvent.created_at >= window_start).all()
        if is_suspicious(e)
    ]
    active_sessions = Session.query.filter(Session.is_active.is_(True), Session.expires_at > now).count()
    blocked_ips = BlockedIp.query.filter(BlockedIp.blocked_until > now).count()

    return {
        "window_seconds": window_seconds,
        "total_login_attempts": len(attempts),
        "successful_logins": sum(1 for a in attempts if a.success),
        "failed_logins": sum(1 for a in attempts if not a.success),
        "suspicious_activities": len(suspicious),
        "active_sessions": active_sessions,
        "blocked_ips": blocked_ips,
    }
