import logging
import smtplib
from email.message import EmailMessage

from flask import current_app

logger = logging.getLogger(__name__)


def _build_message(from_email: str, to_email: str, subject: str, body: str) -> EmailMessage:
    prefix = current_app.config.get("EMAIL_SUBJECT_PREFIX") or ""
    msg = EmailMessage()
    msg["From"] = from_email
    msg["To"] = to_email
    msg["Subject"] = f"{prefix} {subject}".strip()
    msg.set_content(body)
    return msg


def send_email(to_email: str, subject: str, body: str):
    """
    Delivers one plain-text message over SMTP. Returns (sent, error); delivery
    problems are reported, never raised, so callers can keep their response.
    """
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    username = cfg.get("SMTP_USERNAME")
    from_email = cfg.get("SMTP_FROM_EMAIL") or username
    if not host or not from_email:
        logger.info("SMTP not configured; dropping %r to %s", subject, to_email)
        return False, "Email not configured"

    msg = _build_message(from_email, to_email, subject, body)
    try:
        with smtplib.SMTP(host, cfg.get("SMTP_PORT", 587), timeout=cfg.get("SMTP_TIMEOUT_SECONDS", 10)) as server:
            if cfg.get("SMTP_USE_TLS", True):
                server.starttls()
            if username and cfg.get("SMTP_PASSWORD"):
                server.login(username, cfg.get("SMTP_PASSWORD"))
            server.send_message(msg)
        return True, None
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("SMTP delivery to %s failed: %s", to_email, type(exc).__name__)
        return False, str(exc)


def send_password_reset_email(to_email: str, token: str, ttl_minutes: int):
    base = current_app.config.get("ADMIN_PANEL_URL") or ""
    link = f"{base.rstrip('/')}/reset-password?token={token}" if base else token
    body = (
        "A password reset was requested for your admin account.\n\n"
        f"Use this link within {ttl_minutes} minutes:\n{link}\n\n"
        "If you did not request it, ignore this email; your password is unchanged."
    )
    return send_email(to_email, "Admin password reset", body)


def send_suspicious_activity_alert(to_email: str, ip: str, user_agent: str, detected_at):
    body = (
        "Suspicious activity was detected on the admin panel and the source was blocked.\n\n"
        f"IP address: {ip}\n"
        f"User agent: {user_agent}\n"
        f"Detected at (UTC): {detected_at.isoformat(timespec='seconds')}\n"
    )
    return send_email(to_email, "Security alert: suspicious activity blocked", body)
