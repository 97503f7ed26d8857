import logging
import secrets
from datetime import timedelta

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.account import Account
from models.password_reset_token import PasswordResetToken
from security import lockout, rate_limit
from security import session as session_manager
from security.csrf import issue_csrf_token
from security.password import hash_password, verify_password
from security.password_policy import validate_password
from security.rbac import require_roles
from security.tokens import hash_token
from utils import clock
from utils.audit import log_event, record_login_attempt
from utils.auth_context import current_context, login_required
from utils.emailer import send_password_reset_email
from utils.errors import (
    AccountInactive,
    AccountLocked,
    InvalidCredentials,
    InvalidToken,
    NotFound,
    ValidationError,
)
from utils.request_meta import client_ip, user_agent
from utils.roles import ROLE_SUPER_ADMIN

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object expected")
    return data


def _iso(value):
    return value.isoformat() if value else None


def _user_payload(account: Account) -> dict:
    return {
        "id": account.id,
        "email": account.email,
        "role": account.role,
        "must_change_password": bool(account.must_change_password),
        "last_login_at": _iso(account.last_login_at),
    }


def _session_payload(sess, current_session_id: str = None) -> dict:
    return {
        "id": sess.id,
        "ip": sess.ip,
        "user_agent": sess.user_agent,
        "created_at": _iso(sess.created_at),
        "last_activity_at": _iso(sess.last_activity_at),
        "expires_at": _iso(sess.expires_at),
        "is_current": sess.id == current_session_id,
    }


def _cookie_flags() -> dict:
    return dict(
        httponly=True,
        secure=current_app.config.get("SESSION_COOKIE_SECURE", False),
        samesite=current_app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        path="/",
    )


def _set_access_cookie(resp, access_token: str):
    resp.set_cookie(
        current_app.config.get("AUTH_COOKIE_NAME", "admin_token"),
        access_token,
        max_age=current_app.config.get("SESSION_LIFETIME_SECONDS", 24 * 60 * 60),
        **_cookie_flags(),
    )


def _set_refresh_cookie(resp, refresh_token: str):
    resp.set_cookie(
        current_app.config.get("REFRESH_COOKIE_NAME", "admin_refresh"),
        refresh_token,
        max_age=current_app.config.get("REFRESH_COOKIE_MAX_AGE_SECONDS", 7 * 24 * 60 * 60),
        **_cookie_flags(),
    )


def _clear_auth_cookies(resp):
    resp.delete_cookie(current_app.config.get("AUTH_COOKIE_NAME", "admin_token"), path="/")
    resp.delete_cookie(current_app.config.get("REFRESH_COOKIE_NAME", "admin_refresh"), path="/")
    resp.delete_cookie(current_app.config.get("CSRF_COOKIE_NAME", "csrf-token"), path="/")


def _check_new_password(account: Account, new_password) -> None:
    if not isinstance(new_password, str):
        raise ValidationError("New password is required")
    valid, errors = validate_password(new_password)
    if not valid:
        raise ValidationError("Password does not meet policy", details=errors)
    if verify_password(new_password, account.password_hash):
        raise ValidationError("New password must differ from the current password")


def _store_new_password(account: Account, new_password: str) -> None:
    account.password_hash, account.password_salt = hash_password(new_password)
    account.password_changed_at = clock.utcnow()
    account.must_change_password = False


@auth_bp.post("/login")
def login():
    ip, agent = client_ip(), user_agent()
    # every login request counts toward the login window, successful or not
    rate_limit.record(ip, "login")

    data = _body()
    email = data.get("email")
    password = data.get("password")
    if not _is_valid_email(email) or not isinstance(password, str) or not password:
        raise ValidationError("Valid email and password are required")
    email = email.strip().lower()

    account = Account.query.filter_by(email=email).first()
    if account is None:
        record_login_attempt(email, False, "unknown_account")
        log_event("LOGIN_FAILED", success=False, severity="medium", error="unknown account", metadata={"email": email})
        raise InvalidCredentials()

    if not account.is_active:
        record_login_attempt(email, False, "account_inactive")
        log_event("LOGIN_FAILED", account_id=account.id, success=False, severity="medium", error="account inactive")
        raise AccountInactive()

    if lockout.is_locked(account):
        record_login_attempt(email, False, "account_locked")
        log_event("LOGIN_BLOCKED_LOCKED", account_id=account.id, success=False, severity="medium")
        raise AccountLocked(retry_after_seconds=lockout.seconds_remaining(account))

    if not verify_password(password, account.password_hash):
        status = lockout.record_failure(account.id)
        record_login_attempt(email, False, "invalid_password")
        log_event(
            "LOGIN_FAILED",
            account_id=account.id,
            success=False,
            severity="medium",
            error="invalid password",
            metadata={"attempts": status.attempts, "locked": status.locked_now},
        )
        if status.locked_now:
            log_event(
                "ACCOUNT_LOCKED",
                account_id=account.id,
                success=False,
                severity="high",
                metadata={"attempts": status.attempts, "locked_until": status.locked_until},
            )
        raise InvalidCredentials()

    lockout.record_success(account.id, ip)
    record_login_attempt(email, True)
    tokens = session_manager.issue(account, ip, agent)
    log_event("LOGIN_SUCCESS", account_id=account.id, metadata={"session_id": tokens.session_id})

    resp = jsonify(
        success=True,
        user=_user_payload(account),
        session={"id": tokens.session_id, "expires_at": _iso(tokens.expires_at)},
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )
    _set_access_cookie(resp, tokens.access_token)
    _set_refresh_cookie(resp, tokens.refresh_token)
    issue_csrf_token(resp, tokens.session_id)
    return resp, 200


@auth_bp.post("/logout")
def logout():
    """Always reports success; cleanup failures are only logged."""
    ctx = current_context()
    if ctx is not None:
        try:
            session_manager.revoke(ctx.session_id)
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Could not deactivate session on logout", exc_info=True)
        log_event("LOGOUT", account_id=ctx.account_id, metadata={"session_id": ctx.session_id})

    resp = jsonify(success=True, message="Logged out")
    _clear_auth_cookies(resp)
    return resp, 200


@auth_bp.get("/verify-session")
@login_required(allow_password_change=True)
def verify_session(ctx):
    account = db.session.get(Account, ctx.account_id)
    sess = session_manager.get_session(ctx.session_id)
    return jsonify(
        success=True,
        user=_user_payload(account),
        session=_session_payload(sess, ctx.session_id),
    ), 200


@auth_bp.post("/change-password")
@login_required(allow_password_change=True)
def change_password(ctx):
    data = _body()
    current_password = data.get("current_password")
    new_password = data.get("new_password")
    if not isinstance(current_password, str) or not current_password:
        raise ValidationError("Current password is required")

    account = db.session.get(Account, ctx.account_id)
    if not verify_password(current_password, account.password_hash):
        log_event("PASSWORD_CHANGE_FAILED", account_id=account.id, success=False, severity="medium", error="wrong current password")
        raise InvalidCredentials("Current password is incorrect")

    _check_new_password(account, new_password)
    _store_new_password(account, new_password)
    db.session.commit()

    revoked = session_manager.revoke_all_except(account.id, ctx.access_token)
    log_event("PASSWORD_CHANGED", account_id=account.id, metadata={"revoked_sessions": revoked})
    return jsonify(success=True, message="Password updated", revoked_sessions=revoked), 200


@auth_bp.post("/force-password-change")
@login_required(allow_password_change=True)
def force_password_change(ctx):
    account = db.session.get(Account, ctx.account_id)
    if not account.must_change_password:
        raise ValidationError("No password change is pending")

    data = _body()
    new_password = data.get("new_password")
    _check_new_password(account, new_password)
    _store_new_password(account, new_password)
    db.session.commit()

    revoked = session_manager.revoke_all_except(account.id, ctx.access_token)
    log_event("PASSWORD_FORCE_CHANGED", account_id=account.id, metadata={"revoked_sessions": revoked})
    return jsonify(success=True, message="Password updated", revoked_sessions=revoked), 200


def _issue_reset_token(account: Account, ip: str):
    now = clock.utcnow()
    ttl = current_app.config.get("PASSWORD_RESET_TTL_SECONDS", 3600)
    token = secrets.token_urlsafe(32)

    # only the newest reset link stays valid
    db.session.execute(
        delete(PasswordResetToken)
        .where(PasswordResetToken.account_id == account.id, PasswordResetToken.used_at.is_(None))
        .execution_options(synchronize_session=False)
    )
    db.session.add(PasswordResetToken(
        account_id=account.id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=now + timedelta(seconds=ttl),
        ip=ip,
    ))
    db.session.commit()
    return token, ttl


@auth_bp.post("/request-password-reset")
def request_password_reset():
    """Same answer whether or not the email belongs to an account, or the store is down."""
    ip = client_ip()
    rate_limit.record(ip, "password_reset")

    data = _body()
    email = data.get("email")
    if not _is_valid_email(email):
        raise ValidationError("Valid email is required")
    email = email.strip().lower()

    try:
        account = Account.query.filter_by(email=email).first()
        if account is not None and account.is_active:
            token, ttl = _issue_reset_token(account, ip)
            ok, err = send_password_reset_email(account.email, token, ttl // 60)
            if not ok:
                logger.warning("Password reset email for account %s not sent: %s", account.id, err)
            log_event("PASSWORD_RESET_REQUESTED", account_id=account.id, metadata={"email_sent": ok})
        else:
            log_event("PASSWORD_RESET_REQUESTED", success=False, error="no active account", metadata={"email": email})
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Password reset request not processed", exc_info=True)

    return jsonify(
        success=True,
        message="If the email is registered, a reset link has been sent.",
    ), 200


@auth_bp.post("/reset-password")
def reset_password():
    data = _body()
    token = data.get("token")
    new_password = data.get("new_password")
    if not isinstance(token, str) or not token:
        raise ValidationError("Reset token is required")

    now = clock.utcnow()
    row = PasswordResetToken.query.filter_by(token_hash=hash_token(token)).first()
    if row is None or row.used_at is not None or row.expires_at <= now:
        log_event("PASSWORD_RESET_FAILED", success=False, severity="medium", error="invalid or expired token")
        raise InvalidToken("Reset token invalid or expired")

    account = db.session.get(Account, row.account_id)
    if account is None or not account.is_active:
        raise InvalidToken("Reset token invalid or expired")
    _check_new_password(account, new_password)

    # single use: only the request that flips used_at may proceed
    claimed = db.session.execute(
        update(PasswordResetToken)
        .where(PasswordResetToken.id == row.id, PasswordResetToken.used_at.is_(None))
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not claimed:
        db.session.rollback()
        raise InvalidToken("Reset token invalid or expired")

    _store_new_password(account, new_password)
    db.session.commit()

    lockout.unlock(account.id)
    revoked = session_manager.revoke_all(account.id)
    log_event("PASSWORD_RESET", account_id=account.id, metadata={"revoked_sessions": revoked})
    return jsonify(success=True, message="Password has been reset"), 200


@auth_bp.post("/refresh-token")
def refresh_token():
    data = _body()
    raw = data.get("refresh_token") or request.cookies.get(
        current_app.config.get("REFRESH_COOKIE_NAME", "admin_refresh")
    )
    if not isinstance(raw, str) or not raw:
        raise ValidationError("Refresh token is required")

    tokens = session_manager.refresh(raw)
    if tokens is None:
        log_event("TOKEN_REFRESH_FAILED", success=False, severity="medium")
        raise InvalidToken("Refresh token invalid or expired")

    log_event("TOKEN_REFRESHED", metadata={"session_id": tokens.session_id})
    resp = jsonify(
        success=True,
        access_token=tokens.access_token,
        session={"id": tokens.session_id, "expires_at": _iso(tokens.expires_at)},
    )
    _set_access_cookie(resp, tokens.access_token)
    return resp, 200


@auth_bp.get("/sessions")
@login_required
def list_sessions(ctx):
    sessions = session_manager.list_active(ctx.account_id)
    return jsonify(
        success=True,
        sessions=[_session_payload(s, ctx.session_id) for s in sessions],
    ), 200


@auth_bp.delete("/sessions/<session_id>")
@login_required
def terminate_session(ctx, session_id):
    if not session_manager.revoke(session_id, account_id=ctx.account_id):
        raise NotFound("Session not found")
    log_event("SESSION_TERMINATED", account_id=ctx.account_id, metadata={"session_id": session_id})
    return jsonify(success=True, message="Session terminated"), 200


@auth_bp.delete("/sessions")
@login_required
def terminate_other_sessions(ctx):
    revoked = session_manager.revoke_all_except(ctx.account_id, ctx.access_token)
    log_event("SESSIONS_TERMINATED", account_id=ctx.account_id, metadata={"revoked_sessions": revoked})
    return jsonify(success=True, revoked_sessions=revoked), 200


@auth_bp.post("/unlock-account")
@require_roles(ROLE_SUPER_ADMIN)
def unlock_account(ctx):
    data = _body()
    account_id = data.get("account_id")
    if isinstance(account_id, bool) or not isinstance(account_id, int):
        raise ValidationError("account_id must be an integer")

    if not lockout.unlock(account_id):
        raise NotFound("Account not found")

    log_event("ACCOUNT_UNLOCKED", account_id=ctx.account_id, severity="medium", metadata={"target_account_id": account_id})
    return jsonify(success=True, message="Account unlocked"), 200


@auth_bp.get("/csrf-token")
def csrf_token():
    ctx = current_context()
    resp = jsonify(success=True)
    issue_csrf_token(resp, ctx.session_id if ctx else None)
    return resp, 200
