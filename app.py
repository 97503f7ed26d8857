import json
import logging

import click
from flask import Flask, jsonify, request
from flask_migrate import Migrate
from werkzeug.exceptions import HTTPException

from config import Config
from models import db
from models.account import Account
from routes import auth_bp, health_bp
from security import lockout, rate_limit
from security.csrf import require_csrf
from security.password import hash_password
from security.password_policy import validate_password
from security.sweeper import sweep_expired
from security.threat import analyze_ip, inspect_request, monitor_suspicious_activity, security_stats
from utils.audit import log_event
from utils.auth_context import current_context, load_current_context
from utils.errors import AuthError, CSRFMismatch, InternalError, RateLimited
from utils.request_meta import client_ip
from utils.roles import normalize_role
from utils.scheduler import ScheduledTask, Scheduler

logger = logging.getLogger(__name__)

CSRF_EXEMPT_PATHS = {
    "/auth/login",
    "/auth/logout",
    "/auth/request-password-reset",
    "/auth/reset-password",
    "/auth/refresh-token",
    "/health",
}

# endpoints with their own rate-limit policy; their handlers record the hit
RATE_LIMITED_ENDPOINTS = {
    "auth.login": "login",
    "auth.request_password_reset": "password_reset",
}


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    if not app.config.get("JWT_SECRET"):
        raise RuntimeError("JWT_SECRET is not configured")

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _rate_limit():
        group = RATE_LIMITED_ENDPOINTS.get(request.endpoint, rate_limit.DEFAULT_POLICY)
        ip = client_ip()
        decision = rate_limit.check(ip, group)
        if not decision.allowed:
            raise RateLimited(decision.retry_after)
        if group == rate_limit.DEFAULT_POLICY:
            rate_limit.record(ip, group)

    @app.before_request
    def _inspect():
        inspect_request()

    @app.before_request
    def _authenticate():
        load_current_context()

    @app.before_request
    def _csrf_protect():
        if request.path in CSRF_EXEMPT_PATHS:
            return None
        ctx = current_context()
        if not require_csrf(
            session_id=ctx.session_id if ctx else None,
            account_id=ctx.account_id if ctx else None,
        ):
            raise CSRFMismatch()

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        resp.headers["Cache-Control"] = "no-store"
        return resp

    register_error_handlers(app)
    register_scheduler(app)
    register_cli(app)

    return app


def register_error_handlers(app):
    @app.errorhandler(AuthError)
    def _auth_error(exc):
        resp = jsonify(exc.to_dict())
        resp.status_code = exc.status_code
        if isinstance(exc, RateLimited):
            resp.headers["Retry-After"] = str(exc.retry_after)
        return resp

    @app.errorhandler(HTTPException)
    def _http_error(exc):
        code = (exc.name or "HTTP error").upper().replace(" ", "_")
        return jsonify(success=False, error=exc.name, code=code), exc.code

    @app.errorhandler(Exception)
    def _unhandled(exc):
        db.session.rollback()
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        err = InternalError()
        return jsonify(err.to_dict()), err.status_code


def register_scheduler(app):
    scheduler = Scheduler()
    scheduler.add(ScheduledTask(
        "expiry-sweep",
        app.config.get("EXPIRY_SWEEP_INTERVAL_SECONDS", 30 * 60),
        sweep_expired,
    ))
    scheduler.add(ScheduledTask(
        "threat-monitor",
        app.config.get("THREAT_MONITOR_INTERVAL_SECONDS", 5 * 60),
        monitor_suspicious_activity,
    ))
    app.extensions["auth_scheduler"] = scheduler

    if app.config.get("SCHEDULER_ENABLED"):
        scheduler.start(app)
    return scheduler


#-------------------------

def register_cli(app):
    @app.cli.command("create-admin")
    @click.argument("email")
    @click.option("--role", default="admin", show_default=True, help="admin or super_admin")
    @click.option("--must-change-password/--no-must-change-password", default=True, show_default=True)
    @click.password_option()
    def create_admin(email, role, must_change_password, password):
        """Provision an administrator account (bootstrap)."""
        email = email.strip().lower()
        try:
            role = normalize_role(role)
        except ValueError as exc:
            raise click.BadParameter(str(exc), param_hint="--role") from exc

        valid, errors = validate_password(password)
        if not valid:
            raise click.ClickException("Password does not meet policy: " + "; ".join(errors))
        if Account.query.filter_by(email=email).first():
            raise click.ClickException(f"{email} already exists")

        pw_hash, salt = hash_password(password)
        account = Account(
            email=email,
            password_hash=pw_hash,
            password_salt=salt,
            role=role,
            must_change_password=must_change_password,
        )
        db.session.add(account)
        db.session.commit()
        log_event("ACCOUNT_CREATED", account_id=account.id, metadata={"role": role}, ip="cli", agent="cli")
        click.echo(f"{email} created with role {role}")

    @app.cli.command("unlock-account")
    @click.argument("email")
    def unlock_account(email):
        """Clear the lockout state of an account."""
        account = Account.query.filter_by(email=email.strip().lower()).first()
        if not account:
            raise click.ClickException("Account not found")
        lockout.unlock(account.id)
        log_event("ACCOUNT_UNLOCKED", account_id=account.id, severity="medium", ip="cli", agent="cli")
        click.echo(f"{account.email} unlocked")

    @app.cli.command("sweep-expired")
    def sweep_expired_command():
        """Run the expiry sweeper once."""
        counts = sweep_expired()
        for name, count in counts.items():
            click.echo(f"{name}: {count}")

    @app.cli.command("monitor-threats")
    def monitor_threats_command():
        """Run the suspicious-activity monitor once."""
        blocked = monitor_suspicious_activity()
        if not blocked:
            click.echo("No IPs blocked")
        for ip in blocked:
            click.echo(f"Blocked {ip}")

    @app.cli.command("security-stats")
    @click.option("--hours", default=24, show_default=True, type=int)
    def security_stats_command(hours):
        """Print login and threat totals for the last HOURS."""
        click.echo(json.dumps(security_stats(hours * 60 * 60), indent=2))

    @app.cli.command("analyze-ip")
    @click.argument("ip")
    def analyze_ip_command(ip):
        """Show the current risk score of one IP."""
        analysis = analyze_ip(ip)
        click.echo(json.dumps(analysis._asdict(), indent=2, default=str))

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
