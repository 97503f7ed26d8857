from models.db import db, utcnow


class LoginAttempt(db.Model):
    """Append-only record of one login try."""

    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    # We track both email + ip to stop both targeted and broad attacks
    email = db.Column(db.String(255), nullable=False, index=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    user_agent = db.Column(db.String(255), nullable=True)

    success = db.Column(db.Boolean, default=False, nullable=False)
    failure_reason = db.Column(db.String(64), nullable=True)

    attempted_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
