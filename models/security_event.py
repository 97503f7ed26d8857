from models.db import db, utcnow


class SecurityEvent(db.Model):
    __tablename__ = "security_logs"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, nullable=True, index=True)  # nullable for unauth events
    action = db.Column(db.String(80), nullable=False, index=True)  # e.g. LOGIN_FAILED_INVALID_PASSWORD

    ip = db.Column(db.String(64), nullable=True, index=True)
    user_agent = db.Column(db.String(255), nullable=True)

    success = db.Column(db.Boolean, default=True, nullable=False)
    severity = db.Column(db.String(16), default="low", nullable=False)  # low|medium|high|critical
    error_message = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
