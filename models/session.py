import uuid

from models.db import db, utcnow


class Session(db.Model):
    __tablename__ = "admin_sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    account_id = db.Column(db.Integer, db.ForeignKey("admin_users.id"), nullable=False, index=True)

    # only SHA-256 digests of the issued tokens are stored, never the raw values
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)
    refresh_token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    last_activity_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    account = db.relationship("Account", back_populates="sessions")
