from models.db import db, utcnow


class CSRFToken(db.Model):
    __tablename__ = "csrf_tokens"

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(64), unique=True, nullable=False, index=True)

    # owning session id, or "anonymous" for pre-login pages
    session_key = db.Column(db.String(64), nullable=False, index=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
