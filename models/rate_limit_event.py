from models.db import db, utcnow


class RateLimitEvent(db.Model):
    """One admitted (or blocked) request, counted by the sliding window."""

    __tablename__ = "rate_limit_events"
    __table_args__ = (
        db.Index("ix_rate_limit_events_ip_endpoint_created", "ip", "endpoint", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), nullable=False)
    endpoint = db.Column(db.String(64), nullable=False)
    blocked = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
