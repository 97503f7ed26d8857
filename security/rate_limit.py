"""
Sliding-window rate limiter keyed by (client IP, endpoint group).

check() only reads: it counts RateLimitEvent rows inside [now - window, now]
and rejects once the count reaches the policy maximum. Admitted traffic is
recorded separately by the caller through record().

If the counting query fails the request is admitted (fail open). Throttling
is best effort; authentication itself always fails closed.

Counting is derived from rows, so two concurrent requests at the edge of the
limit may both be admitted. That over-admission is bounded by the number of
in-flight requests and is accepted.
"""
import logging
from datetime import timedelta
from typing import NamedTuple

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.blocked_ip import BlockedIp
from models.rate_limit_event import RateLimitEvent
from utils import clock
from utils.audit import log_event

logger = logging.getLogger(__name__)

DEFAULT_POLICY = "default"


class RateLimitPolicy(NamedTuple):
    window_seconds: int
    max_requests: int
    block_seconds: int = 0


class RateLimitDecision(NamedTuple):
    allowed: bool
    retry_after: int = 0
    remaining: int = 0
    reason: str = None  # "ip_blocked", "blocked" or "limit"


ALLOW = RateLimitDecision(allowed=True)


def get_policy(endpoint: str) -> RateLimitPolicy:
    policies = current_app.config.get("RATE_LIMITS", {})
    raw = policies.get(endpoint) or policies.get(DEFAULT_POLICY)
    if raw is None:
        return RateLimitPolicy(window_seconds=15 * 60, max_requests=100)
    return RateLimitPolicy(**raw)


def _active_ip_block(ip: str, now):
    return (
        BlockedIp.query
        .filter(BlockedIp.ip == ip, BlockedIp.blocked_until > now)
        .first()
    )


def _check(ip: str, endpoint: str, policy: RateLimitPolicy, now) -> RateLimitDecision:
    blocked_ip = _active_ip_block(ip, now)
    if blocked_ip:
        return RateLimitDecision(
            allowed=False,
            retry_after=max(int((blocked_ip.blocked_until - now).total_seconds()), 1),
            reason="ip_blocked",
        )

    if policy.block_seconds:
        last_block = db.session.execute(
            select(func.max(RateLimitEvent.created_at)).where(
                RateLimitEvent.ip == ip,
                RateLimitEvent.endpoint == endpoint,
                RateLimitEvent.blocked.is_(True),
                RateLimitEvent.created_at > now - timedelta(seconds=policy.block_seconds),
            )
        ).scalar()
        if last_block is not None:
            unblock_at = last_block + timedelta(seconds=policy.block_seconds)
            return RateLimitDecision(
                allowed=False,
                retry_after=max(int((unblock_at - now).total_seconds()), 1),
                reason="blocked",
            )

    window_start = now - timedelta(seconds=policy.window_seconds)
    count, oldest = db.session.execute(
        select(func.count(RateLimitEvent.id), func.min(RateLimitEvent.created_at)).where(
            RateLimitEvent.ip == ip,
            RateLimitEvent.endpoint == endpoint,
            RateLimitEvent.blocked.is_(False),
            RateLimitEvent.created_at >= window_start,
        )
    ).one()

    if count >= policy.max_requests:
        if policy.block_seconds:
            retry_after = policy.block_seconds
        else:
            # the window rolls: capacity returns as the oldest counted event ages out
            retry_after = int((oldest + timedelta(seconds=policy.window_seconds) - now).total_seconds())
        return RateLimitDecision(allowed=False, retry_after=max(retry_after, 1), reason="limit")

    return RateLimitDecision(allowed=True, remaining=policy.max_requests - count)


def check(ip: str, endpoint: str) -> RateLimitDecision:
    """
    Returns Allow, or a blocked decision with a positive retry_after.
    Every rejection emits a SecurityEvent; a fresh threshold crossing on a
    policy with a block duration is also persisted as a blocked RateLimitEvent.
    """
    policy = get_policy(endpoint)
    now = clock.utcnow()

    try:
        decision = _check(ip, endpoint, policy, now)
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Rate limit check failed for %s on %s; admitting request", ip, endpoint, exc_info=True)
        return ALLOW

    if decision.allowed:
        return decision

    if decision.reason == "limit" and policy.block_seconds:
        try:
            db.session.add(RateLimitEvent(ip=ip, endpoint=endpoint, blocked=True, created_at=now))
            db.session.commit()
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Could not persist rate limit block for %s", ip, exc_info=True)

    logger.warning("Rate limit exceeded: ip=%s endpoint=%s retry_after=%s", ip, endpoint, decision.retry_after)
    log_event(
        "RATE_LIMIT_EXCEEDED",
        success=False,
        severity="medium",
        metadata={"endpoint": endpoint, "retry_after": decision.retry_after, "reason": decision.reason},
        ip=ip,
    )
    return decision


def record(ip: str, endpoint: str) -> None:
    """Counts one admitted request. Best effort, like the check."""
    try:
        db.session.add(RateLimitEvent(ip=ip, endpoint=endpoint, blocked=False, created_at=clock.utcnow()))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Could not record rate limit event for %s", ip, exc_info=True)
