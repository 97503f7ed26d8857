"""
Account lockout policy.

States per account: Active and Locked. A failed verification that pushes the
failed-attempt counter to MAX_LOGIN_ATTEMPTS locks the account for
LOCKOUT_MINUTES. Unlocking is lazy: an account whose locked_until has passed
is Active again without any write.

Counter updates are single UPDATE statements evaluated by the database, so
concurrent failures for the same account cannot under-count.
"""
import logging
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from flask import current_app
from sqlalchemy import or_, select, update

from models import db
from models.account import Account
from utils import clock

logger = logging.getLogger(__name__)


class LockoutStatus(NamedTuple):
    locked: bool
    attempts: int
    locked_until: Optional[datetime] = None
    locked_now: bool = False


def _threshold() -> int:
    return int(current_app.config.get("MAX_LOGIN_ATTEMPTS", 5))


def _lockout_delta() -> timedelta:
    return timedelta(minutes=current_app.config.get("LOCKOUT_MINUTES", 30))


def is_locked(account: Account, now: datetime = None) -> bool:
    """Pure function of the account snapshot and the clock."""
    now = now or clock.utcnow()
    return bool(account.is_locked and account.locked_until and account.locked_until > now)


def seconds_remaining(account: Account, now: datetime = None) -> int:
    now = now or clock.utcnow()
    if not is_locked(account, now):
        return 0
    return max(int((account.locked_until - now).total_seconds()), 1)


def record_failure(account_id: int) -> LockoutStatus:
    """
    Atomically increments the failed-attempt counter and locks the account
    when the threshold is reached.
    """
    now = clock.utcnow()

    db.session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(
            failed_login_attempts=Account.failed_login_attempts + 1,
            updated_at=now,
        )
    )

    # Conditional lock: only the update that finds the counter at/over the
    # threshold and the account not already locked sets locked_until.
    lock_result = db.session.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.failed_login_attempts >= _threshold(),
            or_(
                Account.is_locked.is_(False),
                Account.locked_until.is_(None),
                Account.locked_until <= now,
            ),
        )
        .values(is_locked=True, locked_until=now + _lockout_delta(), updated_at=now)
    )

    row = db.session.execute(
        select(Account.failed_login_attempts, Account.is_locked, Account.locked_until)
        .where(Account.id == account_id)
    ).one()
    db.session.commit()

    locked_now = lock_result.rowcount > 0
    locked = bool(row.is_locked and row.locked_until and row.locked_until > now)
    if locked_now:
        logger.warning("Account %s locked after %s failed attempts", account_id, row.failed_login_attempts)

    return LockoutStatus(
        locked=locked,
        attempts=row.failed_login_attempts,
        locked_until=row.locked_until,
        locked_now=locked_now,
    )


def record_success(account_id: int, ip: str = None) -> None:
    """Clears the failure counter and any lock after a successful login."""
    now = clock.utcnow()
    values = dict(
        failed_login_attempts=0,
        is_locked=False,
        locked_until=None,
        last_login_at=now,
        updated_at=now,
    )
    if ip:
        values["last_login_ip"] = ip
    db.session.execute(update(Account).where(Account.id == account_id).values(**values))
    db.session.commit()


def unlock(account_id: int) -> bool:
    """Explicit administrative unlock. Returns False for an unknown account."""
    result = db.session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(
            failed_login_attempts=0,
            is_locked=False,
            locked_until=None,
            updated_at=clock.utcnow(),
        )
    )
    db.session.commit()
    return result.rowcount > 0
