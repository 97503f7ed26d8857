import logging

import bcrypt
from flask import current_app, has_app_context

from utils.errors import PasswordHashError

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes; newer releases reject longer input
BCRYPT_MAX_BYTES = 72


def _rounds() -> int:
    if has_app_context():
        return int(current_app.config.get("BCRYPT_ROUNDS", DEFAULT_ROUNDS))
    return DEFAULT_ROUNDS


def _encode(plain_password: str) -> bytes:
    return plain_password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(plain_password: str) -> tuple[str, str]:
    """
    Returns (hash, salt). The salt is also embedded in the bcrypt hash; it is
    returned separately so the account row can record it.
    """
    if not isinstance(plain_password, str) or len(plain_password) == 0:
        raise ValueError("Password must be a non-empty string")

    salt = bcrypt.gensalt(rounds=_rounds())
    try:
        hashed = bcrypt.hashpw(_encode(plain_password), salt)
    except (ValueError, TypeError) as exc:
        logger.error("Password hashing failed: %s", type(exc).__name__)
        raise PasswordHashError() from exc
    return hashed.decode("utf-8"), salt.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(
            _encode(plain_password),
            password_hash.encode("utf-8")
        )
    except (ValueError, TypeError) as exc:
        # a corrupt stored hash is an internal error, not a mismatch
        logger.error("Password verification failed: %s", type(exc).__name__)
        raise PasswordHashError() from exc
