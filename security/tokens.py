import hashlib
import secrets
import uuid
from datetime import datetime, timezone

import jwt
from flask import current_app

from utils import clock
from utils.errors import InvalidToken, TokenExpired

REQUIRED_CLAIMS = ["sub", "email", "role", "iat", "exp", "iss", "aud", "jti"]


def hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random / signed tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    """Opaque, not self-describing; only its hash is stored."""
    return secrets.token_hex(64)


def _epoch(value: datetime) -> int:
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def create_access_token(account, expires_at: datetime, now: datetime = None) -> str:
    now = now or clock.utcnow()
    payload = {
        "sub": str(account.id),
        "email": account.email,
        "role": account.role,
        "must_change_password": bool(account.must_change_password),
        "iat": _epoch(now),
        "exp": _epoch(expires_at),
        "iss": current_app.config["JWT_ISSUER"],
        "aud": current_app.config["JWT_AUDIENCE"],
        # unique per token so two tokens issued in the same second never collide
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(
        payload,
        current_app.config["JWT_SECRET"],
        algorithm=current_app.config.get("JWT_ALGORITHM", "HS256"),
    )


def decode_access_token(token: str) -> dict:
    """
    Verifies signature, issuer and audience. Expiry is checked against the
    application clock rather than inside PyJWT.
    """
    try:
        claims = jwt.decode(
            token,
            current_app.config["JWT_SECRET"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
            issuer=current_app.config["JWT_ISSUER"],
            audience=current_app.config["JWT_AUDIENCE"],
            options={"require": REQUIRED_CLAIMS, "verify_exp": False, "verify_iat": False},
        )
    except jwt.InvalidTokenError as exc:
        raise InvalidToken() from exc

    if not isinstance(claims.get("exp"), int) or claims["exp"] <= _epoch(clock.utcnow()):
        raise TokenExpired()
    return claims
