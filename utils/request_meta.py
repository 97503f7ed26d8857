from flask import request


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        # first hop is the original client
        return forwarded.split(",")[0].strip()[:64] or "unknown"
    return (request.remote_addr or "unknown")[:64]


def user_agent() -> str:
    return (request.headers.get("User-Agent") or "unknown")[:255]
