from functools import wraps

from utils.audit import log_event
from utils.auth_context import login_required
from utils.errors import InsufficientPermissions
from utils.roles import role_satisfies


def has_role(ctx, role_name: str) -> bool:
    if ctx is None:
        return False
    return role_satisfies(ctx.role, role_name)


def require_roles(*role_names: str):
    """
    Usage: @require_roles("super_admin")
    super_admin satisfies every requirement.
    """
    def decorator(fn):
        @wraps(fn)
        @login_required
        def wrapper(ctx, *args, **kwargs):
            if not any(has_role(ctx, name) for name in role_names):
                log_event(
                    "ACCESS_DENIED",
                    account_id=ctx.account_id,
                    success=False,
                    severity="medium",
                    metadata={"required": list(role_names), "role": ctx.role},
                )
                raise InsufficientPermissions()
            return fn(ctx, *args, **kwargs)
        return wrapper
    return decorator
