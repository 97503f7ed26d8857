ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"

ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)

# higher rank satisfies every lower requirement
ROLE_RANK = {ROLE_ADMIN: 1, ROLE_SUPER_ADMIN: 2}


def normalize_role(value: str) -> str:
    role = (value or "").strip().lower()
    if role not in ROLE_RANK:
        raise ValueError(f"Unknown role: {value!r}")
    return role


def role_satisfies(role: str, required: str) -> bool:
    return ROLE_RANK.get(role, 0) >= ROLE_RANK.get(required, len(ROLE_RANK) + 1)
