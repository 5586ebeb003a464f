from enum import Enum


class Role(str, Enum):
    ADMIN = "ADMIN"
    FINANCE = "FINANCE"
    MEMBER = "MEMBER"
    SCANNER = "SCANNER"


ROLE_HIERARCHY: dict[Role, int] = {
    Role.ADMIN: 4,
    Role.FINANCE: 3,
    Role.MEMBER: 2,
    Role.SCANNER: 1,
}


def has_role(actual: Role | None, required: Role) -> bool:
    """True when `actual` is `required` or ranks above it."""
    if actual is None:
        return False
    return ROLE_HIERARCHY[Role(actual)] >= ROLE_HIERARCHY[Role(required)]
