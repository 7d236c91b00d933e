from enum import Enum

from src.seatledger.core.errors import PermissionDenied


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"


class Capability(str, Enum):
    MANAGE_PLANS = "manage_plans"
    MANAGE_SEATS = "manage_seats"
    MANAGE_BILLING = "manage_billing"
    VIEW_ORGANIZATION = "view_organization"
    VIEW_ALL_ORGANIZATIONS = "view_all_organizations"


ROLE_CAPABILITIES = {
    Role.USER: frozenset(),
    Role.ADMIN: frozenset(
        {
            Capability.MANAGE_SEATS,
            Capability.MANAGE_BILLING,
            Capability.VIEW_ORGANIZATION,
        }
    ),
    Role.SUPER_ADMIN: frozenset(
        {
            Capability.MANAGE_PLANS,
            Capability.VIEW_ORGANIZATION,
            Capability.VIEW_ALL_ORGANIZATIONS,
        }
    ),
}


def has_capability(role, capability: Capability) -> bool:
    """Return True if `role` (a Role or its string value) grants `capability`."""
    try:
        role = Role(role)
    except ValueError:
        return False
    return capability in ROLE_CAPABILITIES[role]


def require_capability(role, capability: Capability) -> None:
    if not has_capability(role, capability):
        raise PermissionDenied(
            "You do not have permission to perform this action",
            capability=capability.value,
        )
