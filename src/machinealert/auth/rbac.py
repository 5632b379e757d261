"""
Role-based access control: closed role set and capability checks.
"""

import unicodedata
from collections.abc import Iterable
from enum import Enum

from machinealert.shared.exceptions import ForbiddenError
from machinealert.shared.logging import get_logger

logger = get_logger(__name__)


class Role(str, Enum):
    """Roles a user claim may carry."""

    ADMIN = "ADMIN"
    USER = "USER"
    PRODUCCION = "PRODUCCION"
    LOGISTICA = "LOGISTICA"

    @classmethod
    def from_string(cls, role_str: str) -> "Role":
        """Convert a claim string to a Role.

        Matching ignores case and accents, so "Logística" resolves to
        LOGISTICA.

        Raises:
            ValueError: If role string is unknown.
        """
        folded = unicodedata.normalize("NFKD", role_str.strip())
        folded = "".join(ch for ch in folded if not unicodedata.combining(ch)).upper()
        try:
            return cls(folded)
        except ValueError:
            raise ValueError(f"Invalid role: {role_str}")


class Capability(str, Enum):
    """Operations guarded by role checks.

    Anything not listed here only needs an authenticated caller.
    """

    COMPLETE_CALL = "complete_call"
    DELETE_CALL = "delete_call"


class RolePermissions:
    """Which roles grant each capability."""

    GRANTS: dict[Capability, frozenset[Role]] = {
        Capability.COMPLETE_CALL: frozenset({Role.LOGISTICA}),
        Capability.DELETE_CALL: frozenset({Role.LOGISTICA}),
    }

    @classmethod
    def roles_for(cls, capability: Capability) -> frozenset[Role]:
        return cls.GRANTS.get(capability, frozenset())


def parse_roles(roles: Iterable[str]) -> set[Role]:
    """Parse claim strings, dropping the ones outside the closed role set."""
    parsed: set[Role] = set()
    for raw in roles:
        try:
            parsed.add(Role.from_string(raw))
        except ValueError:
            logger.debug("Ignoring unknown role claim", extra={"role": raw})
    return parsed


def has_capability(roles: Iterable[str], capability: Capability) -> bool:
    """Return True if any of ``roles`` grants ``capability``."""
    return bool(parse_roles(roles) & RolePermissions.roles_for(capability))


def require_capability(roles: Iterable[str], capability: Capability, message: str) -> None:
    """Raise ForbiddenError unless ``roles`` grant ``capability``."""
    roles = list(roles)
    if not has_capability(roles, capability):
        logger.warning(
            "Access denied",
            extra={
                "capability": capability.value,
                "roles": roles,
                "event_type": "access_denied",
            },
        )
        raise ForbiddenError(
            message,
            details={
                "required_roles": sorted(r.value for r in RolePermissions.roles_for(capability)),
            },
        )


def creator_role_tag(roles: Iterable[str]) -> str:
    """Role recorded on a new call: LOGISTICA if claimed, else PRODUCCION."""
    if Role.LOGISTICA in parse_roles(roles):
        return Role.LOGISTICA.value
    return Role.PRODUCCION.value

