from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Set

from .errors import Forbidden, InvalidArgument

# Map identity-provider role claims -> permissions on the ticket form
ROLE_PERMS: Dict[str, Set[str]] = {
    "viewer": {"tickets:view"},
    "operator": {"tickets:view", "tickets:save"},
    "admin": {"tickets:view", "tickets:save"},
}

DEFAULT_ROLE = "operator"


@dataclass(frozen=True)
class Actor:
    """The calling person as resolved by the identity provider."""
    person_id: int
    name: str = ""
    permissions: FrozenSet[str] = frozenset(ROLE_PERMS[DEFAULT_ROLE])


def roles_from_claims(claims: dict) -> List[str]:
    roles = {r for r in (claims.get("roles") or []) if r in ROLE_PERMS}
    # default role if none
    return sorted(roles) if roles else [DEFAULT_ROLE]


def actor_from_claims(claims: dict) -> Actor:
    raw = claims.get("person_id", claims.get("sub"))
    try:
        person_id = int(raw)
    except (TypeError, ValueError):
        raise InvalidArgument("Token does not carry a numeric person id")

    allowed = set()
    for r in roles_from_claims(claims):
        allowed |= ROLE_PERMS.get(r, set())
    name = claims.get("name") or claims.get("preferred_username") or claims.get("email") or ""
    return Actor(person_id=person_id, name=name, permissions=frozenset(allowed))


def require_perm(actor: Actor, perm: str) -> None:
    if perm not in actor.permissions:
        raise Forbidden(f"Missing permission: {perm}")
