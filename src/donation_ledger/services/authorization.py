"""
Actor authorization for ledger writes.

Identity, sessions and sign-in belong to the surrounding application. The
ledger receives an Actor (identity, role and the set of locations the actor
may operate on) and checks it before any write.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Union

from donation_ledger.utils.constants import ROLE_ADMIN, ROLE_USER

from .exceptions import AuthorizationDenied


@dataclass(frozen=True)
class Actor:
    """
    Authenticated caller.

    Attributes:
        user_id: Opaque identifier issued by the authentication layer
        role: "admin" operates on every location; any other role is limited
            to ``location_ids``
        location_ids: Locations the actor may operate on
    """

    user_id: Union[int, str]
    role: str = ROLE_USER
    location_ids: FrozenSet[int] = field(default_factory=frozenset)

    def __post_init__(self):
        # Accept any iterable of ids from callers
        object.__setattr__(self, "location_ids", frozenset(self.location_ids))

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def can_access(self, location_id: Optional[int]) -> bool:
        """Return True if the actor may operate on ``location_id``."""
        if self.is_admin:
            return True
        return location_id is not None and location_id in self.location_ids


def require_location_access(actor: Actor, location_id: Optional[int]) -> None:
    """
    Raise AuthorizationDenied unless the actor may operate on the location.

    Raises:
        AuthorizationDenied: If access is denied
    """
    if not actor.can_access(location_id):
        raise AuthorizationDenied(location_id)


def require_locations_access(actor: Actor, location_ids: Iterable[Optional[int]]) -> None:
    """
    Check several locations at once.

    Raises:
        AuthorizationDenied: Naming the lowest denied location id
    """
    denied = sorted(loc for loc in set(location_ids) if not actor.can_access(loc))
    if denied:
        raise AuthorizationDenied(denied[0])


def require_admin(actor: Actor, location_id: Optional[int] = None) -> None:
    """
    Raise AuthorizationDenied unless the actor is an administrator.

    Args:
        actor: Caller
        location_id: Location reported in the error
    """
    if not actor.is_admin:
        raise AuthorizationDenied(location_id)
