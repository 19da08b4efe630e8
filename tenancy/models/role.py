from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Organization role.  Closed set, ordered by ``rank``."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    CLIENT = "CLIENT"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {
    Role.CLIENT: 1,
    Role.STAFF: 2,
    Role.ADMIN: 3,
    Role.OWNER: 4,
}

# Roles an invitation may propose.  OWNER is only ever reached by transfer.
INVITABLE_ROLES = (Role.ADMIN, Role.STAFF, Role.CLIENT)
