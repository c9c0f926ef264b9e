from __future__ import annotations

from types import MappingProxyType
from typing import FrozenSet, Mapping

from credence.storage.models import Role

GET_USERS = "getUsers"
MANAGE_USERS = "manageUsers"

RoleRights = Mapping[Role, FrozenSet[str]]

# Read-only view; built once at import and handed to the authorization engine
ROLE_RIGHTS: RoleRights = MappingProxyType(
    {
        Role.USER: frozenset(),
        Role.ADMIN: frozenset({GET_USERS, MANAGE_USERS}),
    }
)


def rights_for(role: Role, role_rights: RoleRights = ROLE_RIGHTS) -> FrozenSet[str]:
    return role_rights.get(Role(role), frozenset())


__all__ = ["GET_USERS", "MANAGE_USERS", "ROLE_RIGHTS", "RoleRights", "rights_for"]
