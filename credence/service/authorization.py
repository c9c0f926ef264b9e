from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Iterable, Optional, Union

from credence.logging import get_logger
from credence.service.codec import TokenCodec
from credence.service.errors import INSUFFICIENT_PERMISSIONS
from credence.service.results import ErrorKind, Failure
from credence.service.roles import RoleRights, rights_for
from credence.storage.common import CredentialStore
from credence.storage.models import TokenType, User

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    user: User
    permissions: AbstractSet[str]

    @property
    def id(self) -> str:
        return self.user.id


def extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "bearer" or not value.strip():
        return None
    return value.strip()


class AuthorizationEngine:
    """Resolves a bearer access token to a principal and checks permissions.

    Stateless apart from the injected codec, credential store and role map,
    so one instance serves concurrent requests.
    """

    def __init__(
        self, codec: TokenCodec, users: CredentialStore, role_rights: RoleRights
    ) -> None:
        self.codec = codec
        self.users = users
        self.role_rights = role_rights

    async def authenticate(self, bearer: Optional[str]) -> Union[Principal, Failure]:
        if not bearer:
            return Failure(ErrorKind.UNAUTHENTICATED)
        claims = self.codec.decode(bearer)
        if isinstance(claims, Failure):
            logger.info("authorization_denied", reason=claims.kind.value)
            return Failure(ErrorKind.UNAUTHENTICATED)
        # refresh/reset/verify tokens are never bearer credentials
        if claims.type != TokenType.ACCESS:
            logger.info("authorization_denied", reason="token_type", type=claims.type.value)
            return Failure(ErrorKind.UNAUTHENTICATED)
        user = await self.users.find_by_id(claims.sub)
        if user is None:
            logger.info("authorization_denied", reason="unknown_subject")
            return Failure(ErrorKind.UNAUTHENTICATED)
        return Principal(
            user=user.public(), permissions=rights_for(user.role, self.role_rights)
        )

    async def authorize(
        self,
        bearer: Optional[str],
        required: Iterable[str] = (),
        self_access_id: Optional[str] = None,
        *,
        allow_self_access: bool = False,
    ) -> Union[Principal, Failure]:
        principal = await self.authenticate(bearer)
        if isinstance(principal, Failure):
            return principal
        needed = frozenset(required)
        if not needed or needed <= principal.permissions:
            return principal
        if allow_self_access and self_access_id is not None and self_access_id == principal.id:
            return principal
        logger.info(
            "authorization_denied",
            reason="insufficient_permissions",
            user_id=principal.id,
            required=sorted(needed),
        )
        return Failure(ErrorKind.INSUFFICIENT_PERMISSIONS, INSUFFICIENT_PERMISSIONS)


__all__ = ["AuthorizationEngine", "Principal", "extract_bearer"]
