from __future__ import annotations

import logging
from dataclasses import replace
from typing import Annotated
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from tenancy.container import Container
from tenancy.core.errors import PermissionDenied
from tenancy.models.principal import Principal
from tenancy.models.role import Role

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def get_container(request: Request) -> Container:
    return request.app.state.container


ContainerDep = Annotated[Container, Depends(get_container)]


def require_user(
    raw_token: Annotated[str, Depends(oauth2_scheme)],
    container: ContainerDep,
) -> Principal:
    """Validate the bearer token and return the caller as a Principal."""
    try:
        claims = container.tokens.decode_access_token(raw_token)
        user_id = UUID(claims["sub"])
    except jwt.ExpiredSignatureError:
        logger.warning("Expired token rejected")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None
    except (jwt.InvalidTokenError, ValueError) as e:
        logger.warning("Invalid token rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    return Principal(user_id=user_id, email=claims["email"])


CurrentUser = Annotated[Principal, Depends(require_user)]


# ---------------------------------------------------------------------------
# Org-scoped access guards
# ---------------------------------------------------------------------------


async def resolve_org_principal(
    org_id: UUID,
    principal: CurrentUser,
    container: ContainerDep,
) -> Principal:
    """Attach the caller's membership in ``org_id`` to the Principal.

    A missing organization and a missing membership look the same to the
    caller (403 NOT_MEMBER), so organization ids cannot be probed.
    """
    async with container.store.transaction() as uow:
        membership = await uow.memberships.get_for_user(org_id, principal.user_id)

    if membership is None:
        logger.warning(
            "Access denied: user=%s not a member of org=%s",
            principal.user_id,
            org_id,
        )
        raise PermissionDenied("Not a member of this organization", code="NOT_MEMBER")

    return replace(
        principal,
        org_id=org_id,
        membership_id=membership.id,
        org_role=membership.role,
    )


def require_org_role(min_role: Role):
    """Dependency factory: demand at least ``min_role`` in the scoped org.

    Usage::

        @router.get("/organizations/{org_id}/members")
        async def list_members(
            principal: Annotated[Principal, Depends(require_org_role(Role.ADMIN))],
        ): ...
    """

    def _guard(
        principal: Annotated[Principal, Depends(resolve_org_principal)],
    ) -> Principal:
        if not principal.has_at_least(min_role):
            logger.warning(
                "Access denied: user=%s org_role=%s required=%s org=%s",
                principal.user_id,
                principal.org_role.value if principal.org_role else None,
                min_role.value,
                principal.org_id,
            )
            raise PermissionDenied(
                f"Requires {min_role.value} role or higher",
                details={"required_role": min_role.value},
            )
        return principal

    return _guard


OrgMember = Annotated[Principal, Depends(require_org_role(Role.CLIENT))]
OrgAdmin = Annotated[Principal, Depends(require_org_role(Role.ADMIN))]
OrgOwner = Annotated[Principal, Depends(require_org_role(Role.OWNER))]


def scoped_org_id(principal: Principal) -> UUID:
    """org_id of an org-scoped Principal; the org guards always set it."""
    if principal.org_id is None:
        raise HTTPException(status_code=500, detail="org context not resolved")
    return principal.org_id
