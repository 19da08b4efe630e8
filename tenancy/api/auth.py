"""Registration, login and the current-user endpoint."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from tenancy.api.dependencies import ContainerDep, CurrentUser
from tenancy.api.ratelimit import LOGIN_LIMIT, REGISTER_LIMIT, require_rate_limit
from tenancy.core.errors import AuthenticationFailed
from tenancy.models.user import User

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterIn(BaseModel):
    email: str
    name: str
    password: str


class LoginIn(BaseModel):
    email: str
    password: str


class UserOut(BaseModel):
    id: UUID
    email: str
    name: str
    created_at: datetime

    @classmethod
    def of(cls, user: User) -> UserOut:
        return cls(
            id=user.id, email=user.email, name=user.name, created_at=user.created_at
        )


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class MembershipOut(BaseModel):
    org_id: UUID
    membership_id: UUID
    role: str


class MeOut(UserOut):
    memberships: list[MembershipOut]


@router.post(
    "/register",
    response_model=UserOut,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_rate_limit(REGISTER_LIMIT, scope="register"))],
)
async def register(body: RegisterIn, container: ContainerDep) -> UserOut:
    user = await container.auth.register(
        email=body.email, name=body.name, password=body.password
    )
    return UserOut.of(user)


@router.post(
    "/login",
    response_model=TokenOut,
    dependencies=[Depends(require_rate_limit(LOGIN_LIMIT, scope="login"))],
)
async def login(body: LoginIn, container: ContainerDep) -> TokenOut:
    result = await container.auth.login(email=body.email, password=body.password)
    return TokenOut(access_token=result.access_token, user=UserOut.of(result.user))


@router.get("/me", response_model=MeOut)
async def me(
    principal: CurrentUser,
    container: ContainerDep,
) -> MeOut:
    async with container.store.transaction() as uow:
        user = await uow.users.get_by_id(principal.user_id)
        memberships = await uow.memberships.list_by_user(principal.user_id)
    if user is None:
        raise AuthenticationFailed("User no longer exists")
    return MeOut(
        **UserOut.of(user).model_dump(),
        memberships=[
            MembershipOut(org_id=m.org_id, membership_id=m.id, role=m.role.value)
            for m in memberships
        ],
    )
