from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from tenancy.core.clock import Clock, utcnow
from tenancy.core.config import TenancyPolicy
from tenancy.core.errors import (
    AccountLocked,
    AuthenticationFailed,
    Conflict,
    PermissionDenied,
    ValidationFailed,
)
from tenancy.core.metrics import LOGIN_ATTEMPTS
from tenancy.models.user import User, normalize_email
from tenancy.repos.base import StoreConflictError
from tenancy.repos.store import Store
from tenancy.services.lockout_guard import LockoutGuard
from tenancy.services.token_service import TokenService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_MIN_LENGTH = 8
NAME_MAX_LENGTH = 100

# Argon2 hash strings encode parameters + salt
_ph = PasswordHasher()


def hash_password(plain_password: str) -> str:
    if not plain_password:
        raise ValueError("password must be non-empty")
    return _ph.hash(plain_password)


# verify_password() must catch Argon2 exceptions and return False
def verify_password(plain_password: str, password_hash: str) -> bool:
    if not plain_password or not password_hash:
        return False
    try:
        return _ph.verify(password_hash, plain_password)
    except (VerifyMismatchError, VerificationError, InvalidHash):
        return False


def needs_rehash(password_hash: str) -> bool:
    try:
        return _ph.check_needs_rehash(password_hash)
    except InvalidHash:
        return False


@dataclass(frozen=True, slots=True)
class LoginResult:
    user: User
    access_token: str


class AuthService:
    """Registration and password login.

    Login is the entry point the lockout guard protects: a locked identifier
    is rejected before its password is even checked, every wrong password is
    counted, and a successful login clears the count.
    """

    def __init__(
        self,
        store: Store,
        lockout: LockoutGuard,
        tokens: TokenService,
        *,
        policy: TenancyPolicy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._lockout = lockout
        self._tokens = tokens
        self._policy = policy or TenancyPolicy()
        self._clock = clock

    async def register(self, *, email: str, name: str, password: str) -> User:
        email = normalize_email(email)
        name = name.strip()
        errors = []
        if not EMAIL_PATTERN.match(email):
            errors.append({"field": "email", "message": "invalid email"})
        if not name or len(name) > NAME_MAX_LENGTH:
            errors.append(
                {"field": "name", "message": f"must be 1-{NAME_MAX_LENGTH} characters"}
            )
        if len(password) < PASSWORD_MIN_LENGTH:
            errors.append(
                {
                    "field": "password",
                    "message": f"must be at least {PASSWORD_MIN_LENGTH} characters",
                }
            )
        if errors:
            raise ValidationFailed("Invalid registration", details=errors)

        user = User.new(
            email=email,
            name=name,
            password_hash=hash_password(password),
            now=self._clock(),
        )
        async with self._store.transaction() as uow:
            if not self._policy.allow_public_registration:
                if not await uow.invites.has_pending_for_email(email, now=user.created_at):
                    raise PermissionDenied(
                        "Registration is by invitation only",
                        code="REGISTRATION_CLOSED",
                    )
            if await uow.users.get_by_email(email) is not None:
                raise Conflict("Email already registered", code="EMAIL_TAKEN")
            try:
                await uow.users.add(user)
            except StoreConflictError:
                raise Conflict("Email already registered", code="EMAIL_TAKEN") from None

        logger.info("User registered user=%s", user.id)
        return user

    async def login(self, *, email: str, password: str) -> LoginResult:
        identifier = normalize_email(email)

        status = await self._lockout.check_lockout(identifier)
        if status.is_locked:
            LOGIN_ATTEMPTS.labels(result="locked").inc()
            locked_until = status.locked_until or self._clock()
            retry_after = max(
                math.ceil((locked_until - self._clock()).total_seconds()), 0
            )
            raise AccountLocked(
                "Account temporarily locked due to repeated failed logins",
                details={
                    "is_locked": True,
                    "attempts": status.attempts,
                    "locked_until": locked_until.isoformat(),
                    "retry_after_seconds": retry_after,
                },
            )

        user = await self._verify(identifier, password)
        if user is None:
            LOGIN_ATTEMPTS.labels(result="invalid").inc()
            locked = await self._lockout.record_failed_attempt(identifier)
            logger.warning("Login failed identifier=%s locked=%s", identifier, locked)
            raise AuthenticationFailed(
                "Invalid email or password", code="INVALID_CREDENTIALS"
            )

        await self._lockout.clear_attempts(identifier)
        LOGIN_ATTEMPTS.labels(result="success").inc()
        logger.info("Login succeeded user=%s", user.id)
        token = self._tokens.create_access_token(sub=str(user.id), email=user.email)
        return LoginResult(user=user, access_token=token)

    async def _verify(self, email: str, password: str) -> User | None:
        async with self._store.transaction() as uow:
            user = await uow.users.get_by_email(email)
            if user is None or not user.is_active:
                return None
            if not verify_password(password, user.password_hash):
                return None
            # upgrade stored hash if argon2 parameters changed
            if needs_rehash(user.password_hash):
                await uow.users.update_password_hash(user.id, hash_password(password))
                logger.info("Rehashed password for user=%s", user.id)
        return user
