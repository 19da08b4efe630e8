"""JWT access token creation and validation (ES256).

The token carries the authenticated session: ``sub`` is the user id and
``email`` the normalized email that invitation acceptance compares against.
Organization roles are deliberately NOT in the token; they are resolved per
request from the membership table so that role changes apply immediately.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

ALGORITHM = "ES256"
ISSUER = "tenancy-service"
AUDIENCE = "tenancy-service"
ACCESS_TOKEN_TTL_MIN = 60


class TokenService:
    def __init__(
        self,
        private_key: ec.EllipticCurvePrivateKey | None = None,
        *,
        ttl_minutes: int = ACCESS_TOKEN_TTL_MIN,
    ) -> None:
        # No key configured: ephemeral key pair, tokens die with the process.
        self._private_key = private_key or ec.generate_private_key(ec.SECP256R1())
        self._public_key = self._private_key.public_key()
        self._ttl = timedelta(minutes=ttl_minutes)

    @classmethod
    def from_pem(cls, pem: bytes, **kwargs) -> TokenService:
        key = serialization.load_pem_private_key(pem, password=None)
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            raise ValueError("JWT signing key must be an EC private key")
        return cls(key, **kwargs)

    def create_access_token(self, *, sub: str, email: str) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": sub,
            "email": email,
            "iss": ISSUER,
            "aud": AUDIENCE,
            "exp": now + self._ttl,
            "iat": now,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(payload, self._private_key, algorithm=ALGORITHM)

    def decode_access_token(self, token: str) -> dict:
        """Verify signature and claims, return the payload.

        Algorithm is pinned to ES256.  Raises jwt.ExpiredSignatureError or
        jwt.InvalidTokenError.
        """
        return jwt.decode(
            token,
            self._public_key,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
            audience=AUDIENCE,
            options={"require": ["sub", "email", "exp", "iat", "jti"]},
        )
