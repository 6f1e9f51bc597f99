# communityeats/core/security.py

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import jwt
from cryptography.hazmat.primitives import serialization

from communityeats.core.config import Settings
from communityeats.core.errors import Unauthorized

logger = logging.getLogger(__name__)


@dataclass
class VerifiedIdentity:
    uid: str
    email: Optional[str] = None
    email_verified: bool = False
    claims: Dict[str, Any] = field(default_factory=dict)


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


class IdentityVerifier:
    """
    Verifies bearer credentials issued by the identity provider.

    Tokens are JWTs signed either with a shared secret (HS256) or with the
    provider's private key, in which case the PEM public key is configured.
    """

    def __init__(
        self,
        secret: Optional[str] = None,
        public_key: Optional[str] = None,
        algorithms: Optional[List[str]] = None,
        audience: Optional[str] = None,
    ):
        if public_key:
            self._key = serialization.load_pem_public_key(public_key.encode("utf-8"))
        else:
            self._key = secret
        self.algorithms = algorithms or ["HS256"]
        self.audience = audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdentityVerifier":
        return cls(
            secret=settings.jwt_secret,
            public_key=settings.jwt_public_key,
            algorithms=settings.jwt_algorithms,
            audience=settings.jwt_audience,
        )

    def verify(self, token: str) -> VerifiedIdentity:
        if self._key is None:
            logger.error("No credential verification key configured")
            raise Unauthorized("Unauthorized")

        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=self.algorithms,
                audience=self.audience,
                options={"verify_aud": self.audience is not None},
            )
        except jwt.PyJWTError as e:
            logger.info("Credential verification failed: %s", e)
            raise Unauthorized("Invalid token")

        uid = claims.get("uid") or claims.get("sub")
        if not isinstance(uid, str) or not uid.strip():
            raise Unauthorized("Invalid token")

        email = claims.get("email")
        return VerifiedIdentity(
            uid=uid.strip(),
            email=email if isinstance(email, str) else None,
            email_verified=bool(claims.get("email_verified", False)),
            claims=claims,
        )
