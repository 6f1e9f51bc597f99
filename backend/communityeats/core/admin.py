# communityeats/core/admin.py

from typing import Iterable, Optional

from communityeats.core.errors import Forbidden, Unauthorized
from communityeats.core.security import IdentityVerifier, VerifiedIdentity


def is_admin(identity: VerifiedIdentity, allowlist: Iterable[str]) -> bool:
    claims = identity.claims
    if claims.get("admin") is True:
        return True
    if claims.get("role") == "admin":
        return True

    email = identity.email.lower() if identity.email else None
    return email in set(allowlist) if email else False


def authorize_admin(
    verifier: IdentityVerifier,
    token: Optional[str],
    allowlist: Iterable[str],
) -> VerifiedIdentity:
    """Verify the credential and require admin privilege."""
    if not token:
        raise Unauthorized("Unauthorized")

    identity = verifier.verify(token)
    if not is_admin(identity, allowlist):
        raise Forbidden("Forbidden")
    return identity
