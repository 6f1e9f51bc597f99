# communityeats/api/deps.py

import math
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from communityeats.core.admin import authorize_admin
from communityeats.core.config import Settings
from communityeats.core.errors import Unauthorized
from communityeats.core.security import IdentityVerifier, VerifiedIdentity
from communityeats.infra.database import Database
from communityeats.infra.s3 import ImageBucket

security = HTTPBearer(auto_error=False)


def lenient_int(raw: Optional[str], default: Optional[int] = None) -> Optional[int]:
    """Numeric query value, or ``default`` unless it parses to a finite number."""
    if raw is None:
        return default
    try:
        number = float(raw.strip())
    except ValueError:
        return default
    if not math.isfinite(number):
        return default
    return int(number)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_database(request: Request) -> Database:
    return request.app.state.database


def get_verifier(request: Request) -> IdentityVerifier:
    return request.app.state.verifier


def get_image_bucket(request: Request) -> ImageBucket:
    return request.app.state.image_bucket


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_verifier),
) -> VerifiedIdentity:
    if credentials is None or not credentials.credentials.strip():
        raise Unauthorized("Unauthorized")
    return verifier.verify(credentials.credentials.strip())


def get_optional_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_verifier),
) -> Optional[VerifiedIdentity]:
    """Identity for public routes; a missing or bad credential means anonymous."""
    if credentials is None or not credentials.credentials.strip():
        return None
    try:
        return verifier.verify(credentials.credentials.strip())
    except Unauthorized:
        return None


def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    verifier: IdentityVerifier = Depends(get_verifier),
    settings: Settings = Depends(get_settings),
) -> VerifiedIdentity:
    token = credentials.credentials.strip() if credentials else None
    return authorize_admin(verifier, token, settings.admin_email_allowlist)
