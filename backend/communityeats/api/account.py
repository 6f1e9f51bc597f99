# communityeats/api/account.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from communityeats.api.deps import get_current_identity
from communityeats.core.errors import BadRequest
from communityeats.core.security import VerifiedIdentity
from communityeats.core.user import MAX_NAME_LENGTH, upsert_user
from communityeats.infra.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/account")


class AccountSchema(BaseModel):
    name: str = Field(default="", validate_default=True)
    email: Optional[str] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        value = value.strip()
        if not value or len(value) > MAX_NAME_LENGTH:
            raise ValueError(
                f"Invalid name. Provide a non-empty name up to {MAX_NAME_LENGTH} characters."
            )
        return value

    @field_validator("email")
    @classmethod
    def strip_email(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value else None


@router.post("")
def create_account(
    payload: AccountSchema,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    token_email = identity.email

    # A token email wins; a differing body email would be spoofing
    if token_email and payload.email and payload.email.lower() != token_email.lower():
        raise BadRequest("Email mismatch between provided value and authenticated user.")

    email = (token_email or payload.email or "").strip()
    if not email:
        raise BadRequest("Email is required (either in the token or the request body).")

    user, created = upsert_user(db, identity.uid, payload.name, email, identity.email_verified)
    logger.info("Account %s %s", user.uid, "created" if created else "updated")

    return JSONResponse(
        status_code=201 if created else 200,
        content={
            "success": True,
            "user_id": user.uid,
            "message": "User created" if created else "User updated",
        },
    )
