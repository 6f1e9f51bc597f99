# communityeats/api/admin.py

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from communityeats.api.deps import lenient_int, require_admin
from communityeats.core import listing as listings
from communityeats.core.errors import BadRequest
from communityeats.core.security import VerifiedIdentity
from communityeats.infra.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


class ModerationUpdateSchema(BaseModel):
    id: str = ""
    status: str = ""


@router.get("/verify")
def verify_admin(identity: VerifiedIdentity = Depends(require_admin)):
    return {
        "ok": True,
        "uid": identity.uid,
        "email": identity.email,
        "claims": {
            "admin": identity.claims.get("admin") is True,
            "role": identity.claims.get("role"),
        },
    }


@router.get("/listings")
def moderation_listings(
    status: str = "all",
    limit: Optional[str] = None,
    identity: VerifiedIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"listings": listings.admin_list_listings(db, status, lenient_int(limit, 50))}


@router.post("/listings/update")
def moderate_listing(
    payload: ModerationUpdateSchema,
    identity: VerifiedIdentity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    listing_id = payload.id.strip()
    status = payload.status.strip()
    if not listing_id or not status:
        raise BadRequest("Missing id or status")

    listing = listings.set_listing_status(db, listing_id, status)
    logger.info("Admin %s set listing %s to %s", identity.uid, listing.id, status)
    return {"success": True, "id": listing.id, "status": listing.status}
