# communityeats/api/listings.py

import logging
from typing import List, Literal, Optional, Union

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from communityeats.api.deps import (
    get_current_identity,
    get_image_bucket,
    get_optional_identity,
    lenient_int,
)
from communityeats.core import listing as listings
from communityeats.core.errors import BadRequest
from communityeats.core.rate_limit import UPLOAD_LIMIT, limiter
from communityeats.core.security import VerifiedIdentity
from communityeats.infra.database import get_db
from communityeats.infra.s3 import ImageBucket
from communityeats.services.listing_images import store_listing_image

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/listings")
short_links = APIRouter()


class CreateListingSchema(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = Field(..., max_length=5000)
    category: Literal["home", "share", "coop"]
    exchange_type: Literal["swap", "gift", "pay"]
    image_ids: List[str] = Field(..., min_length=1)
    thumbnail_id: str
    terms_accepted: bool = False

    country: Optional[str] = None
    state: Optional[str] = None
    suburb: Optional[str] = None
    postcode: Optional[Union[int, str]] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    contact_info: Optional[str] = Field(None, max_length=500)
    anonymous: bool = False

    @field_validator("title", "description", "thumbnail_id")
    @classmethod
    def required_text(cls, value: str, info) -> str:
        value = value.strip()
        if not value:
            raise ValueError(f"Missing field: {info.field_name}")
        return value

    @model_validator(mode="after")
    def check_listing(self):
        if self.thumbnail_id not in [i.strip() for i in self.image_ids]:
            raise ValueError("Thumbnail must be one of the image IDs")
        if not self.terms_accepted:
            raise ValueError("You must accept the terms to post a listing")
        return self


class LocationPatch(BaseModel):
    country: Optional[str] = None
    state: Optional[str] = None
    suburb: Optional[str] = None
    postcode: Optional[Union[int, str]] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class UpdateListingSchema(BaseModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    exchange_type: Optional[str] = None
    status: Optional[str] = None
    contact_info: Optional[str] = None
    location: Optional[LocationPatch] = None

    @field_validator("id")
    @classmethod
    def check_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError('Missing or invalid "id"')
        return value


# =========================
# COLLECTION ROUTES
# =========================

@router.get("")
def list_listings(
    status: str = "available",
    limit: Optional[str] = None,
    db: Session = Depends(get_db),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    return listings.list_public_listings(db, bucket, status=status, limit=lenient_int(limit, 20))


@router.post("")
def create_listing(
    payload: CreateListingSchema,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    listing = listings.create_listing(db, identity.uid, payload.model_dump())
    return JSONResponse(
        status_code=201,
        content={"success": True, "id": listing.id, "public_slug": listing.public_slug},
    )


@router.get("/mine")
def my_listings(
    status: Optional[str] = None,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    return {"listings": listings.list_owner_listings(db, bucket, identity.uid, status)}


@router.get("/interested")
def interested_listings(
    limit: Optional[str] = None,
    cursor_created_at: Optional[str] = None,
    cursor_id: Optional[str] = None,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    items, next_cursor = listings.list_interested_listings(
        db, bucket, identity.uid, lenient_int(limit, 20), cursor_created_at, cursor_id
    )
    return {"success": True, "listings": items, "next_cursor": next_cursor}


@router.post("/update")
def update_listing(
    payload: UpdateListingSchema,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    changes = payload.model_dump(exclude={"id"}, exclude_none=True)
    listing = listings.update_listing(db, payload.id, identity.uid, changes)
    return {
        "success": True,
        "id": listing.id,
        "updated": listings.public_view(listing, bucket, identity.uid),
    }


@router.post("/upload-image")
@limiter.limit(UPLOAD_LIMIT)
async def upload_image(
    request: Request,
    file: Optional[UploadFile] = File(None),
    identity: VerifiedIdentity = Depends(get_current_identity),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    if file is None:
        raise BadRequest("No file uploaded")
    data = await file.read()
    if not data:
        raise BadRequest("No file uploaded")

    image_id, url = store_listing_image(bucket, file.filename or "image", data, file.content_type)
    logger.info("User %s uploaded image %s", identity.uid, image_id)
    return {"id": image_id, "url": url}


# =========================
# SINGLE LISTING ROUTES
# =========================

@router.get("/{listing_key}")
def get_listing(
    listing_key: str,
    identity: Optional[VerifiedIdentity] = Depends(get_optional_identity),
    db: Session = Depends(get_db),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    listing = listings.find_listing(db, listing_key)
    view = listings.public_view(listing, bucket, identity.uid if identity else None)
    view["owner_name"] = listings.owner_display_name(db, listing)
    return view


@router.delete("/{listing_id}")
def delete_listing(
    listing_id: str,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    bucket: ImageBucket = Depends(get_image_bucket),
):
    failed = listings.delete_listing(db, bucket, listing_id, identity.uid)
    return {"success": True, "id": listing_id, "image_delete_failures": failed}


@router.post("/{listing_id}/claim")
def register_interest(
    listing_id: str,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    added = listings.register_interest(db, listing_id, identity.uid)
    return {"success": True, "already_registered": not added}


@router.get("/{listing_id}/interested-users")
def interested_users(
    listing_id: str,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    return {"interested_users": listings.list_interested_users(db, listing_id, identity.uid)}


@short_links.get("/l/{listing_id}")
def follow_short_link(listing_id: str, db: Session = Depends(get_db)):
    return RedirectResponse(url=f"/listings/{listings.resolve_short_link(db, listing_id)}")
