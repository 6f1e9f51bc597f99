# communityeats/core/listing.py

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from communityeats.core import clock
from communityeats.core.errors import BadRequest, Forbidden, NotFound
from communityeats.core.slug import build_listing_slug, ensure_unique_slug
from communityeats.core.user import fetch_display_names
from communityeats.infra.s3 import ImageBucket
from communityeats.models.listing import (
    CATEGORIES,
    EXCHANGE_TYPES,
    LISTING_STATUSES,
    Listing,
    ListingInterest,
)
from communityeats.models.user import User
from communityeats.services.listing_images import (
    delete_listing_images,
    signed_url_or_none,
    signed_urls,
)

logger = logging.getLogger(__name__)

LOCATION_FIELDS = ("country", "state", "suburb")
REQUIRED_FIELDS = ("title", "description", "category", "exchange_type", "thumbnail_id", "image_ids")


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _parse_postcode(value: Any) -> Optional[int]:
    if value is None or value == "":
        return 0
    try:
        number = int(str(value).strip())
    except ValueError:
        return None
    return number if number >= 0 else None


# =========================
# LOOKUPS
# =========================

def get_listing(db: Session, listing_id: str, for_update: bool = False) -> Listing:
    query = db.query(Listing).filter(Listing.id == listing_id)
    if for_update:
        query = query.with_for_update()
    listing = query.first()
    if listing is None:
        raise NotFound("Listing not found")
    return listing


def find_listing(db: Session, id_or_slug: str) -> Listing:
    listing = (
        db.query(Listing)
        .filter(or_(Listing.id == id_or_slug, Listing.public_slug == id_or_slug))
        .first()
    )
    if listing is None:
        raise NotFound("Listing not found")
    return listing


def resolve_short_link(db: Session, raw_id: str) -> str:
    """Canonical public slug for a listing id, or the raw id when it has none."""
    slug = db.query(Listing.public_slug).filter(Listing.id == raw_id).scalar()
    return slug or raw_id


# =========================
# CREATE / UPDATE / DELETE
# =========================

def create_listing(db: Session, owner_uid: str, data: Dict[str, Any]) -> Listing:
    for name in REQUIRED_FIELDS:
        if not data.get(name):
            raise BadRequest(f"Missing field: {name}")

    if data.get("terms_accepted") is not True:
        raise BadRequest("You must accept the terms to post a listing")
    if data["category"] not in CATEGORIES:
        raise BadRequest("Invalid category")
    if data["exchange_type"] not in EXCHANGE_TYPES:
        raise BadRequest("Invalid exchange type")

    image_ids = [i.strip() for i in data["image_ids"] if isinstance(i, str) and i.strip()]
    image_ids = list(dict.fromkeys(image_ids))
    thumbnail_id = _clean(data["thumbnail_id"])
    if thumbnail_id not in image_ids:
        raise BadRequest("Thumbnail must be one of the image IDs")

    postcode = _parse_postcode(data.get("postcode"))
    if postcode is None:
        raise BadRequest("Invalid postcode")

    now = clock.now()
    title = _clean(data["title"])
    listing = Listing(
        user_id=owner_uid,
        title=title,
        description=_clean(data["description"]),
        category=data["category"],
        exchange_type=data["exchange_type"],
        status="available",
        contact_info=_clean(data.get("contact_info")) or None,
        anonymous=bool(data.get("anonymous")),
        country=_clean(data.get("country")).lower(),
        state=_clean(data.get("state")).lower(),
        suburb=_clean(data.get("suburb")).lower(),
        postcode=postcode,
        place_id=_clean(data.get("place_id")) or None,
        latitude=data.get("latitude"),
        longitude=data.get("longitude"),
        image_ids=image_ids,
        thumbnail_id=thumbnail_id,
        created_at=now,
        updated_at=now,
    )
    listing.public_slug = ensure_unique_slug(db, build_listing_slug(title, now))

    db.add(listing)
    db.commit()
    logger.info("Listing %s created by %s", listing.id, owner_uid)
    return listing


def update_listing(db: Session, listing_id: str, requester_uid: str, changes: Dict[str, Any]) -> Listing:
    """Owner-only partial update; nested location fields merge individually."""
    listing = get_listing(db, listing_id)
    if listing.user_id != requester_uid:
        raise Forbidden("Forbidden: not the owner")

    updates: Dict[str, Any] = {}
    errors: List[str] = []

    for name in ("title", "description", "contact_info"):
        value = _clean(changes.get(name))
        if value:
            updates[name] = value

    for name, allowed, label in (
        ("category", CATEGORIES, "category"),
        ("exchange_type", EXCHANGE_TYPES, "exchange type"),
        ("status", LISTING_STATUSES, "status"),
    ):
        value = _clean(changes.get(name))
        if not value:
            continue
        if value not in allowed:
            errors.append(f"Invalid {label}")
        else:
            updates[name] = value

    location = changes.get("location") or {}
    if isinstance(location, dict):
        for name in LOCATION_FIELDS:
            value = _clean(location.get(name))
            if value:
                updates[name] = value.lower()
        if location.get("postcode") is not None:
            postcode = _parse_postcode(location["postcode"])
            if postcode is None:
                errors.append("Invalid postcode")
            else:
                updates["postcode"] = postcode
        if _clean(location.get("place_id")):
            updates["place_id"] = _clean(location["place_id"])
        for name in ("latitude", "longitude"):
            if isinstance(location.get(name), (int, float)):
                updates[name] = float(location[name])

    if errors:
        raise BadRequest("; ".join(errors))

    changed = {k: v for k, v in updates.items() if getattr(listing, k) != v}
    if not changed:
        return listing

    for name, value in changed.items():
        setattr(listing, name, value)
    if "title" in changed:
        listing.public_slug = ensure_unique_slug(
            db, build_listing_slug(listing.title, listing.created_at), ignore_id=listing.id
        )
    listing.updated_at = clock.now()
    db.commit()
    return listing


def delete_listing(db: Session, bucket: ImageBucket, listing_id: str, requester_uid: str) -> List[str]:
    """
    Delete the listing and its interests, then its stored images. Image
    deletion is best-effort and happens after the commit. Returns image ids
    that could not be deleted.
    """
    listing = get_listing(db, listing_id)
    if listing.user_id != requester_uid:
        raise Forbidden("Forbidden: not the owner")

    image_ids = list(listing.image_ids or [])
    db.delete(listing)
    db.commit()
    logger.info("Listing %s deleted by owner", listing_id)

    return delete_listing_images(bucket, image_ids)


def set_listing_status(db: Session, listing_id: str, status: str) -> Listing:
    """Moderation status change, no ownership check."""
    if status not in LISTING_STATUSES:
        raise BadRequest("Invalid status")
    listing = get_listing(db, listing_id)
    listing.status = status
    listing.updated_at = clock.now()
    db.commit()
    return listing


# =========================
# INTEREST
# =========================

def register_interest(db: Session, listing_id: str, user_uid: str) -> bool:
    """
    Add the user to the listing's interested set. Returns False when the
    user was already registered.
    """
    try:
        listing = get_listing(db, listing_id, for_update=True)
        if listing.user_id == user_uid:
            raise BadRequest("Owners cannot register interest in their own listing")
        if user_uid in listing.interested_user_uids:
            db.rollback()
            return False

        listing.interests.append(ListingInterest(user_uid=user_uid))
        listing.updated_at = clock.now()
        db.commit()
    except IntegrityError:
        # Lost a race against the same user's concurrent registration
        db.rollback()
        return False
    except Exception:
        db.rollback()
        raise

    logger.info("User %s registered interest in listing %s", user_uid, listing_id)
    return True


def list_interested_users(db: Session, listing_id: str, requester_uid: str) -> List[Dict[str, Any]]:
    listing = get_listing(db, listing_id)
    if not listing.user_id or listing.user_id != requester_uid:
        raise Forbidden("Forbidden")

    uids = [uid for uid in listing.interested_user_uids if uid != listing.user_id]
    if not uids:
        return []

    users = {u.uid: u for u in db.query(User).filter(User.uid.in_(uids)).all()}
    result = []
    for uid in uids:
        user = users.get(uid)
        if user is None:
            continue
        result.append({
            "uid": uid,
            "name": (user.name or "").strip() or None,
            "email": (user.email or "").strip() or None,
        })
    return result


# =========================
# VIEWS
# =========================

def location_label(listing: Listing) -> str:
    parts = [listing.suburb.title() if listing.suburb else "",
             listing.state.upper() if listing.state else "",
             listing.country.title() if listing.country else ""]
    return ", ".join(p for p in parts if p)


def public_view(listing: Listing, bucket: ImageBucket, requester_uid: Optional[str] = None) -> Dict[str, Any]:
    interested = listing.interested_user_uids
    is_owner = requester_uid is not None and requester_uid == listing.user_id

    view = {
        "id": listing.id,
        "title": listing.title,
        "description": listing.description,
        "category": listing.category,
        "exchange_type": listing.exchange_type,
        "status": listing.status,
        "contact_info": listing.contact_info,
        "anonymous": listing.anonymous,
        "location": listing.location,
        "location_label": location_label(listing),
        "image_ids": list(listing.image_ids or []),
        "thumbnail_id": listing.thumbnail_id,
        "image_urls": signed_urls(bucket, listing.image_ids or []),
        "thumbnail_url": signed_url_or_none(bucket, listing.thumbnail_id),
        "public_slug": listing.public_slug or listing.id,
        "created_at": clock.to_iso(listing.created_at),
        "updated_at": clock.to_iso(listing.updated_at),
        "interested_user_count": len([uid for uid in interested if uid != listing.user_id]),
        "has_registered_interest": requester_uid in interested if requester_uid else False,
        "is_owner": is_owner,
    }
    if is_owner:
        view["user_id"] = listing.user_id
        view["interested_user_uids"] = interested
    return view


def summary_view(listing: Listing, bucket: ImageBucket) -> Dict[str, Any]:
    return {
        "id": listing.id,
        "title": listing.title,
        "category": listing.category,
        "exchange_type": listing.exchange_type,
        "status": listing.status,
        "location_label": location_label(listing),
        "public_slug": listing.public_slug or listing.id,
        "thumbnail_url": signed_url_or_none(bucket, listing.thumbnail_id),
        "created_at": clock.to_iso(listing.created_at),
    }


def list_public_listings(db: Session, bucket: ImageBucket, status: str = "available", limit: int = 20):
    if status not in LISTING_STATUSES:
        raise BadRequest("Invalid status")
    limit = min(max(limit, 1), 100)
    listings = (
        db.query(Listing)
        .filter(Listing.status == status)
        .order_by(Listing.created_at.desc(), Listing.id.desc())
        .limit(limit)
        .all()
    )
    return [summary_view(listing, bucket) for listing in listings]


def list_owner_listings(db: Session, bucket: ImageBucket, owner_uid: str, status: Optional[str] = None):
    query = db.query(Listing).filter(Listing.user_id == owner_uid)
    if status in LISTING_STATUSES:
        query = query.filter(Listing.status == status)
    listings = query.order_by(Listing.created_at.desc()).all()
    return [public_view(listing, bucket, owner_uid) for listing in listings]


def list_interested_listings(
    db: Session,
    bucket: ImageBucket,
    user_uid: str,
    limit: int = 20,
    cursor_created_at: Optional[str] = None,
    cursor_id: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], Optional[Dict[str, str]]]:
    """Listings the user registered interest in, newest first, cursor by (created_at, id)."""
    limit = min(max(limit, 1), 50)
    query = (
        db.query(Listing)
        .join(ListingInterest, ListingInterest.listing_id == Listing.id)
        .filter(ListingInterest.user_uid == user_uid)
    )

    cursor_at = None
    if cursor_created_at and cursor_id:
        try:
            cursor_at = datetime.fromisoformat(cursor_created_at)
        except ValueError:
            logger.debug("Ignoring malformed cursor %r", cursor_created_at)
    if cursor_at is not None:
        query = query.filter(
            or_(
                Listing.created_at < cursor_at,
                and_(Listing.created_at == cursor_at, Listing.id < cursor_id),
            )
        )

    rows = query.order_by(Listing.created_at.desc(), Listing.id.desc()).limit(limit + 1).all()
    page, has_more = rows[:limit], len(rows) > limit

    next_cursor = None
    if has_more and page:
        last = page[-1]
        next_cursor = {"cursor_created_at": last.created_at.isoformat(), "cursor_id": last.id}

    return [public_view(listing, bucket, user_uid) for listing in page], next_cursor


def admin_list_listings(db: Session, status: str = "all", limit: int = 50) -> List[Dict[str, Any]]:
    """Moderation view; an unrecognised status filter lists everything."""
    limit = min(max(limit, 1), 200)

    query = db.query(Listing)
    if status in LISTING_STATUSES:
        query = query.filter(Listing.status == status)
    listings = query.order_by(Listing.created_at.desc()).limit(limit).all()

    return [
        {
            "id": listing.id,
            "title": listing.title,
            "status": listing.status,
            "exchange_type": listing.exchange_type,
            "user_id": listing.user_id,
            "created_at": clock.to_iso(listing.created_at),
            "location_label": location_label(listing),
            "interested_count": len(listing.interests),
        }
        for listing in listings
    ]


def owner_display_name(db: Session, listing: Listing) -> Optional[str]:
    if listing.anonymous or not listing.user_id:
        return None
    return fetch_display_names(db, [listing.user_id]).get(listing.user_id)
