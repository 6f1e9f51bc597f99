# communityeats/core/slug.py

import re
from datetime import datetime

from sqlalchemy.orm import Session

from communityeats.models.listing import Listing

MAX_SLUG_ATTEMPTS = 50


def slugify_title(value: str) -> str:
    slug = value.lower().strip()
    slug = re.sub(r"['\"]", "", slug)
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    slug = slug.strip("-")
    return slug or "listing"


def build_listing_slug(title: str, created_at: datetime) -> str:
    return f"{slugify_title(title)[:80].rstrip('-')}-{created_at.strftime('%Y%m%d')}"


def _to_base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or "0"


def ensure_unique_slug(db: Session, base_slug: str, ignore_id: str | None = None) -> str:
    """Append -2, -3, ... until no other listing uses the slug."""
    candidate = base_slug
    suffix = 1

    while suffix < MAX_SLUG_ATTEMPTS:
        existing = db.query(Listing.id).filter(Listing.public_slug == candidate).first()
        if existing is None or (ignore_id and existing.id == ignore_id):
            return candidate
        suffix += 1
        candidate = f"{base_slug}-{suffix}"

    return f"{base_slug}-{_to_base36(int(datetime.now().timestamp() * 1000))}"
