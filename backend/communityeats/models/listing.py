# communityeats/models/listing.py

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from communityeats.core import clock
from communityeats.models.base import Base

CATEGORIES = ("home", "share", "coop")
EXCHANGE_TYPES = ("swap", "gift", "pay")
LISTING_STATUSES = ("available", "claimed", "removed")


def new_id() -> str:
    return uuid.uuid4().hex


class Listing(Base):
    __tablename__ = "listings"

    id = Column(String(64), primary_key=True, default=new_id)
    user_id = Column(String(128), nullable=True, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(20), nullable=False)
    exchange_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="available", index=True)
    contact_info = Column(String(500), nullable=True)
    anonymous = Column(Boolean, nullable=False, default=False)

    country = Column(String(100), nullable=False, default="")
    state = Column(String(100), nullable=False, default="")
    suburb = Column(String(100), nullable=False, default="")
    postcode = Column(Integer, nullable=False, default=0)
    place_id = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    image_ids = Column(JSON, nullable=False, default=list)
    thumbnail_id = Column(String(255), nullable=False)

    public_slug = Column(String(255), unique=True, nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=clock.now, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=clock.now, nullable=False)

    interests = relationship(
        "ListingInterest",
        back_populates="listing",
        cascade="all, delete-orphan",
        order_by="ListingInterest.seq",
    )

    @property
    def interested_user_uids(self):
        return [interest.user_uid for interest in self.interests]

    @property
    def location(self):
        return {
            "country": self.country,
            "state": self.state,
            "suburb": self.suburb,
            "postcode": self.postcode,
            "place_id": self.place_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }


class ListingInterest(Base):
    """One row per user who registered interest in a listing."""

    __tablename__ = "listing_interests"
    __table_args__ = (UniqueConstraint("listing_id", "user_uid", name="uq_listing_interest"),)

    seq = Column(Integer, primary_key=True, autoincrement=True)
    listing_id = Column(String(64), ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    user_uid = Column(String(128), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=clock.now, nullable=False)

    listing = relationship("Listing", back_populates="interests")
