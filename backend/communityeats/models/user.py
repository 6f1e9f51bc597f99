# communityeats/models/user.py

from sqlalchemy import Boolean, Column, DateTime, String

from communityeats.core import clock
from communityeats.models.base import Base


class User(Base):
    __tablename__ = "users"

    # Subject id issued by the identity provider
    uid = Column(String(128), primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    email = Column(String(320), nullable=False)
    email_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=clock.now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=clock.now, onupdate=clock.now)
