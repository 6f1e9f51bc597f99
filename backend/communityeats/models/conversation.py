# communityeats/models/conversation.py

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from communityeats.core import clock
from communityeats.models.base import Base
from communityeats.models.listing import new_id


class Conversation(Base):
    __tablename__ = "conversations"
    # At most one conversation per listing and participant pair
    __table_args__ = (
        UniqueConstraint("listing_id", "participant_pair_key", name="uq_conversation_pair"),
    )

    id = Column(String(64), primary_key=True, default=new_id)
    listing_id = Column(String(64), nullable=False, index=True)
    listing_owner_uid = Column(String(128), nullable=False)
    listing_title = Column(String(200), nullable=True)
    participant_pair_key = Column(String(300), nullable=False)

    last_message_preview = Column(String(200), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_author_uid = Column(String(128), nullable=True)

    created_at = Column(DateTime(timezone=True), default=clock.now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=clock.now, nullable=False, index=True)

    participants = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationParticipant.position",
    )

    @property
    def participant_uids(self):
        return [p.user_uid for p in self.participants]

    @property
    def participant_profiles(self):
        return {p.user_uid: p.display_name for p in self.participants}


class ConversationParticipant(Base):
    """Participant row; also holds the cached display name for that participant."""

    __tablename__ = "conversation_participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "user_uid", name="uq_conversation_participant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(
        String(64), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_uid = Column(String(128), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    display_name = Column(String(100), nullable=True)

    conversation = relationship("Conversation", back_populates="participants")
