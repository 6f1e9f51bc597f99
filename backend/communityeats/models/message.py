# communityeats/models/message.py

from sqlalchemy import BigInteger, Column, ForeignKey, Index, String, Text

from communityeats.models.base import Base
from communityeats.models.listing import new_id


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_order", "conversation_id", "created_at_ms", "id"),
    )

    id = Column(String(64), primary_key=True, default=new_id)
    conversation_id = Column(
        String(64), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    author_uid = Column(String(128), nullable=False)
    body = Column(Text, nullable=False)

    # Both stamped from the same server instant; created_at_ms is the sort key
    created_at = Column(String(32), nullable=False)
    created_at_ms = Column(BigInteger, nullable=False)
