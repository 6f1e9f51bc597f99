from communityeats.models.base import Base
from communityeats.models.conversation import Conversation, ConversationParticipant
from communityeats.models.listing import Listing, ListingInterest
from communityeats.models.message import Message
from communityeats.models.user import User

__all__ = [
    "Base",
    "Conversation",
    "ConversationParticipant",
    "Listing",
    "ListingInterest",
    "Message",
    "User",
]
