# communityeats/core/conversation.py

import logging
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from communityeats.core import clock
from communityeats.core.errors import BadRequest, Forbidden, NotFound, Unprocessable
from communityeats.core.user import fetch_display_names
from communityeats.models.conversation import Conversation, ConversationParticipant
from communityeats.models.listing import Listing

logger = logging.getLogger(__name__)

PAIR_KEY_SEPARATOR = "__"
DEFAULT_CONVERSATION_LIMIT = 20
MAX_CONVERSATION_LIMIT = 50


def build_pair_key(a: str, b: str) -> str:
    """Order-independent key for two participant ids."""
    left, right = sorted([a, b])
    return f"{left}{PAIR_KEY_SEPARATOR}{right}"


def conversation_view(
    conversation: Conversation,
    fresh_names: Optional[Dict[str, Optional[str]]] = None,
) -> Dict[str, Any]:
    profiles = dict(conversation.participant_profiles)
    if fresh_names:
        for uid in profiles:
            if fresh_names.get(uid):
                profiles[uid] = fresh_names[uid]

    return {
        "id": conversation.id,
        "listing_id": conversation.listing_id,
        "listing_owner_uid": conversation.listing_owner_uid,
        "listing_title": conversation.listing_title,
        "participant_uids": conversation.participant_uids,
        "participant_profiles": profiles,
        "participant_pair_key": conversation.participant_pair_key,
        "created_at": clock.to_iso(conversation.created_at),
        "updated_at": clock.to_iso(conversation.updated_at),
        "last_message_preview": conversation.last_message_preview,
        "last_message_at": clock.to_iso(conversation.last_message_at),
        "last_message_author_uid": conversation.last_message_author_uid,
    }


def _find_conversation(db: Session, listing_id: str, pair_key: str, for_update: bool = False):
    query = db.query(Conversation).filter(
        Conversation.listing_id == listing_id,
        Conversation.participant_pair_key == pair_key,
    )
    if for_update:
        query = query.with_for_update()
    return query.first()


def _merge_participants(db: Session, conversation: Conversation, uids: List[str]) -> bool:
    """
    Add missing participant rows and fill in missing cached display names.
    A cached non-null name is never replaced here. Returns True when
    anything changed.
    """
    names = fetch_display_names(db, uids)
    existing = {p.user_uid: p for p in conversation.participants}
    changed = False

    for position, uid in enumerate(uids):
        participant = existing.get(uid)
        if participant is None:
            conversation.participants.append(
                ConversationParticipant(user_uid=uid, position=position, display_name=names.get(uid))
            )
            changed = True
        elif participant.display_name is None and names.get(uid):
            participant.display_name = names[uid]
            changed = True

    return changed


def _resolve_other_party(listing: Listing, requester_uid: str, target_uid: Optional[str]) -> str:
    owner_uid = listing.user_id
    interested = listing.interested_user_uids

    if requester_uid == owner_uid:
        if not target_uid:
            raise BadRequest("target_user_uid is required for listing owners")
        if target_uid == owner_uid:
            raise BadRequest("Invalid participants")
        if target_uid not in interested:
            raise Forbidden("Cannot message a user who has not registered interest")
        return target_uid

    if requester_uid not in interested:
        raise Forbidden("You must register interest before messaging this owner")
    return requester_uid


def ensure_conversation(
    db: Session,
    listing_id: str,
    requester_uid: str,
    target_uid: Optional[str] = None,
) -> Conversation:
    """
    Resolve the single conversation between a listing's owner and one
    interested party, creating it on first contact.
    """
    listing_id = (listing_id or "").strip()
    target_uid = (target_uid or "").strip() or None
    if not listing_id:
        raise BadRequest("listing_id is required")

    listing = db.query(Listing).filter(Listing.id == listing_id).first()
    if listing is None:
        raise NotFound("Listing not found")
    if not listing.user_id:
        raise Unprocessable("Listing missing owner")

    owner_uid = listing.user_id
    other_uid = _resolve_other_party(listing, requester_uid, target_uid)
    pair_key = build_pair_key(owner_uid, other_uid)
    participants = [owner_uid, other_uid]

    try:
        conversation = _find_conversation(db, listing_id, pair_key, for_update=True)
        if conversation is not None:
            if _merge_participants(db, conversation, participants):
                logger.info("Conversation %s participant cache updated", conversation.id)
            db.commit()
            return conversation

        now = clock.now()
        conversation = Conversation(
            listing_id=listing_id,
            listing_owner_uid=owner_uid,
            listing_title=listing.title,
            participant_pair_key=pair_key,
            created_at=now,
            updated_at=now,
        )
        _merge_participants(db, conversation, participants)
        db.add(conversation)
        db.commit()
        logger.info("Conversation %s created for listing %s", conversation.id, listing_id)
        return conversation

    except IntegrityError:
        # A concurrent first contact inserted the same (listing, pair) first
        db.rollback()
        conversation = _find_conversation(db, listing_id, pair_key)
        if conversation is None:
            raise
        _merge_participants(db, conversation, participants)
        db.commit()
        return conversation
    except Exception:
        db.rollback()
        raise


def get_conversation(db: Session, conversation_id: str) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        raise NotFound("Conversation not found")
    return conversation


def get_conversation_for_participant(db: Session, conversation_id: str, uid: str) -> Conversation:
    conversation = get_conversation(db, conversation_id)
    if uid not in conversation.participant_uids:
        raise Forbidden("Forbidden")
    return conversation


def list_conversations(db: Session, requester_uid: str, limit: int = DEFAULT_CONVERSATION_LIMIT) -> List[Conversation]:
    limit = min(max(limit, 1), MAX_CONVERSATION_LIMIT)
    return (
        db.query(Conversation)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .filter(ConversationParticipant.user_uid == requester_uid)
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .limit(limit)
        .all()
    )


def needs_profile_repair(conversation: Conversation, fresh_names: Dict[str, Optional[str]]) -> bool:
    """True when a cached name is missing or differs from a known current name."""
    cached = conversation.participant_profiles
    for uid in conversation.participant_uids:
        fresh = fresh_names.get(uid)
        if fresh and cached.get(uid) != fresh:
            return True
    return False


def repair_participant_profiles(database, conversation_ids: Iterable[str]):
    """
    Refresh cached display names for the given conversations in a session of
    its own. Runs after the response is sent; any failure is logged and
    dropped, so cached names are eventually consistent.
    """
    conversation_ids = list(conversation_ids)
    if not conversation_ids:
        return

    try:
        with database.session() as db:
            rows = (
                db.query(ConversationParticipant)
                .filter(ConversationParticipant.conversation_id.in_(conversation_ids))
                .all()
            )
            names = fetch_display_names(db, [row.user_uid for row in rows])
            repaired = 0
            for row in rows:
                fresh = names.get(row.user_uid)
                if fresh and row.display_name != fresh:
                    row.display_name = fresh
                    repaired += 1
            logger.debug("Repaired %d cached participant names", repaired)
    except Exception as e:
        logger.warning("Participant profile repair failed: %s", e)
