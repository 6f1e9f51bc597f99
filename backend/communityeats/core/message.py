# communityeats/core/message.py

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.orm import Session

from communityeats.core import clock
from communityeats.core.conversation import get_conversation_for_participant
from communityeats.core.errors import BadRequest, Forbidden, NotFound
from communityeats.models.conversation import Conversation, ConversationParticipant
from communityeats.models.message import Message

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
PREVIEW_LENGTH = 200
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def body_error(body: str) -> Optional[str]:
    """Validation message for an already-trimmed body, or None when valid."""
    if not body:
        return "Message body is required"
    if len(body) > MAX_MESSAGE_LENGTH:
        return f"Message exceeds {MAX_MESSAGE_LENGTH} characters"
    return None


def message_view(message: Message) -> Dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "author_uid": message.author_uid,
        "body": message.body,
        "created_at": message.created_at,
        "created_at_ms": message.created_at_ms,
    }


def append_message(db: Session, conversation_id: str, author_uid: str, body: str) -> Message:
    """
    Append a message and update the conversation's last-message fields in
    one transaction. Membership is checked against the locked conversation.
    """
    body = (body or "").strip()
    error = body_error(body)
    if error:
        raise BadRequest(error)

    try:
        # Take the row write lock before stamping so timestamp order follows commit order
        touched = db.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(updated_at=Conversation.updated_at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not touched:
            raise NotFound("Conversation not found")

        # Reload so a stale identity-map copy cannot mask the column changes below
        conversation = (
            db.query(Conversation)
            .filter(Conversation.id == conversation_id)
            .with_for_update()
            .populate_existing()
            .one()
        )

        participants = {
            uid
            for (uid,) in db.query(ConversationParticipant.user_uid).filter(
                ConversationParticipant.conversation_id == conversation_id
            )
        }
        if author_uid not in participants:
            raise Forbidden("Forbidden")

        now = clock.now()
        message = Message(
            conversation_id=conversation_id,
            author_uid=author_uid,
            body=body,
            created_at=clock.to_iso(now),
            created_at_ms=clock.to_millis(now),
        )
        db.add(message)

        conversation.updated_at = now
        conversation.last_message_preview = body[:PREVIEW_LENGTH]
        conversation.last_message_at = now
        conversation.last_message_author_uid = author_uid

        db.commit()
    except Exception:
        db.rollback()
        raise

    return message


def _older_than(cursor_ms: int, cursor_id: Optional[str]):
    if cursor_id:
        return or_(
            Message.created_at_ms < cursor_ms,
            and_(Message.created_at_ms == cursor_ms, Message.id < cursor_id),
        )
    return Message.created_at_ms < cursor_ms


def list_messages(
    db: Session,
    conversation_id: str,
    requester_uid: str,
    limit: int = DEFAULT_PAGE_SIZE,
    cursor_ms: Optional[int] = None,
    cursor_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    One page of messages, oldest first, ending at the cursor (exclusive).

    A full page is taken to mean more may exist, so a page that exactly
    drains the conversation is followed by one empty page.
    """
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    conversation = get_conversation_for_participant(db, conversation_id, requester_uid)

    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if cursor_ms is not None:
        query = query.filter(_older_than(cursor_ms, cursor_id))

    newest_first = (
        query.order_by(Message.created_at_ms.desc(), Message.id.desc()).limit(limit).all()
    )
    messages = [message_view(m) for m in reversed(newest_first)]

    next_cursor = None
    if len(newest_first) == limit:
        oldest = newest_first[-1]
        next_cursor = {"cursor_created_at_ms": oldest.created_at_ms, "cursor_id": oldest.id}

    return {
        "messages": messages,
        "next_cursor": next_cursor,
        "participant_profiles": conversation.participant_profiles,
        "listing_title": conversation.listing_title,
        "listing_owner_uid": conversation.listing_owner_uid,
    }


def messages_after(
    db: Session,
    conversation_id: str,
    after_ms: Optional[int],
    after_id: Optional[str],
    limit: int = MAX_PAGE_SIZE,
) -> List[Message]:
    """Messages strictly newer than (after_ms, after_id), oldest first."""
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if after_ms is not None:
        query = query.filter(
            or_(
                Message.created_at_ms > after_ms,
                and_(Message.created_at_ms == after_ms, Message.id > (after_id or "")),
            )
        )
    return query.order_by(Message.created_at_ms.asc(), Message.id.asc()).limit(limit).all()
