# communityeats/api/conversations.py

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from communityeats.api.deps import get_current_identity, get_database, lenient_int
from communityeats.core import conversation as registry
from communityeats.core import message as ledger
from communityeats.core.errors import CommunityEatsError, Forbidden, NotFound, Unauthorized
from communityeats.core.rate_limit import CONVERSATION_LIMIT, limiter, message_limit
from communityeats.core.security import VerifiedIdentity, parse_bearer
from communityeats.core.user import fetch_display_names
from communityeats.infra.database import Database, get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversations")

# Websocket close codes mirroring the HTTP statuses
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403
CLOSE_NOT_FOUND = 4404


class EnsureConversationSchema(BaseModel):
    listing_id: str = Field(default="", validate_default=True)
    target_user_uid: Optional[str] = None

    @field_validator("listing_id")
    @classmethod
    def check_listing_id(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("listing_id is required")
        return value

    @field_validator("target_user_uid")
    @classmethod
    def strip_target(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() or None if value else None


class SendMessageSchema(BaseModel):
    body: str = Field(default="", validate_default=True)

    @field_validator("body")
    @classmethod
    def check_body(cls, value: str) -> str:
        value = value.strip()
        error = ledger.body_error(value)
        if error:
            raise ValueError(error)
        return value


@router.post("")
@limiter.limit(CONVERSATION_LIMIT)
def ensure_conversation(
    request: Request,
    payload: EnsureConversationSchema,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    conversation = registry.ensure_conversation(
        db, payload.listing_id, identity.uid, payload.target_user_uid
    )
    return registry.conversation_view(conversation)


@router.get("")
def list_conversations(
    background_tasks: BackgroundTasks,
    limit: Optional[str] = None,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    database: Database = Depends(get_database),
):
    conversations = registry.list_conversations(
        db, identity.uid, lenient_int(limit, registry.DEFAULT_CONVERSATION_LIMIT)
    )

    uids = {uid for c in conversations for uid in c.participant_uids}
    fresh_names = fetch_display_names(db, uids)
    stale = [c.id for c in conversations if registry.needs_profile_repair(c, fresh_names)]
    if stale:
        # Cached names are rewritten after the response goes out
        background_tasks.add_task(registry.repair_participant_profiles, database, stale)

    return {"conversations": [registry.conversation_view(c, fresh_names) for c in conversations]}


@router.get("/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    limit: Optional[str] = None,
    cursor_created_at_ms: Optional[str] = None,
    cursor_id: Optional[str] = None,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    # Malformed paging values fall back to the defaults
    return ledger.list_messages(
        db,
        conversation_id,
        identity.uid,
        lenient_int(limit, ledger.DEFAULT_PAGE_SIZE),
        lenient_int(cursor_created_at_ms),
        cursor_id or None,
    )


@router.post("/{conversation_id}/messages")
@limiter.limit(message_limit)
def send_message(
    request: Request,
    conversation_id: str,
    payload: SendMessageSchema,
    identity: VerifiedIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    message = ledger.append_message(db, conversation_id, identity.uid, payload.body)
    return ledger.message_view(message)


# =========================
# REALTIME STREAM
# =========================

def _load_snapshot(database: Database, conversation_id: str, uid: str):
    with database.session() as db:
        return ledger.list_messages(db, conversation_id, uid)


def _load_newer(database: Database, conversation_id: str, uid: str, after_ms, after_id):
    with database.session() as db:
        # Membership is re-checked on every poll so a removed participant stops receiving
        conversation = registry.get_conversation_for_participant(db, conversation_id, uid)
        messages = ledger.messages_after(db, conversation_id, after_ms, after_id)
        return [ledger.message_view(m) for m in messages], conversation.participant_profiles


@router.websocket("/{conversation_id}/stream")
async def stream_messages(websocket: WebSocket, conversation_id: str, token: Optional[str] = None):
    """
    Push new messages to a participant. Sends one ``snapshot`` frame with the
    latest page, then ``messages`` frames whenever newer messages exist.
    """
    await websocket.accept()

    app_state = websocket.app.state
    database: Database = app_state.database
    token = token or parse_bearer(websocket.headers.get("authorization"))

    try:
        if not token:
            raise Unauthorized("Unauthorized")
        identity = app_state.verifier.verify(token)
        snapshot = await run_in_threadpool(_load_snapshot, database, conversation_id, identity.uid)
    except CommunityEatsError as e:
        code = {Unauthorized: CLOSE_UNAUTHORIZED, Forbidden: CLOSE_FORBIDDEN, NotFound: CLOSE_NOT_FOUND}
        await websocket.close(code=code.get(type(e), 1011), reason=e.message)
        return

    await websocket.send_json({"type": "snapshot", **snapshot})

    last = snapshot["messages"][-1] if snapshot["messages"] else None
    after_ms = last["created_at_ms"] if last else None
    after_id = last["id"] if last else None
    interval = app_state.settings.stream_poll_interval

    try:
        while True:
            try:
                incoming = await asyncio.wait_for(websocket.receive(), timeout=interval)
                if incoming["type"] == "websocket.disconnect":
                    break
            except asyncio.TimeoutError:
                pass

            messages, profiles = await run_in_threadpool(
                _load_newer, database, conversation_id, identity.uid, after_ms, after_id
            )
            if messages:
                after_ms, after_id = messages[-1]["created_at_ms"], messages[-1]["id"]
                await websocket.send_json(
                    {"type": "messages", "messages": messages, "participant_profiles": profiles}
                )
    except WebSocketDisconnect:
        pass
    except Forbidden:
        await websocket.close(code=CLOSE_FORBIDDEN, reason="Forbidden")
    logger.debug("Stream for conversation %s closed", conversation_id)
