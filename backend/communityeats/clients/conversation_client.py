# communityeats/clients/conversation_client.py

import json
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from websockets.exceptions import ConnectionClosed, WebSocketException
from websockets.sync.client import connect as ws_connect

logger = logging.getLogger(__name__)

# =========================
# CONFIGURATION
# =========================

SERVER_URL = "http://127.0.0.1:8000"
DEFAULT_PAGE_SIZE = 50
MAX_CATCH_UP_PAGES = 10


class ClientError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


# =========================
# HTTP CLIENT
# =========================

class CommunityEatsClient:
    """Thin wrapper over the conversation endpoints."""

    def __init__(self, token: Optional[str], server_url: str = SERVER_URL, session=None):
        self.token = token
        self.server_url = server_url.rstrip("/")
        self.session = session if session is not None else requests.Session()

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def _request(self, method: str, path: str, fallback_error: str, **kwargs) -> Dict[str, Any]:
        resp = self.session.request(
            method, f"{self.server_url}{path}", headers=self.auth_headers(), **kwargs
        )
        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            raise ClientError(resp.status_code, message or fallback_error)
        return body

    def ensure_conversation(self, listing_id: str, target_user_uid: Optional[str] = None) -> Dict[str, Any]:
        payload = {"listing_id": listing_id}
        if target_user_uid:
            payload["target_user_uid"] = target_user_uid
        return self._request(
            "POST", "/conversations", "Failed to initialize conversation", json=payload
        )

    def list_conversations(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {"limit": limit} if limit else None
        body = self._request("GET", "/conversations", "Failed to load conversations", params=params)
        conversations = body.get("conversations")
        return conversations if isinstance(conversations, list) else []

    def list_messages(
        self,
        conversation_id: str,
        limit: Optional[int] = None,
        cursor: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if limit:
            params["limit"] = limit
        if cursor:
            params.update(cursor)
        return self._request(
            "GET",
            f"/conversations/{conversation_id}/messages",
            "Failed to load messages",
            params=params,
        )

    def send_message(self, conversation_id: str, body: str) -> Dict[str, Any]:
        return self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            "Failed to send message",
            json={"body": body},
        )

    def stream_url(self, conversation_id: str) -> str:
        base = self.server_url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/conversations/{conversation_id}/stream"


# =========================
# MESSAGE THREAD
# =========================

class MessageThread:
    """
    Local view of one conversation.

    ``open()`` picks the mode once: a websocket subscription when a token is
    available and the stream endpoint accepts the connection, otherwise
    polling. The mode never changes while the view is open.
    """

    SUBSCRIPTION = "subscription"
    POLLING = "polling"

    def __init__(
        self,
        client: CommunityEatsClient,
        conversation_id: str,
        connect: Optional[Callable[..., Any]] = ws_connect,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        self.client = client
        self.conversation_id = conversation_id
        self.connect = connect
        self.page_size = page_size
        self._reset()

    def _reset(self):
        self.mode: Optional[str] = None
        self.participant_profiles: Dict[str, Optional[str]] = {}
        self.older_cursor: Optional[Dict[str, Any]] = None
        self._messages: Dict[str, Dict[str, Any]] = {}
        self._connection = None

    # ---------- state ----------

    @property
    def messages(self) -> List[Dict[str, Any]]:
        return sorted(
            self._messages.values(),
            key=lambda m: (m.get("created_at_ms") or 0, m.get("id") or ""),
        )

    def display_name(self, uid: str) -> str:
        return self.participant_profiles.get(uid) or uid

    def _merge_profiles(self, profiles: Optional[Dict[str, Optional[str]]]):
        # A known name is never replaced by a missing one
        for uid, name in (profiles or {}).items():
            if name:
                self.participant_profiles[uid] = name
            else:
                self.participant_profiles.setdefault(uid, None)

    def _merge_messages(self, messages) -> List[Dict[str, Any]]:
        added = []
        for message in messages or []:
            message_id = message.get("id")
            if message_id and message_id not in self._messages:
                self._messages[message_id] = message
                added.append(message)
        return added

    def _apply_page(self, page: Dict[str, Any], keep_cursor: bool = True) -> List[Dict[str, Any]]:
        self._merge_profiles(page.get("participant_profiles"))
        if keep_cursor:
            self.older_cursor = page.get("next_cursor")
        return self._merge_messages(page.get("messages"))

    # ---------- lifecycle ----------

    def open(self) -> str:
        if self.mode is not None:
            return self.mode

        if self.client.token and self.connect is not None:
            try:
                self._connection = self.connect(
                    self.client.stream_url(self.conversation_id),
                    additional_headers=self.client.auth_headers(),
                )
                snapshot = json.loads(self._connection.recv())
                self.mode = self.SUBSCRIPTION
                self._apply_page(snapshot)
                return self.mode
            except (OSError, WebSocketException) as e:
                logger.info("Realtime unavailable for %s, polling instead: %s", self.conversation_id, e)
                self._close_connection()

        self.mode = self.POLLING
        self._apply_page(self.client.list_messages(self.conversation_id, limit=self.page_size))
        return self.mode

    def _close_connection(self):
        if self._connection is not None:
            try:
                self._connection.close()
            finally:
                self._connection = None

    def close(self):
        self._close_connection()

    def switch(self, conversation_id: str) -> str:
        """Tear down the current view and open another conversation."""
        self.close()
        self.conversation_id = conversation_id
        self._reset()
        return self.open()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, *args):
        self.close()

    # ---------- updates ----------

    def refresh(self, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Return messages that arrived since the last refresh."""
        if self.mode is None:
            self.open()
        if self.mode == self.SUBSCRIPTION:
            return self._receive(timeout)
        return self._poll()

    def _receive(self, timeout: Optional[float]) -> List[Dict[str, Any]]:
        try:
            frame = json.loads(self._connection.recv(timeout=timeout))
        except TimeoutError:
            return []
        except ConnectionClosed as e:
            self._connection = None
            raise ClientError(0, f"Subscription closed: {e}")

        self._merge_profiles(frame.get("participant_profiles"))
        return self._merge_messages(frame.get("messages"))

    def _poll(self) -> List[Dict[str, Any]]:
        # Walk back from the newest page until a known message shows up
        added: List[Dict[str, Any]] = []
        cursor = None
        for _ in range(MAX_CATCH_UP_PAGES):
            page = self.client.list_messages(self.conversation_id, limit=self.page_size, cursor=cursor)
            page_messages = page.get("messages") or []
            known = any(m.get("id") in self._messages for m in page_messages)
            added.extend(self._apply_page(page, keep_cursor=False))
            cursor = page.get("next_cursor")
            if known or not cursor:
                break
        return added

    def load_older(self) -> List[Dict[str, Any]]:
        if not self.older_cursor:
            return []
        page = self.client.list_messages(
            self.conversation_id, limit=self.page_size, cursor=self.older_cursor
        )
        return self._apply_page(page)

    def send(self, body: str) -> Dict[str, Any]:
        body = body.strip()
        if not body:
            raise ClientError(400, "Message body is required")
        message = self.client.send_message(self.conversation_id, body)
        self._merge_messages([message])
        return message
