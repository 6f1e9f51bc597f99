import threading
from datetime import timedelta

import pytest

from communityeats.core import conversation as registry
from communityeats.core import message as ledger
from communityeats.core.errors import BadRequest, Forbidden, NotFound
from communityeats.models.conversation import Conversation
from communityeats.models.message import Message


@pytest.fixture
def conversation(db, listing_with_interest):
    return registry.ensure_conversation(db, listing_with_interest.id, "u2")


def fetch_all_pages(db, conversation_id, uid, page_size):
    """Walk the cursor back to the start, returning messages oldest first."""
    collected, pages = [], 0
    cursor_ms = cursor_id = None
    while True:
        page = ledger.list_messages(db, conversation_id, uid, page_size, cursor_ms, cursor_id)
        pages += 1
        collected = page["messages"] + collected
        if page["next_cursor"] is None:
            return collected, pages
        cursor_ms = page["next_cursor"]["cursor_created_at_ms"]
        cursor_id = page["next_cursor"]["cursor_id"]


class TestAppendMessage:
    def test_append_updates_last_message_fields(self, db, conversation):
        message = ledger.append_message(db, conversation.id, "u2", "  Is it still available?  ")

        assert message.body == "Is it still available?"
        assert message.author_uid == "u2"
        assert message.created_at.endswith("Z")

        stored = db.query(Conversation).filter(Conversation.id == conversation.id).one()
        assert stored.last_message_preview == "Is it still available?"
        assert stored.last_message_author_uid == "u2"
        assert ledger.message_view(message)["created_at_ms"] == message.created_at_ms

    def test_preview_truncated(self, db, conversation):
        ledger.append_message(db, conversation.id, "u1", "x" * 450)

        stored = db.query(Conversation).filter(Conversation.id == conversation.id).one()
        assert len(stored.last_message_preview) == ledger.PREVIEW_LENGTH

    def test_max_length_accepted(self, db, conversation):
        message = ledger.append_message(db, conversation.id, "u2", "a" * 2000)
        assert len(message.body) == 2000

    def test_over_max_length_rejected(self, db, conversation):
        with pytest.raises(BadRequest, match="Message exceeds 2000 characters"):
            ledger.append_message(db, conversation.id, "u2", "a" * 2001)
        assert db.query(Message).count() == 0

    @pytest.mark.parametrize("body", ["", "   ", "\n\t", None])
    def test_blank_body_rejected(self, db, conversation, body):
        with pytest.raises(BadRequest, match="Message body is required"):
            ledger.append_message(db, conversation.id, "u2", body)

    def test_non_participant_rejected_without_side_effects(self, db, conversation):
        with pytest.raises(Forbidden):
            ledger.append_message(db, conversation.id, "u3", "let me in")

        assert db.query(Message).count() == 0
        stored = db.query(Conversation).filter(Conversation.id == conversation.id).one()
        assert stored.last_message_preview is None
        assert stored.last_message_at is None

    def test_unknown_conversation(self, db):
        with pytest.raises(NotFound, match="Conversation not found"):
            ledger.append_message(db, "nope", "u2", "hello")

    def test_append_bumps_conversation_order(self, db, make_listing, listing_with_interest):
        from communityeats.core import listing as listings

        other = make_listing("u1", title="Lemons")
        listings.register_interest(db, other.id, "u2")

        first = registry.ensure_conversation(db, listing_with_interest.id, "u2")
        second = registry.ensure_conversation(db, other.id, "u2")
        assert registry.list_conversations(db, "u2")[0].id == second.id

        ledger.append_message(db, first.id, "u1", "Pick up after 5?")
        assert registry.list_conversations(db, "u2")[0].id == first.id

    def test_concurrent_appends_keep_order_and_last_message(self, database, conversation):
        per_author = 10
        errors = []

        def send(uid):
            session = database.SessionLocal()
            try:
                for n in range(per_author):
                    ledger.append_message(session, conversation.id, uid, f"{uid}-{n}")
            except Exception as exc:
                errors.append(exc)
            finally:
                session.close()

        threads = [threading.Thread(target=send, args=(uid,)) for uid in ("u1", "u2")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []

        with database.session() as db:
            rows = (
                db.query(Message)
                .filter(Message.conversation_id == conversation.id)
                .order_by(Message.created_at_ms, Message.id)
                .all()
            )
            assert len(rows) == 2 * per_author
            stamps = [row.created_at_ms for row in rows]
            assert stamps == sorted(stamps)

            for uid in ("u1", "u2"):
                bodies = [row.body for row in rows if row.author_uid == uid]
                assert bodies == [f"{uid}-{n}" for n in range(per_author)]

            newest = rows[-1]
            stored = db.query(Conversation).filter(Conversation.id == conversation.id).one()
            assert stored.last_message_author_uid == newest.author_uid
            assert stored.last_message_preview == newest.body


class TestListMessages:
    def test_page_is_oldest_first(self, db, conversation):
        for n in range(3):
            ledger.append_message(db, conversation.id, "u2", f"m{n}")

        page = ledger.list_messages(db, conversation.id, "u1")

        assert [m["body"] for m in page["messages"]] == ["m0", "m1", "m2"]
        assert page["next_cursor"] is None
        assert page["listing_title"] == "Fresh sourdough loaves"
        assert page["listing_owner_uid"] == "u1"
        assert page["participant_profiles"] == {"u1": "Olive Owner", "u2": "Ian Interested"}

    @pytest.mark.parametrize("page_size", [1, 2, 5, 7, 23, 50, 100])
    def test_pagination_reconstructs_history(self, db, conversation, page_size):
        sent = [ledger.append_message(db, conversation.id, "u1" if n % 2 else "u2", f"m{n}") for n in range(23)]

        collected, pages = fetch_all_pages(db, conversation.id, "u2", page_size)

        assert [m["id"] for m in collected] == [m.id for m in sent]
        expected_pages = 23 // page_size + 1
        assert pages == expected_pages

    def test_pagination_with_identical_timestamps(self, db, conversation, fake_clock):
        fake_clock.step = timedelta(0)
        for n in range(9):
            ledger.append_message(db, conversation.id, "u2", f"same-{n}")

        collected, _ = fetch_all_pages(db, conversation.id, "u2", 2)

        assert len({m["created_at_ms"] for m in collected}) == 1
        assert sorted(m["body"] for m in collected) == sorted(f"same-{n}" for n in range(9))
        assert len(collected) == 9

    def test_full_last_page_yields_trailing_empty_page(self, db, conversation):
        for n in range(4):
            ledger.append_message(db, conversation.id, "u2", f"m{n}")

        first = ledger.list_messages(db, conversation.id, "u2", limit=4)
        assert first["next_cursor"] is not None

        cursor = first["next_cursor"]
        second = ledger.list_messages(
            db, conversation.id, "u2", 4, cursor["cursor_created_at_ms"], cursor["cursor_id"]
        )
        assert second["messages"] == []
        assert second["next_cursor"] is None

    def test_limit_clamped(self, db, conversation):
        for n in range(3):
            ledger.append_message(db, conversation.id, "u2", f"m{n}")

        page = ledger.list_messages(db, conversation.id, "u2", limit=0)
        assert len(page["messages"]) == 1
        assert page["messages"][0]["body"] == "m2"

    def test_non_participant_forbidden(self, db, conversation):
        with pytest.raises(Forbidden):
            ledger.list_messages(db, conversation.id, "u3")

    def test_unknown_conversation_not_found(self, db):
        with pytest.raises(NotFound):
            ledger.list_messages(db, "nope", "u3")


class TestMessagesAfter:
    def test_returns_only_newer_messages(self, db, conversation):
        sent = [ledger.append_message(db, conversation.id, "u2", f"m{n}") for n in range(5)]
        anchor = sent[1]

        newer = ledger.messages_after(db, conversation.id, anchor.created_at_ms, anchor.id)
        assert [m.id for m in newer] == [m.id for m in sent[2:]]

    def test_without_anchor_returns_everything(self, db, conversation):
        sent = [ledger.append_message(db, conversation.id, "u2", f"m{n}") for n in range(3)]
        assert [m.id for m in ledger.messages_after(db, conversation.id, None, None)] == [m.id for m in sent]
