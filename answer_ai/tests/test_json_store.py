import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from answer_ai.domain.conversation import Conversation, ConversationRecord
from answer_ai.domain.exceptions import NotFoundError
from answer_ai.infrastructure.storage.json_store import JsonConversationStore


def _conversation(cid, user_id="u1", offset=0):
    ts = datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=offset)
    return Conversation(conversation_id=cid, user_id=user_id, topic=f"topic {cid}", created_at=ts, updated_at=ts)


def test_json_store_conversations_and_records():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        store.create_conversation(_conversation("c1"))
        assert store.get_conversation("c1").topic == "topic c1"
        assert store.get_conversation("missing") is None

        r1 = store.create_record(ConversationRecord(conversation_id="c1", chat_completion_id="x", role="user", content="q"))
        r2 = store.create_record(ConversationRecord(conversation_id="c1", chat_completion_id="x", role="assistant", content="a"))
        assert r2.id == r1.id + 1
        records = store.list_records("c1")
        assert [r.role for r in records] == ["user", "assistant"]
        assert store.get_record_by_completion_id("assistant", "x").content == "a"

        r2.helpful = 1
        store.update_record_vote(r2)
        assert store.vote_stats("c1") == {"helpful": 1, "unhelpful": 0}


def test_json_store_paging_newest_first_and_user_filter():
    with tempfile.TemporaryDirectory() as d:
        store = JsonConversationStore(root=Path(d) / ".storage")
        store.create_conversation(_conversation("old", offset=0))
        store.create_conversation(_conversation("new", offset=5))
        store.create_conversation(_conversation("other", user_id="u2", offset=10))

        items, total = store.list_conversations(1, 10, user_id="u1")
        assert total == 2
        assert [c.conversation_id for c in items] == ["new", "old"]

        items, total = store.list_conversations(2, 2)
        assert total == 3
        assert [c.conversation_id for c in items] == ["old"]


def test_json_store_delete_conversation():
    with tempfile.TemporaryDirectory() as d:
        root = Path(d) / ".storage"
        store = JsonConversationStore(root=root)
        store.create_conversation(_conversation("c1"))
        assert (root / "conversations" / "c1").exists()
        store.delete_conversation("c1")
        assert store.get_conversation("c1") is None
        with pytest.raises(NotFoundError):
            store.delete_conversation("c1")
