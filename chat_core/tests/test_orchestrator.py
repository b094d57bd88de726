import json
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from chat_core.chat.orchestrator import TurnOrchestrator, normalize_new_messages
from chat_core.domain.conversation import StoredMessage
from chat_core.domain.models import TextPart, UIMessage
from chat_core.infrastructure.storage.json_store import JsonMessageStore


def _stored(mid, role, content, offset):
    return StoredMessage(
        id=mid,
        conversation_id="c1",
        role=role,
        content=content,
        model="m1",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=offset),
    )


def test_prepare_merges_history_and_new_messages():
    with tempfile.TemporaryDirectory() as d:
        store = JsonMessageStore(root=Path(d) / ".storage")
        store.create_messages([
            _stored("a1", "assistant", json.dumps([{"type": "text", "text": "hello"}]), 1),
            _stored("u1", "user", json.dumps([{"type": "text", "text": "hi"}]), 0),
            _stored("x1", "assistant", json.dumps([{"type": "image"}]), 2),
            _stored("r1", "user", "plain legacy text", 3),
        ])
        new = normalize_new_messages({"id": "n1", "role": "user", "parts": [{"type": "text", "text": "again"}]})
        turn = TurnOrchestrator(store).prepare("c1", new, "m1")

        assert [m.id for m in turn.history] == ["u1", "a1", "r1"]
        assert [m.id for m in turn.ui_messages] == ["u1", "a1", "r1", "n1"]
        assert [(m.role, m.content) for m in turn.model_messages] == [
            ("user", "hi"),
            ("assistant", "hello"),
            ("user", "plain legacy text"),
            ("user", "again"),
        ]


def test_prepare_without_conversation_id_uses_new_messages_only():
    class FailingStore:
        def find_messages(self, conversation_id):
            raise AssertionError("should not read storage")

    new = [UIMessage(id="n1", role="user", parts=[TextPart(text="q")])]
    turn = TurnOrchestrator(FailingStore()).prepare(None, new, "m1")
    assert turn.history == []
    assert [m.content for m in turn.model_messages] == ["q"]


def test_normalize_new_messages_keeps_order():
    msgs = normalize_new_messages([
        {"id": "1", "role": "user", "parts": []},
        {"id": "2", "role": "user", "parts": []},
    ])
    assert [m.id for m in msgs] == ["1", "2"]
    assert normalize_new_messages(None) == []
