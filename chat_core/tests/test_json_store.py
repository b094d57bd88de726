import tempfile
from pathlib import Path
from datetime import datetime, timedelta, timezone

import pytest

from chat_core.domain.conversation import StoredMessage
from chat_core.domain.exceptions import StoreError
from chat_core.infrastructure.storage.json_store import JsonMessageStore


def _msg(mid, cid, role, created_at, content='[{"type": "text", "text": "x"}]'):
    return StoredMessage(
        id=mid,
        conversation_id=cid,
        role=role,
        content=content,
        model="m1",
        created_at=created_at,
    )


def test_json_store_create_and_find_messages():
    with tempfile.TemporaryDirectory() as d:
        store = JsonMessageStore(root=Path(d) / ".storage")
        conv = store.create_conversation("m1", title="t")
        now = datetime.now(timezone.utc)
        store.create_messages([_msg("m2", conv.id, "assistant", now + timedelta(seconds=1))])
        store.create_messages([_msg("m1", conv.id, "user", now)])
        msgs = store.find_messages(conv.id)
        assert [m.id for m in msgs] == ["m1", "m2"]
        assert msgs[0].model == "m1"
        assert msgs[0].kind == "normal"
        assert store.get_conversation(conv.id).model == "m1"


def test_json_store_batch_keeps_order_for_equal_timestamps():
    with tempfile.TemporaryDirectory() as d:
        store = JsonMessageStore(root=Path(d) / ".storage")
        now = datetime.now(timezone.utc)
        store.create_messages([_msg("u", "c1", "user", now), _msg("a", "c1", "assistant", now)])
        assert [m.role for m in store.find_messages("c1")] == ["user", "assistant"]


def test_json_store_unknown_conversation():
    with tempfile.TemporaryDirectory() as d:
        store = JsonMessageStore(root=Path(d) / ".storage")
        assert store.find_messages("missing") == []
        with pytest.raises(StoreError) as exc:
            store.get_conversation("missing")
        assert exc.value.code == "CONVERSATION_NOT_FOUND"


def test_json_store_failed_batch_writes_nothing(monkeypatch):
    with tempfile.TemporaryDirectory() as d:
        store = JsonMessageStore(root=Path(d) / ".storage")
        now = datetime.now(timezone.utc)
        store.create_messages([_msg("u0", "c1", "user", now)])

        def boom(*a, **kw):
            raise OSError("disk full")

        monkeypatch.setattr("chat_core.infrastructure.storage.json_store.os.replace", boom)
        with pytest.raises(StoreError):
            store.create_messages([_msg("u1", "c1", "user", now), _msg("a1", "c1", "assistant", now)])
        assert [m.id for m in store.find_messages("c1")] == ["u0"]
