import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Any, List, Optional
from uuid import uuid4

from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageStore, Conversation, StoredMessage
from chat_core.domain.exceptions import StoreError


def _iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_iso(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonMessageStore(MessageStore):
    """基于文件系统的会话存储。

    目录结构：<root>/conversations/<conversation_id>/{meta.json, messages.jsonl}。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)

    def create_conversation(self, model: str, title: str = "", meta: Optional[Dict[str, Any]] = None) -> Conversation:
        cid = f"c-{uuid4().hex}"
        cdir = self._conv_root / cid
        cdir.mkdir(parents=True, exist_ok=True)
        now = datetime.now(timezone.utc)
        conv = Conversation(id=cid, title=title, model=model, created_at=now, updated_at=now, meta=dict(meta or {}))
        self._write_meta(cdir, conv)
        return conv

    def get_conversation(self, conversation_id: str) -> Conversation:
        meta_path = self._conv_root / conversation_id / "meta.json"
        if not meta_path.exists():
            raise StoreError(code="CONVERSATION_NOT_FOUND", message=conversation_id, http_status=404)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        return Conversation(
            id=data["id"],
            title=data.get("title") or "",
            model=data.get("model") or "",
            created_at=_parse_iso(data["created_at"]),
            updated_at=_parse_iso(data["updated_at"]),
            meta=data.get("meta") or {},
        )

    def find_messages(self, conversation_id: str) -> List[StoredMessage]:
        msgs_path = self._conv_root / conversation_id / "messages.jsonl"
        items: List[StoredMessage] = []
        if not msgs_path.exists():
            return items
        try:
            lines = msgs_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StoreError(code="STORE_READ_ERROR", message=str(e))
        for line in lines:
            if not line.strip():
                continue
            try:
                items.append(self._to_message(json.loads(line)))
            except (KeyError, ValueError):
                continue
        # sort 是稳定的，同一时间戳保持写入顺序
        items.sort(key=lambda m: m.created_at)
        return items

    def create_messages(self, records: List[StoredMessage]) -> None:
        """批量追加消息。

        每个会话的新内容先完整写入临时文件，再通过 os.replace 原子替换，
        保证同一批次内不会出现只写入一部分的情况。
        """

        if not records:
            return
        grouped: Dict[str, List[str]] = {}
        for rec in records:
            grouped.setdefault(rec.conversation_id, []).append(
                json.dumps(self._to_payload(rec), ensure_ascii=False)
            )
        for conversation_id, lines in grouped.items():
            cdir = self._conv_root / conversation_id
            msgs_path = cdir / "messages.jsonl"
            tmp_path = cdir / f"messages.{uuid4().hex}.jsonl.tmp"
            try:
                cdir.mkdir(parents=True, exist_ok=True)
                existing = msgs_path.read_text(encoding="utf-8") if msgs_path.exists() else ""
                if existing and not existing.endswith("\n"):
                    existing += "\n"
                tmp_path.write_text(existing + "\n".join(lines) + "\n", encoding="utf-8")
                os.replace(tmp_path, msgs_path)
            except OSError as e:
                tmp_path.unlink(missing_ok=True)
                raise StoreError(code="STORE_WRITE_ERROR", message=str(e))
            self._touch(conversation_id)

    def _touch(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not (cdir / "meta.json").exists():
            return
        conv = self.get_conversation(conversation_id)
        conv.updated_at = datetime.now(timezone.utc)
        self._write_meta(cdir, conv)

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        meta_path = cdir / "meta.json"
        tmp_path = cdir / f"meta.{uuid4().hex}.json.tmp"
        obj = {
            "id": conv.id,
            "title": conv.title,
            "model": conv.model,
            "created_at": _iso(conv.created_at),
            "updated_at": _iso(conv.updated_at),
            "meta": conv.meta,
        }
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, meta_path)
        except OSError as e:
            raise StoreError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _to_payload(rec: StoredMessage) -> Dict[str, Any]:
        return {
            "id": rec.id,
            "conversation_id": rec.conversation_id,
            "role": rec.role,
            "content": rec.content,
            "model": rec.model,
            "kind": rec.kind,
            "created_at": _iso(rec.created_at),
        }

    @staticmethod
    def _to_message(data: Dict[str, Any]) -> StoredMessage:
        return StoredMessage(
            id=data["id"],
            conversation_id=data["conversation_id"],
            role=data["role"],
            content=data.get("content") or "",
            model=data.get("model") or "",
            kind=data.get("kind") or "normal",
            created_at=_parse_iso(data["created_at"]),
        )
