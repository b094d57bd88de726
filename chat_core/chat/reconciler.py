"""落库对账。

一轮对话结束后，计算需要新增的最小记录集合并一次性写入：

- skip_user_message 为 False 且本次最后一条新消息是 user 时，写入该用户消息；
- 助手最终消息至少有一个 Part 时，写入助手消息。

两条记录放在同一个 create_messages 批次中，避免只写入一半。
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from uuid import uuid4

from chat_core.domain.conversation import MessageStore, StoredMessage
from chat_core.domain.models import UIMessage
from chat_core.infrastructure.logging.logger import log_event
from chat_core.messages.codec import encode


class PersistenceReconciler:
    def __init__(self, store: MessageStore):
        self._store = store

    def plan(
        self,
        conversation_id: str,
        new_messages: List[UIMessage],
        response_message: Optional[UIMessage],
        model: str,
        skip_user_message: bool = False,
    ) -> List[StoredMessage]:
        """只计算待写入的记录，不做写入。"""

        now = datetime.now(timezone.utc)
        records: List[StoredMessage] = []

        latest = new_messages[-1] if new_messages else None
        if not skip_user_message and latest is not None and latest.role == "user":
            records.append(self._record(conversation_id, "user", encode(latest), model, now))

        if response_message is not None and response_message.parts:
            # 保证助手消息排在用户消息之后
            created_at = now + timedelta(microseconds=len(records))
            records.append(self._record(conversation_id, "assistant", encode(response_message), model, created_at))
        return records

    def reconcile(
        self,
        conversation_id: Optional[str],
        new_messages: List[UIMessage],
        response_message: Optional[UIMessage],
        model: str,
        skip_user_message: bool = False,
    ) -> List[StoredMessage]:
        log_ctx = {"conversation_id": conversation_id, "model": model}
        if not conversation_id:
            log_event(logging.WARNING, "No conversation id, skip persisting messages", log_ctx)
            return []
        records = self.plan(conversation_id, new_messages, response_message, model, skip_user_message)
        if not records:
            return records
        self._store.create_messages(records)
        log_event(
            logging.INFO,
            "Messages saved",
            log_ctx,
            count=len(records),
            roles=[r.role for r in records],
        )
        return records

    @staticmethod
    def _record(conversation_id: str, role: str, content: str, model: str, created_at: datetime) -> StoredMessage:
        return StoredMessage(
            id=f"m-{uuid4().hex}",
            conversation_id=conversation_id,
            role=role,
            content=content,
            model=model,
            kind="normal",
            created_at=created_at,
        )
