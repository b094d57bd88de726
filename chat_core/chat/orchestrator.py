"""对话轮次编排。

把已持久化的历史与本次新提交的消息合并，生成发送给模型的 ModelMessage 序列。
不做重复内容过滤：同一条逻辑消息不应在同一次请求中出现两次。
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from chat_core.domain.conversation import MessageStore
from chat_core.domain.models import ModelMessage, UIMessage
from chat_core.infrastructure.logging.logger import log_event
from chat_core.messages.codec import decode, to_model_messages


RawMessage = Union[UIMessage, Dict[str, Any]]


@dataclass
class PreparedTurn:
    """一次请求的模型输入。

    - history: 从存储解码出的历史消息。
    - new_messages: 本次新提交（尚未持久化）的消息。
    - model_messages: 最终发给模型的消息。
    """

    conversation_id: Optional[str]
    model: str
    history: List[UIMessage]
    new_messages: List[UIMessage]
    model_messages: List[ModelMessage]

    @property
    def ui_messages(self) -> List[UIMessage]:
        return self.history + self.new_messages


def normalize_new_messages(raw: Union[RawMessage, List[RawMessage], None]) -> List[UIMessage]:
    """单条或列表统一为列表，保持原有顺序。"""

    if raw is None:
        return []
    items = raw if isinstance(raw, list) else [raw]
    return [m if isinstance(m, UIMessage) else UIMessage.from_dict(m) for m in items]


class TurnOrchestrator:
    def __init__(self, store: MessageStore):
        self._store = store

    def load_history(self, conversation_id: Optional[str]) -> List[UIMessage]:
        """读取会话历史并解码，丢弃没有可渲染内容的记录。"""

        if not conversation_id:
            return []
        stored = self._store.find_messages(conversation_id)
        history = [decode(m) for m in stored]
        return [m for m in history if m is not None]

    def prepare(
        self,
        conversation_id: Optional[str],
        new_messages: List[UIMessage],
        model: str,
    ) -> PreparedTurn:
        history = self.load_history(conversation_id)
        model_messages = to_model_messages(history + list(new_messages))
        log_event(
            logging.INFO,
            "Prepared model input",
            {"conversation_id": conversation_id, "model": model},
            previous_messages=len(history),
            new_messages=len(new_messages),
            model_messages=len(model_messages),
        )
        return PreparedTurn(
            conversation_id=conversation_id,
            model=model,
            history=history,
            new_messages=list(new_messages),
            model_messages=model_messages,
        )
