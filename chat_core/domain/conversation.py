from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Literal, Protocol
from datetime import datetime


StoredRole = Literal["user", "assistant"]
MessageKind = Literal["normal"]


@dataclass
class Conversation:
    id: str
    title: str
    model: str
    created_at: datetime
    updated_at: datetime
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredMessage:
    """持久化的消息记录，content 为序列化后的 Part 列表。"""

    id: str
    conversation_id: str
    role: StoredRole
    content: str
    model: str
    created_at: datetime
    kind: MessageKind = "normal"


class MessageStore(Protocol):
    def create_conversation(self, model: str, title: str = "", meta: Optional[Dict[str, Any]] = None) -> Conversation:
        ...

    def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    def find_messages(self, conversation_id: str) -> List[StoredMessage]:
        """按 created_at 升序返回会话的全部消息。"""
        ...

    def create_messages(self, records: List[StoredMessage]) -> None:
        """批量写入：要么全部成功，要么全部失败。"""
        ...
