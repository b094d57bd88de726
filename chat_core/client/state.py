"""客户端共享状态。

- ConversationState: 记录已自动触发过的会话 ID，生命周期与应用会话一致，从不清空。
- RouteParams: 当前页面的路径与查询参数（例如 autoTrigger=true）。
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, Set
from urllib.parse import parse_qsl, urlencode, urlsplit


AUTO_TRIGGER_PARAM = "autoTrigger"


class ConversationState:
    """自动触发记录。

    mark_if_new 在同一把锁内完成检查与写入，重复渲染时不会出现两次自动发送。
    """

    def __init__(self) -> None:
        self._triggered: Set[str] = set()
        self._lock = threading.Lock()

    def has_been_triggered(self, conversation_id: str) -> bool:
        with self._lock:
            return conversation_id in self._triggered

    def mark_if_new(self, conversation_id: str) -> bool:
        """未触发过则标记并返回 True，否则返回 False。"""
        with self._lock:
            if conversation_id in self._triggered:
                return False
            self._triggered.add(conversation_id)
            return True


@dataclass
class RouteParams:
    path: str = ""
    params: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_url(cls, url: str) -> "RouteParams":
        parts = urlsplit(url)
        return cls(path=parts.path, params=dict(parse_qsl(parts.query)))

    @property
    def url(self) -> str:
        if not self.params:
            return self.path
        return f"{self.path}?{urlencode(self.params)}"

    @property
    def auto_trigger_requested(self) -> bool:
        return self.params.get(AUTO_TRIGGER_PARAM) == "true"

    def discard(self, name: str) -> None:
        self.params.pop(name, None)
