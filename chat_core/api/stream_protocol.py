"""UI 消息流协议（SSE）。

服务端把 StreamingSession 的增量编码为 `data: {json}\\n\\n` 帧：

    start → (reasoning-start | reasoning-delta | reasoning-end
             | text-start | text-delta | text-end)* → [error] → finish → [DONE]

客户端使用 UIMessageStreamReader 把这些帧还原为 UIMessage 快照。
"""

import json
from typing import Any, Dict, Iterable, Iterator, List, Optional

from chat_core.chat.session import SessionFailed, StreamingSession
from chat_core.domain.models import REASONING_PART, Part, ReasoningPart, TextPart, UIMessage


UI_MESSAGE_STREAM_HEADERS = {
    "x-vercel-ai-ui-message-stream": "v1",
    "Cache-Control": "no-cache",
}
DONE_FRAME = "data: [DONE]\n\n"


def format_sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def encode_ui_message_stream(session: StreamingSession, send_reasoning: bool = True) -> Iterator[str]:
    """把会话增量编码为 SSE 帧。

    消费方提前关闭本生成器时，会同时关闭会话迭代器，会话按取消处理。
    """

    updates = iter(session)
    open_id: Optional[str] = None
    open_type: Optional[str] = None
    try:
        yield format_sse({"type": "start", "messageId": session.message_id})
        for update in updates:
            if update.part_type == REASONING_PART and not send_reasoning:
                continue
            part_id = f"{session.message_id}-{update.part_index}"
            if part_id != open_id:
                if open_id is not None:
                    yield format_sse({"type": f"{open_type}-end", "id": open_id})
                open_id, open_type = part_id, update.part_type
                yield format_sse({"type": f"{open_type}-start", "id": open_id})
            yield format_sse({"type": f"{open_type}-delta", "id": open_id, "delta": update.delta})
    finally:
        updates.close()
        if session.outcome is None:
            session.cancel()

    if open_id is not None:
        yield format_sse({"type": f"{open_type}-end", "id": open_id})
    outcome = session.outcome
    if isinstance(outcome, SessionFailed):
        yield format_sse({"type": "error", "errorText": outcome.error})
    yield format_sse({"type": "finish"})
    yield DONE_FRAME


class UIMessageStreamReader:
    """把 SSE 帧还原为助手消息。

    每个 *-delta 帧之后 feed_line 返回最新的 UIMessage 快照，其余帧返回 None。
    """

    def __init__(self) -> None:
        self.message_id: str = ""
        self.error: Optional[str] = None
        self.finished = False
        self.done = False
        self._parts: List[Part] = []
        self._index: Dict[str, int] = {}

    def feed(self, lines: Iterable[str]) -> Iterator[UIMessage]:
        for line in lines:
            snapshot = self.feed_line(line)
            if snapshot is not None:
                yield snapshot

    def feed_line(self, line: str) -> Optional[UIMessage]:
        line = line.strip()
        if not line.startswith("data:"):
            return None
        data_str = line[5:].strip()
        if data_str == "[DONE]":
            self.done = True
            return None
        try:
            event = json.loads(data_str)
        except json.JSONDecodeError:
            return None
        if not isinstance(event, dict):
            return None

        etype = event.get("type")
        if etype == "start":
            self.message_id = event.get("messageId") or self.message_id
        elif etype in ("text-start", "reasoning-start"):
            self._index[event.get("id")] = len(self._parts)
            self._parts.append(TextPart(text="") if etype == "text-start" else ReasoningPart(text=""))
        elif etype in ("text-delta", "reasoning-delta"):
            idx = self._index.get(event.get("id"))
            if idx is None:
                return None
            part = self._parts[idx]
            delta = event.get("delta") or ""
            self._parts[idx] = TextPart(text=part.text + delta) if part.type == "text" else ReasoningPart(text=part.text + delta)
            return self.snapshot()
        elif etype == "error":
            self.error = event.get("errorText") or "stream error"
        elif etype == "finish":
            self.finished = True
        # 其余帧（*-end、data-* 等）无需处理
        return None

    def snapshot(self) -> UIMessage:
        return UIMessage(id=self.message_id, role="assistant", parts=list(self._parts))
