"""统一的消息与结果数据模型。

本模块定义了对话链路中共享的标准数据结构：

- Part: 消息内容片段（text / reasoning / 未知类型），以带标签的变体表示。
- UIMessage: 渲染层使用的消息，由若干 Part 组成。
- ModelMessage: 发送给模型的扁平消息（role + 纯文本 content）。
- ChatRequest: 发给底层 LLM Provider 的完整流式请求。
- ChatStreamChunk: 从 Provider 解析后的统一流式增量。

所有 Provider 适配器都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union


# UI 层消息角色
Role = Literal["system", "user", "assistant"]

TEXT_PART = "text"
REASONING_PART = "reasoning"


@dataclass
class TextPart:
    """普通文本片段。"""

    text: str
    type: str = field(default=TEXT_PART, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class ReasoningPart:
    """模型推理过程片段，仅用于展示，不会作为模型输入。"""

    text: str
    type: str = field(default=REASONING_PART, init=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "text": self.text}


@dataclass
class UnknownPart:
    """未识别的片段类型。

    data 保留原始字典，写回存储时原样输出，保证新类型不会在往返中丢失。
    """

    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload = dict(self.data)
        payload["type"] = self.type
        return payload


Part = Union[TextPart, ReasoningPart, UnknownPart]


def part_from_dict(raw: Any) -> Part:
    """将线上的 dict 形式转换为 Part 变体。

    text/reasoning 片段要求 text 为字符串，否则按 UnknownPart 保留。
    """

    if not isinstance(raw, dict):
        return UnknownPart(type="", data={"value": raw})
    ptype = raw.get("type")
    text = raw.get("text")
    if ptype == TEXT_PART and isinstance(text, str):
        return TextPart(text=text)
    if ptype == REASONING_PART and isinstance(text, str):
        return ReasoningPart(text=text)
    return UnknownPart(type=str(ptype or ""), data=dict(raw))


def is_valid_part(raw: Any) -> bool:
    """存储内容中的片段是否可渲染（已知标签且 text 为字符串）。"""

    return not isinstance(part_from_dict(raw), UnknownPart)


@dataclass
class UIMessage:
    """渲染层消息。

    - id: 消息 ID（存储记录 ID 或流式响应生成的 ID）。
    - role: 消息角色。
    - parts: 有序的内容片段。
    - created_at: 创建时间，流式中的消息可能为空。
    """

    id: str
    role: str
    parts: List[Part] = field(default_factory=list)
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "parts": [p.to_dict() for p in self.parts],
        }
        if self.created_at is not None:
            payload["createdAt"] = self.created_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UIMessage":
        raw_parts = data.get("parts")
        if isinstance(raw_parts, list):
            parts = [part_from_dict(p) for p in raw_parts]
        elif isinstance(data.get("content"), str):
            parts = [TextPart(text=data["content"])]
        else:
            parts = []
        created_at = data.get("createdAt") or data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        return cls(
            id=str(data.get("id") or ""),
            role=str(data.get("role") or ""),
            parts=parts,
            created_at=created_at if isinstance(created_at, datetime) else None,
        )


@dataclass
class ModelMessage:
    """发送给模型的扁平消息。"""

    role: str
    content: str


@dataclass
class ChatRequest:
    """一次完整的流式聊天请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体，
    system 会作为首条 system 消息发送。
    """

    provider: str
    model: str
    messages: List[ModelMessage]
    system: str = ""
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatDelta:
    """流式增量内容：正文与推理过程分别给出。"""

    role: str = "assistant"
    content: str = ""
    reasoning: str = ""


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatDelta
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式对话的增量结果。

    每次流式回调由若干 choice 组成，choice.delta 代表本次增量内容。
    """

    provider: str
    model: str
    choices: List[ChatStreamChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
