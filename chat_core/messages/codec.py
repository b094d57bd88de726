"""消息编解码。

三种消息形态之间的转换都集中在这里：

- decode: StoredMessage → UIMessage（存储内容损坏时降级为单个文本片段）。
- encode: UIMessage / {parts, content} → 存储用 JSON 字符串。
- to_model_messages: UIMessage 列表 → ModelMessage 列表，
  先走严格转换器，结构不合法时退回宽松的纯文本拼接。
"""

import json
from typing import Any, Iterable, List, Mapping, Optional, Union

from chat_core.domain.conversation import StoredMessage
from chat_core.domain.exceptions import MessageConversionError
from chat_core.domain.models import (
    ModelMessage,
    Part,
    ReasoningPart,
    TextPart,
    UIMessage,
    UnknownPart,
    is_valid_part,
    part_from_dict,
)
from chat_core.infrastructure.logging.logger import logger


MODEL_ROLES = {"system", "user", "assistant"}
FINISHED_TOOL_STATES = {"output-available", "output-error"}


def decode(stored: StoredMessage) -> Optional[UIMessage]:
    """把存储记录解码为 UIMessage。

    - JSON 解析失败（包括空字符串）或不是列表：把原始字符串当作单个文本片段。
    - 合法片段为空：返回 None。
    """

    raw = stored.content or ""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        data = None
    if not isinstance(data, list):
        return _ui_message(stored, [TextPart(text=raw)])

    parts = [part_from_dict(item) for item in data if is_valid_part(item)]
    if not parts:
        return None
    return _ui_message(stored, parts)


def _ui_message(stored: StoredMessage, parts: List[Part]) -> UIMessage:
    return UIMessage(
        id=stored.id,
        role=str(stored.role).lower(),
        parts=parts,
        created_at=stored.created_at,
    )


def encode(message: Union[UIMessage, Mapping[str, Any]]) -> str:
    """序列化消息内容，写入 StoredMessage.content。

    parts 非空时原样序列化（包括未知类型片段），否则把 content 包装成单个文本片段。
    """

    if isinstance(message, UIMessage):
        parts: Any = [p.to_dict() for p in message.parts]
        content: Any = ""
    else:
        parts = message.get("parts")
        content = message.get("content")

    if isinstance(parts, list) and parts:
        serialized = [p.to_dict() if hasattr(p, "to_dict") else p for p in parts]
        return json.dumps(serialized, ensure_ascii=False)
    return json.dumps([TextPart(text=content or "").to_dict()], ensure_ascii=False)


def message_text(message: UIMessage) -> str:
    """拼接消息中所有文本片段。"""

    return "\n".join(p.text for p in message.parts if isinstance(p, TextPart))


def to_model_messages(ui_messages: Iterable[UIMessage]) -> List[ModelMessage]:
    """转换为模型输入，严格路径失败时退回宽松路径，本函数不会抛出异常。"""

    messages = list(ui_messages)
    try:
        return _convert_strict(messages)
    except (MessageConversionError, AttributeError, TypeError) as exc:
        logger.warning(
            "Strict message conversion failed, falling back to text-only",
            extra={"extra": {"error": str(exc), "message_count": len(messages)}},
        )
    return _convert_lenient(messages)


def _convert_strict(messages: List[UIMessage]) -> List[ModelMessage]:
    result: List[ModelMessage] = []
    for idx, msg in enumerate(messages):
        if msg.role not in MODEL_ROLES:
            raise MessageConversionError(
                code="INVALID_ROLE", message=f"message {idx} has unsupported role {msg.role!r}"
            )
        if not isinstance(msg.parts, list):
            raise MessageConversionError(code="INVALID_PARTS", message=f"message {idx} parts is not a list")
        texts: List[str] = []
        for part in msg.parts:
            if isinstance(part, TextPart):
                if not isinstance(part.text, str):
                    raise MessageConversionError(code="INVALID_PART", message=f"message {idx} has non-string text")
                texts.append(part.text)
            elif isinstance(part, ReasoningPart):
                if not isinstance(part.text, str):
                    raise MessageConversionError(code="INVALID_PART", message=f"message {idx} has non-string reasoning")
            elif isinstance(part, UnknownPart):
                _check_unknown_part(idx, part)
            else:
                raise MessageConversionError(
                    code="INVALID_PART", message=f"message {idx} has unsupported part {type(part).__name__}"
                )
        content = "\n".join(texts)
        if content:
            result.append(ModelMessage(role=msg.role, content=content))
    return result


def _check_unknown_part(idx: int, part: UnknownPart) -> None:
    """工具调用片段必须结构完整，其余未知类型直接忽略。"""

    if not part.type:
        raise MessageConversionError(code="INVALID_PART", message=f"message {idx} has an untyped part")
    if part.type.startswith("tool-") or part.type == "dynamic-tool":
        if not part.data.get("toolCallId"):
            raise MessageConversionError(
                code="INVALID_TOOL_PART", message=f"message {idx} tool part missing toolCallId"
            )
        if part.data.get("state") not in FINISHED_TOOL_STATES:
            raise MessageConversionError(
                code="INVALID_TOOL_PART",
                message=f"message {idx} tool part {part.data.get('toolCallId')} is not finished",
            )


def _convert_lenient(messages: List[Any]) -> List[ModelMessage]:
    result: List[ModelMessage] = []
    for msg in messages:
        parts = getattr(msg, "parts", None)
        if not isinstance(parts, list):
            continue
        texts = [_lenient_text(p) for p in parts]
        content = "\n".join(t for t in texts if t is not None)
        if content:
            result.append(ModelMessage(role=str(getattr(msg, "role", "") or "user"), content=content))
    return result


def _lenient_text(part: Any) -> Optional[str]:
    if isinstance(part, TextPart):
        return part.text if isinstance(part.text, str) else None
    if isinstance(part, dict) and part.get("type") == "text" and isinstance(part.get("text"), str):
        return part["text"]
    return None
