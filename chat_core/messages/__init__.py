"""消息表示之间的转换（存储记录 ⇄ UI 消息 ⇄ 模型输入）。"""

from chat_core.messages.codec import decode, encode, message_text, to_model_messages

__all__ = ["decode", "encode", "message_text", "to_model_messages"]
