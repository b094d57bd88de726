"""客户端轮次控制：输入、发送、自动触发与重试。"""

from chat_core.client.controller import ClientTurnController
from chat_core.client.state import AUTO_TRIGGER_PARAM, ConversationState, RouteParams
from chat_core.client.transport import ChatTransport, HttpChatTransport, LocalChatTransport

__all__ = [
    "AUTO_TRIGGER_PARAM",
    "ChatTransport",
    "ClientTurnController",
    "ConversationState",
    "HttpChatTransport",
    "LocalChatTransport",
    "RouteParams",
]
