"""Chat Core 顶层包。

该包提供多轮流式对话的核心实现，
包括消息编解码、轮次编排、流式会话、落库对账、
客户端轮次控制、Provider 适配、配置加载与持久化存储等能力。
"""

from chat_core.api.service import ChatService
from chat_core.client.controller import ClientTurnController

__all__ = ["ChatService", "ClientTurnController"]
