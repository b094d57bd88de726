"""对外 API 服务模块。

ChatService 把一次 `POST /chat` 请求串起来：

1. 校验并规范化请求体（单条或多条新消息统一为列表）。
2. TurnOrchestrator 合并历史与新消息，生成模型输入。
3. 创建 StreamingSession，结束时根据终止事件调用 PersistenceReconciler。

落库失败只记录错误日志，不影响已经发给客户端的流。
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from chat_core.chat.orchestrator import PreparedTurn, TurnOrchestrator, normalize_new_messages
from chat_core.chat.reconciler import PersistenceReconciler
from chat_core.chat.session import SessionCompleted, SessionOutcome, StreamingSession
from chat_core.config.settings import settings
from chat_core.domain.conversation import MessageStore
from chat_core.domain.exceptions import StoreError, ValidationError
from chat_core.domain.models import ChatRequest
from chat_core.infrastructure.logging.logger import log_event, logger
from chat_core.infrastructure.storage.json_store import JsonMessageStore
from chat_core.prompts import load_system_prompt
from chat_core.providers import create_provider
from chat_core.providers.base import ProviderClient


class ChatTurnRequest(BaseModel):
    """`POST /chat` 请求体。"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    conversation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversationId", "chatId", "conversation_id"),
    )
    messages: Union[Dict[str, Any], List[Dict[str, Any]]]
    model: Optional[str] = None
    skip_user_message: Optional[bool] = Field(
        default=False,
        validation_alias=AliasChoices("skipUserMessage", "skip_user_message"),
    )


class ChatService:
    def __init__(
        self,
        store: MessageStore,
        provider_client: ProviderClient,
        default_model: Optional[str] = None,
        system_prompt: Optional[str] = None,
    ):
        self._store = store
        self._provider_client = provider_client
        self._default_model = default_model or settings.default_model
        self._system_prompt = system_prompt if system_prompt is not None else load_system_prompt(settings.prompt_locale)
        self._orchestrator = TurnOrchestrator(store)
        self._reconciler = PersistenceReconciler(store)

    def start_turn(self, payload: Mapping[str, Any]) -> StreamingSession:
        """解析请求并创建流式会话（尚未开始调用 Provider）。

        Raises:
            ValidationError: 请求体不合法。
            StoreError: 读取历史失败。
        """

        try:
            req = ChatTurnRequest.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(code="INVALID_REQUEST", message=str(e))

        model = req.model or self._default_model
        skip_user_message = bool(req.skip_user_message)
        new_messages = normalize_new_messages(req.messages)
        prepared = self._orchestrator.prepare(req.conversation_id, new_messages, model)

        chat_req = ChatRequest(
            provider=self._provider_client.name,
            model=model,
            messages=prepared.model_messages,
            system=self._system_prompt,
            temperature=settings.temperature,
        )

        def on_finish(outcome: SessionOutcome) -> None:
            self._persist(prepared, outcome, skip_user_message)

        return StreamingSession(self._provider_client, chat_req, on_finish=on_finish)

    def _persist(self, prepared: PreparedTurn, outcome: SessionOutcome, skip_user_message: bool) -> None:
        log_ctx = {"conversation_id": prepared.conversation_id, "model": prepared.model}
        if isinstance(outcome, SessionCompleted):
            response = outcome.response_message
        else:
            # 取消或失败时丢弃不完整的助手消息，用户消息照常保存，供重试使用
            response = None
            if not outcome.cancelled:
                log_event(logging.WARNING, "Turn failed, assistant reply discarded", log_ctx, error=outcome.error)
        try:
            self._reconciler.reconcile(
                prepared.conversation_id,
                prepared.new_messages,
                response,
                prepared.model,
                skip_user_message=skip_user_message,
            )
        except Exception as e:
            logger.error(f"Error saving messages: {e}", extra={"extra": dict(log_ctx, error=str(e))})

    def get_conversation_messages(self, conversation_id: str) -> Dict[str, Any]:
        """获取会话模型与解码后的历史消息。

        Returns:
            {"conversationId", "model", "messages"}，messages 为 UIMessage 字典列表
        """

        try:
            model = self._store.get_conversation(conversation_id).model
        except StoreError as e:
            if e.code != "CONVERSATION_NOT_FOUND":
                raise
            model = None
        history = self._orchestrator.load_history(conversation_id)
        return {
            "conversationId": conversation_id,
            "model": model,
            "messages": [m.to_dict() for m in history],
        }


_service: Optional[ChatService] = None


def get_default_service() -> ChatService:
    """获取默认的 ChatService 实例（单例）。"""
    global _service
    if _service is None:
        _service = ChatService(
            store=JsonMessageStore(root=settings.storage_root),
            provider_client=create_provider(),
        )
    return _service
