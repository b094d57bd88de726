"""流式会话。

一个 StreamingSession 只负责与 Provider 的一次请求/响应交换：

    idle → sending → streaming → completed | failed

- 迭代会话得到 StreamUpdate 序列（只能迭代一次，新请求需新建会话）。
- 结束时恰好产生一个终止事件：SessionCompleted 或 SessionFailed，
  并且 on_finish 只会被调用一次。
- cancel() 或消费方提前关闭迭代器都视为取消，终止事件为 SessionFailed(cancelled=True)。
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Iterator, List, Optional, Union
from uuid import uuid4

from chat_core.domain.exceptions import SessionError
from chat_core.domain.models import (
    REASONING_PART,
    TEXT_PART,
    ChatRequest,
    ChatStreamChunk,
    Part,
    ReasoningPart,
    TextPart,
    UIMessage,
)
from chat_core.infrastructure.logging.logger import log_event, logger
from chat_core.providers.base import ProviderClient


class SessionState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StreamUpdate:
    """一次增量更新。

    message 是截至目前的完整助手消息快照；part_index/part_type/delta 描述本次新增的内容。
    """

    message: UIMessage
    part_index: int
    part_type: str
    delta: str


@dataclass
class SessionCompleted:
    response_message: UIMessage


@dataclass
class SessionFailed:
    error: str
    cancelled: bool = False


SessionOutcome = Union[SessionCompleted, SessionFailed]
OutcomeListener = Callable[[SessionOutcome], None]

CANCELLED = "cancelled"


class StreamingSession:
    def __init__(
        self,
        provider: ProviderClient,
        request: ChatRequest,
        on_finish: Optional[OutcomeListener] = None,
        message_id: Optional[str] = None,
    ):
        self._provider = provider
        self._request = request
        self._on_finish = on_finish
        self.message_id = message_id or f"m-{uuid4().hex}"
        self._state = SessionState.IDLE
        self._outcome: Optional[SessionOutcome] = None
        self._listeners: List[OutcomeListener] = []
        self._parts: List[Part] = []
        self._iterated = False
        self._cancel_requested = False
        self._log_ctx = {"message_id": self.message_id, "provider": request.provider, "model": request.model}

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        return self._outcome

    def add_listener(self, listener: OutcomeListener) -> None:
        """注册终止事件监听器；会话已结束时立即回调。"""

        if self._outcome is not None:
            self._notify(listener, self._outcome)
            return
        self._listeners.append(listener)

    def cancel(self) -> None:
        if self._outcome is not None:
            return
        self._cancel_requested = True
        if self._state == SessionState.IDLE:
            self._finish(SessionFailed(error=CANCELLED, cancelled=True))

    def wait(self) -> Optional[SessionOutcome]:
        """消费剩余增量并返回终止事件。"""

        if not self._iterated:
            for _ in self:
                pass
        return self._outcome

    def __iter__(self) -> Iterator[StreamUpdate]:
        if self._iterated:
            raise SessionError(code="SESSION_CONSUMED", message="streaming session can only be iterated once")
        self._iterated = True
        return self._run()

    def _run(self) -> Iterator[StreamUpdate]:
        if self._outcome is not None:
            return
        self._state = SessionState.SENDING
        log_event(
            logging.INFO,
            "Calling provider (stream)",
            self._log_ctx,
            message_count=len(self._request.messages),
        )
        stream = None
        try:
            stream = iter(self._provider.chat_stream(self._request))
            for chunk in stream:
                if self._cancel_requested:
                    break
                for update in self._apply(chunk):
                    self._state = SessionState.STREAMING
                    yield update
                if self._cancel_requested:
                    break
        except GeneratorExit:
            self._cancel_requested = True
            raise
        except Exception as exc:
            log_event(logging.ERROR, "Provider stream failed", self._log_ctx, error=str(exc))
            self._finish(SessionFailed(error=str(exc) or exc.__class__.__name__))
            return
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                close()
            if self._outcome is None and self._cancel_requested:
                log_event(logging.INFO, "Stream cancelled", self._log_ctx, parts=len(self._parts))
                self._finish(SessionFailed(error=CANCELLED, cancelled=True))

        if self._outcome is not None:
            return
        response = self._snapshot()
        response.created_at = datetime.now(timezone.utc)
        log_event(logging.INFO, "Stream completed", self._log_ctx, parts=len(response.parts))
        self._finish(SessionCompleted(response_message=response))

    def _apply(self, chunk: ChatStreamChunk) -> Iterator[StreamUpdate]:
        if chunk.usage:
            log_event(
                logging.INFO,
                "Token usage",
                self._log_ctx,
                prompt_tokens=chunk.usage.prompt_tokens,
                completion_tokens=chunk.usage.completion_tokens,
                total_tokens=chunk.usage.total_tokens,
            )
        if not chunk.choices:
            return
        delta = chunk.choices[0].delta
        # 推理内容先于正文
        for part_type, text in ((REASONING_PART, delta.reasoning), (TEXT_PART, delta.content)):
            if not text:
                continue
            index = self._append(part_type, text)
            yield StreamUpdate(message=self._snapshot(), part_index=index, part_type=part_type, delta=text)

    def _append(self, part_type: str, text: str) -> int:
        if self._parts and self._parts[-1].type == part_type:
            last = self._parts[-1]
            self._parts[-1] = replace(last, text=last.text + text)
        elif part_type == REASONING_PART:
            self._parts.append(ReasoningPart(text=text))
        else:
            self._parts.append(TextPart(text=text))
        return len(self._parts) - 1

    def _snapshot(self) -> UIMessage:
        return UIMessage(id=self.message_id, role="assistant", parts=list(self._parts))

    def _finish(self, outcome: SessionOutcome) -> None:
        if self._outcome is not None:
            return
        self._outcome = outcome
        self._state = SessionState.COMPLETED if isinstance(outcome, SessionCompleted) else SessionState.FAILED
        if self._on_finish is not None:
            self._notify(self._on_finish, outcome)
        for listener in self._listeners:
            self._notify(listener, outcome)
        self._listeners.clear()

    def _notify(self, listener: OutcomeListener, outcome: SessionOutcome) -> None:
        try:
            listener(outcome)
        except Exception:
            logger.exception("Session finish listener failed", extra={"extra": dict(self._log_ctx)})
