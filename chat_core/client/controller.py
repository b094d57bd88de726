"""客户端轮次控制器。

对应聊天页面的交互状态机：

- submit(): 发送输入框内容，发送前立即清空输入。
- auto_trigger(): 会话刚创建时为最后一条未回复的用户消息自动发起一轮，
  每个会话只触发一次（由 ConversationState 保证），并移除 autoTrigger 参数。
- retry(): 重新发送最近一条用户消息，skipUserMessage=True，不会重复落库。

同一视图同一时间只允许一个流式会话，status 为 streaming 时以上操作均不生效。
"""

from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from chat_core.client.state import AUTO_TRIGGER_PARAM, ConversationState, RouteParams
from chat_core.client.transport import ChatTransport, TurnStream
from chat_core.domain.models import TextPart, UIMessage
from chat_core.messages.codec import message_text

IDLE = "idle"
STREAMING = "streaming"


class ClientTurnController:
    def __init__(
        self,
        conversation_id: str,
        transport: ChatTransport,
        state: ConversationState,
        history: Optional[List[UIMessage]] = None,
        route: Optional[RouteParams] = None,
        selected_model: Optional[str] = None,
        on_update: Optional[Callable[["ClientTurnController"], None]] = None,
    ):
        self.conversation_id = conversation_id
        self.input = ""
        self.selected_model = selected_model
        self.status = IDLE
        self.history: List[UIMessage] = list(history or [])
        self.messages: List[UIMessage] = []
        self.last_error: Optional[str] = None
        self.route = route or RouteParams()
        self._transport = transport
        self._state = state
        self._on_update = on_update
        self._active: Optional[TurnStream] = None
        self._has_auto_triggered = False

    @classmethod
    def from_conversation(
        cls,
        data: Mapping[str, Any],
        transport: ChatTransport,
        state: ConversationState,
        route: Optional[RouteParams] = None,
        on_update: Optional[Callable[["ClientTurnController"], None]] = None,
    ) -> "ClientTurnController":
        """根据 `GET /conversations/{id}/messages` 的返回值构造控制器。"""

        history = [UIMessage.from_dict(m) for m in data.get("messages") or [] if m.get("id")]
        return cls(
            conversation_id=data["conversationId"],
            transport=transport,
            state=state,
            history=history,
            route=route,
            selected_model=data.get("model"),
            on_update=on_update,
        )

    @property
    def rendered_messages(self) -> List[UIMessage]:
        return self.history + self.messages

    @property
    def can_retry(self) -> bool:
        rendered = self.rendered_messages
        return bool(rendered) and rendered[-1].role == "assistant" and self.status != STREAMING

    def select_model(self, model: str) -> None:
        self.selected_model = model

    def set_input(self, text: str) -> None:
        self.input = text

    def submit(self, text: Optional[str] = None) -> bool:
        text = self.input if text is None else text
        if not text or not text.strip() or self.status == STREAMING:
            return False
        self.input = ""
        stream = self._open(text, {"model": self.selected_model, "conversationId": self.conversation_id})
        self._drive(stream)
        return True

    def auto_trigger(self) -> bool:
        if not self.route.auto_trigger_requested or self._has_auto_triggered:
            return False
        if self.status == STREAMING or not self.selected_model or not self.history:
            return False
        if self.history[-1].role != "user":
            return False
        if not self._state.mark_if_new(self.conversation_id):
            return False

        self._has_auto_triggered = True
        stream = self._open(
            None,
            {
                "model": self.selected_model,
                "conversationId": self.conversation_id,
                "skipUserMessage": True,
            },
        )
        self.route.discard(AUTO_TRIGGER_PARAM)
        self._drive(stream)
        return True

    def retry(self) -> bool:
        if not self.can_retry:
            return False
        last_user = next((m for m in reversed(self.rendered_messages) if m.role == "user"), None)
        if last_user is None:
            return False
        stream = self._open(
            message_text(last_user),
            {
                "model": self.selected_model,
                "conversationId": self.conversation_id,
                "skipUserMessage": True,
            },
        )
        self._drive(stream)
        return True

    def stop(self) -> None:
        if self._active is not None:
            self._active.cancel()

    def _open(self, text: Optional[str], body: Dict[str, Any]) -> TurnStream:
        user_message = UIMessage(
            id=f"u-{uuid4().hex}",
            role="user",
            parts=[TextPart(text=text)] if text else [],
        )
        stream = self._transport.send([user_message], body)
        self.status = STREAMING
        self.last_error = None
        self._active = stream
        if user_message.parts:
            self.messages.append(user_message)
        self._notify()
        return stream

    def _drive(self, stream: TurnStream) -> None:
        assistant_index: Optional[int] = None
        try:
            for snapshot in stream:
                if assistant_index is None:
                    self.messages.append(snapshot)
                    assistant_index = len(self.messages) - 1
                else:
                    self.messages[assistant_index] = snapshot
                self._notify()
        finally:
            self.status = IDLE
            self._active = None
        self.last_error = stream.error
        self._notify()

    def _notify(self) -> None:
        if self._on_update is not None:
            self._on_update(self)
