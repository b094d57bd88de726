"""客户端传输层。

ChatTransport.send() 返回一个 TurnStream：迭代得到助手消息快照，
迭代结束后 error 为空表示成功。提供两种实现：

- LocalChatTransport: 进程内直接调用 ChatService。
- HttpChatTransport: 通过 httpx 流式请求 `POST /chat` 并解析 UI 消息流。
"""

import json
from typing import Any, Dict, Iterator, List, Optional, Protocol

import httpx

from chat_core.api.service import ChatService
from chat_core.api.stream_protocol import UIMessageStreamReader
from chat_core.chat.session import SessionFailed, StreamingSession
from chat_core.config.settings import settings
from chat_core.domain.exceptions import BusinessError
from chat_core.domain.models import UIMessage


class TurnStream(Protocol):
    error: Optional[str]

    def __iter__(self) -> Iterator[UIMessage]:
        ...

    def cancel(self) -> None:
        ...


class ChatTransport(Protocol):
    def send(self, messages: List[UIMessage], body: Dict[str, Any]) -> TurnStream:
        ...


def _payload(messages: List[UIMessage], body: Dict[str, Any]) -> Dict[str, Any]:
    payload = {k: v for k, v in body.items() if v is not None}
    payload["messages"] = [m.to_dict() for m in messages]
    return payload


class LocalTurnStream:
    def __init__(self, service: ChatService, payload: Dict[str, Any]):
        self._service = service
        self._payload = payload
        self._session: Optional[StreamingSession] = None
        self._cancelled = False
        self.error: Optional[str] = None

    def __iter__(self) -> Iterator[UIMessage]:
        try:
            self._session = self._service.start_turn(self._payload)
        except BusinessError as e:
            self.error = e.message
            return
        if self._cancelled:
            self._session.cancel()
        for update in self._session:
            yield update.message
        outcome = self._session.outcome
        if isinstance(outcome, SessionFailed):
            self.error = outcome.error

    def cancel(self) -> None:
        self._cancelled = True
        if self._session is not None:
            self._session.cancel()


class LocalChatTransport:
    def __init__(self, service: ChatService):
        self._service = service

    def send(self, messages: List[UIMessage], body: Dict[str, Any]) -> LocalTurnStream:
        return LocalTurnStream(self._service, _payload(messages, body))


class HttpTurnStream:
    def __init__(self, url: str, payload: Dict[str, Any], timeout: float):
        self._url = url
        self._payload = payload
        self._timeout = timeout
        self._cancelled = False
        self.error: Optional[str] = None

    def __iter__(self) -> Iterator[UIMessage]:
        reader = UIMessageStreamReader()
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                with client.stream("POST", self._url, json=self._payload) as resp:
                    if resp.status_code >= 400:
                        resp.read()
                        self.error = self._error_text(resp)
                        return
                    for line in resp.iter_lines():
                        if self._cancelled:
                            self.error = "cancelled"
                            return
                        snapshot = reader.feed_line(line)
                        if snapshot is not None:
                            yield snapshot
                        if reader.done:
                            break
        except httpx.RequestError as e:
            self.error = str(e) or "network error"
            return
        if reader.error:
            self.error = reader.error
        elif not reader.finished:
            self.error = "stream ended unexpectedly"

    def cancel(self) -> None:
        self._cancelled = True

    @staticmethod
    def _error_text(resp) -> str:
        try:
            data = json.loads(resp.text)
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"HTTP {resp.status_code}"


class HttpChatTransport:
    def __init__(self, base_url: str, timeout: Optional[float] = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout or settings.http_timeout

    def send(self, messages: List[UIMessage], body: Dict[str, Any]) -> HttpTurnStream:
        return HttpTurnStream(f"{self._base_url}/chat", _payload(messages, body), self._timeout)
