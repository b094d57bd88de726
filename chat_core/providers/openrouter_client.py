"""OpenRouter Provider 适配器。

本模块负责：

1. 接收统一的 ChatRequest。
2. 将其转换为 OpenAI 兼容的 chat/completions 流式请求（system 作为首条消息）。
3. 调用 HTTP 接口并处理网络/API 异常。
4. 将 SSE 响应逐行解析为统一的 ChatStreamChunk，正文与推理内容分开给出。
"""

import json
from typing import Any, Dict, Iterable, List

import httpx

from chat_core.domain.models import (
    ChatDelta,
    ChatRequest,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
    ModelMessage,
)
from chat_core.domain.exceptions import NetworkError, ApiError, RateLimitError, ValidationError
from chat_core.providers.registry import OPENROUTER_CONFIG, ProviderConfig


class OpenRouterClient:
    """OpenRouter 客户端实现。

    - name: Provider 名称（供日志/调试使用）。
    - chat_stream: 对外统一流式调用入口。
    """

    name = "openrouter"

    def __init__(self, settings, config: ProviderConfig = OPENROUTER_CONFIG):
        # Settings 里包含 base_url、api_key、超时等配置
        self._settings = settings
        self._config = config

    def chat_stream(self, req: ChatRequest) -> Iterable[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。"""

        if not getattr(self._settings, "openrouter_api_key", None):
            # 配置缺失走 ValidationError，方便上层统一处理
            raise ValidationError(code="MISSING_API_KEY", message="OPENROUTER_API_KEY not set")
        payload = self._build_payload(req)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                base = getattr(self._settings, "openrouter_base_url", None) or self._config.base_url
                with client.stream(
                    "POST",
                    f"{base}/chat/completions",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {self._settings.openrouter_api_key}",
                        "Content-Type": "application/json",
                    },
                ) as resp:
                    if resp.status_code == 429:
                        # 限流错误交给上层做重试/退避
                        raise RateLimitError(code="RATE_LIMIT", message="OpenRouter rate limit", http_status=429)
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
                    for line in resp.iter_lines():
                        if not line:
                            continue
                        data_str = line
                        if data_str.startswith("data:"):
                            data_str = data_str[5:].strip()
                        else:
                            # ": OPENROUTER PROCESSING" 之类的注释行
                            continue
                        if not data_str or data_str == "[DONE]":
                            continue
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if "error" in payload_chunk:
                            err = payload_chunk.get("error") or {}
                            raise ApiError(
                                code="API_ERROR",
                                message=str(err.get("message") if isinstance(err, dict) else err),
                                http_status=502,
                            )
                        yield self._parse_stream_chunk(payload_chunk, req)
        except httpx.RequestError as e:
            # 网络错误：DNS 失败、连接超时等
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    def _build_payload(self, req: ChatRequest) -> dict:
        """将 ChatRequest 转成 OpenAI 兼容的请求 JSON。"""

        msgs: List[Dict[str, Any]] = []
        if req.system:
            msgs.append({"role": "system", "content": req.system})
        msgs.extend(self._message_to_payload(m) for m in req.messages)
        payload: Dict[str, Any] = {
            "model": self._config.resolve_model(req.model),
            "messages": msgs,
            "stream": True,
        }
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.max_tokens:
            payload["max_tokens"] = req.max_tokens
        return payload

    def _parse_stream_chunk(self, data: dict, req: ChatRequest) -> ChatStreamChunk:
        """解析流式响应中的单条增量。"""

        choices: list[ChatStreamChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            delta_payload = ch.get("delta") or {}
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=ChatDelta(
                        role=delta_payload.get("role") or "assistant",
                        content=delta_payload.get("content") or "",
                        reasoning=delta_payload.get("reasoning") or "",
                    ),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatStreamChunk(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=usage,
            raw=data,
        )

    @staticmethod
    def _message_to_payload(message: ModelMessage) -> Dict[str, Any]:
        return {"role": message.role, "content": message.content}
