"""HTTP 接口。

- POST /chat: 流式返回一轮对话（UI 消息流协议），流开始前失败返回 500 `{error, details}`。
- GET /conversations/{conversation_id}/messages: 返回会话模型与历史消息。
"""

from typing import Any, Dict

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool

from chat_core.api.service import ChatService, get_default_service
from chat_core.api.stream_protocol import UI_MESSAGE_STREAM_HEADERS, encode_ui_message_stream
from chat_core.config.settings import settings
from chat_core.domain.exceptions import StoreError
from chat_core.infrastructure.logging.logger import logger


app = FastAPI(title="chat_core", description="Multi-turn streaming chat API")


def get_service() -> ChatService:
    return get_default_service()


@app.post("/chat")
async def chat(request: Request, service: ChatService = Depends(get_service)):
    try:
        payload = await request.json()
        session = await run_in_threadpool(service.start_turn, payload)
    except Exception as e:
        logger.error(f"API route error: {e}", extra={"extra": {"error": str(e)}})
        return JSONResponse(
            status_code=500,
            content={
                "error": getattr(e, "message", None) or str(e) or "Internal server error",
                "details": f"{type(e).__name__}: {e}",
            },
        )
    return StreamingResponse(
        encode_ui_message_stream(session, send_reasoning=settings.stream_send_reasoning),
        media_type="text/event-stream",
        headers=UI_MESSAGE_STREAM_HEADERS,
    )


@app.get("/conversations/{conversation_id}/messages")
def conversation_messages(conversation_id: str, service: ChatService = Depends(get_service)) -> Dict[str, Any]:
    try:
        return service.get_conversation_messages(conversation_id)
    except StoreError as e:
        raise HTTPException(status_code=e.http_status, detail=e.message)


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
