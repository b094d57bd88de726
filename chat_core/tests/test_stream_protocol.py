import json

from chat_core.api.stream_protocol import DONE_FRAME, UIMessageStreamReader, encode_ui_message_stream
from chat_core.chat.session import StreamingSession
from chat_core.domain.exceptions import ApiError
from chat_core.domain.models import (
    ChatDelta,
    ChatRequest,
    ChatStreamChoice,
    ChatStreamChunk,
    ReasoningPart,
    TextPart,
)


def _chunk(content="", reasoning=""):
    return ChatStreamChunk(
        provider="fake",
        model="m1",
        choices=[ChatStreamChoice(index=0, delta=ChatDelta(content=content, reasoning=reasoning))],
    )


class FakeProvider:
    name = "fake"

    def __init__(self, chunks, error=None):
        self._chunks = chunks
        self._error = error

    def chat_stream(self, req):
        for chunk in self._chunks:
            yield chunk
        if self._error:
            raise self._error


def _session(provider, on_finish=None):
    req = ChatRequest(provider="fake", model="m1", messages=[])
    return StreamingSession(provider, req, on_finish=on_finish, message_id="msg1")


def _events(frames):
    return [json.loads(f[len("data: "):]) for f in frames if f != DONE_FRAME]


def test_encode_frames_in_order():
    frames = list(encode_ui_message_stream(_session(FakeProvider([_chunk(reasoning="r"), _chunk(content="a"), _chunk(content="b")]))))
    assert frames[-1] == DONE_FRAME
    types = [e["type"] for e in _events(frames)]
    assert types == [
        "start",
        "reasoning-start",
        "reasoning-delta",
        "reasoning-end",
        "text-start",
        "text-delta",
        "text-delta",
        "text-end",
        "finish",
    ]


def test_encode_error_frame_on_provider_failure():
    frames = list(encode_ui_message_stream(_session(FakeProvider([], error=ApiError(code="API_ERROR", message="down")))))
    events = _events(frames)
    assert {"type": "error", "errorText": "down"} in events
    assert events[-1] == {"type": "finish"}


def test_reader_rebuilds_message():
    frames = list(encode_ui_message_stream(_session(FakeProvider([_chunk(reasoning="r"), _chunk(content="a"), _chunk(content="b")]))))
    reader = UIMessageStreamReader()
    snapshots = list(reader.feed("".join(frames).splitlines()))
    assert len(snapshots) == 3
    assert snapshots[-1].id == "msg1"
    assert snapshots[-1].parts == [ReasoningPart(text="r"), TextPart(text="ab")]
    assert reader.finished and reader.done and reader.error is None


def test_closing_encoder_cancels_session():
    finished = []
    stream = encode_ui_message_stream(_session(FakeProvider([_chunk(content="a"), _chunk(content="b")]), finished.append))
    next(stream)
    stream.close()
    assert len(finished) == 1
    assert finished[0].cancelled


def test_encode_can_skip_reasoning_frames():
    provider = FakeProvider([_chunk(reasoning="r"), _chunk(content="a")])
    frames = list(encode_ui_message_stream(_session(provider), send_reasoning=False))
    types = [e["type"] for e in _events(frames)]
    assert types == ["start", "text-start", "text-delta", "text-end", "finish"]
