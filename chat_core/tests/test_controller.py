from chat_core.client.controller import ClientTurnController
from chat_core.client.state import ConversationState, RouteParams
from chat_core.domain.models import TextPart, UIMessage


class FakeStream:
    def __init__(self, replies, error=None):
        self._replies = replies
        self.error = None
        self._error = error
        self.cancelled = False

    def __iter__(self):
        text = ""
        for piece in self._replies:
            if self.cancelled:
                self.error = "cancelled"
                return
            text += piece
            yield UIMessage(id="a-new", role="assistant", parts=[TextPart(text=text)])
        self.error = self._error

    def cancel(self):
        self.cancelled = True


class FakeTransport:
    def __init__(self, replies=("ok",), error=None):
        self.sent = []
        self._replies = replies
        self._error = error

    def send(self, messages, body):
        self.sent.append((messages, body))
        return FakeStream(self._replies, self._error)


def _history(*pairs):
    return [UIMessage(id=f"h{i}", role=role, parts=[TextPart(text=text)]) for i, (role, text) in enumerate(pairs)]


def _controller(transport, history=(), route=None, state=None, model="m1", **kw):
    return ClientTurnController(
        conversation_id="c1",
        transport=transport,
        state=state or ConversationState(),
        history=list(history),
        route=route,
        selected_model=model,
        **kw,
    )


def test_submit_sends_and_clears_input():
    transport = FakeTransport(replies=("he", "llo"))
    ctrl = _controller(transport)
    ctrl.set_input("hi")
    assert ctrl.submit()
    assert ctrl.input == ""
    messages, body = transport.sent[0]
    assert body == {"model": "m1", "conversationId": "c1"}
    assert messages[0].parts == [TextPart(text="hi")]
    assert [m.role for m in ctrl.messages] == ["user", "assistant"]
    assert ctrl.messages[-1].parts == [TextPart(text="hello")]
    assert ctrl.status == "idle"
    assert ctrl.can_retry


def test_submit_ignores_blank_text_and_active_stream():
    transport = FakeTransport()
    ctrl = _controller(transport)
    assert not ctrl.submit("   ")
    ctrl.status = "streaming"
    assert not ctrl.submit("hi")
    assert transport.sent == []


def test_submit_is_blocked_while_streaming():
    transport = FakeTransport(replies=("a", "b"))
    results = []

    def on_update(c):
        if c.status == "streaming":
            results.append(c.submit("again"))

    ctrl = _controller(transport, on_update=on_update)
    ctrl.submit("hi")
    assert len(transport.sent) == 1
    assert results and not any(results)


def test_auto_trigger_runs_once():
    transport = FakeTransport()
    state = ConversationState()
    route = RouteParams.from_url("/chat/c1?autoTrigger=true")
    ctrl = _controller(transport, history=_history(("user", "first question")), route=route, state=state)

    assert ctrl.auto_trigger()
    assert not ctrl.auto_trigger()
    assert len(transport.sent) == 1
    messages, body = transport.sent[0]
    assert body["skipUserMessage"] is True
    assert messages[0].parts == []
    assert route.url == "/chat/c1"
    assert state.has_been_triggered("c1")
    # 自动触发不会在本地重复渲染用户消息
    assert [m.role for m in ctrl.rendered_messages] == ["user", "assistant"]


def test_auto_trigger_shared_state_across_mounts():
    transport = FakeTransport()
    state = ConversationState()
    history = _history(("user", "q"))
    first = _controller(transport, history=history, route=RouteParams.from_url("/chat/c1?autoTrigger=true"), state=state)
    second = _controller(transport, history=history, route=RouteParams.from_url("/chat/c1?autoTrigger=true"), state=state)
    assert first.auto_trigger()
    assert not second.auto_trigger()
    assert len(transport.sent) == 1


def test_auto_trigger_preconditions():
    transport = FakeTransport()
    trigger = "/chat/c1?autoTrigger=true"
    assert not _controller(transport, history=_history(("user", "q")), route=RouteParams.from_url("/chat/c1")).auto_trigger()
    assert not _controller(transport, history=_history(("user", "q")), route=RouteParams.from_url(trigger), model=None).auto_trigger()
    assert not _controller(transport, history=[], route=RouteParams.from_url(trigger)).auto_trigger()
    answered = _history(("user", "q"), ("assistant", "a"))
    assert not _controller(transport, history=answered, route=RouteParams.from_url(trigger)).auto_trigger()
    assert transport.sent == []


def test_retry_resends_last_user_message():
    transport = FakeTransport(replies=("hello again",))
    ctrl = _controller(transport, history=_history(("user", "hi"), ("assistant", "hello")))
    assert ctrl.can_retry
    assert ctrl.retry()
    messages, body = transport.sent[0]
    assert messages[0].parts == [TextPart(text="hi")]
    assert body == {"model": "m1", "conversationId": "c1", "skipUserMessage": True}


def test_retry_disabled_without_assistant_reply():
    transport = FakeTransport()
    ctrl = _controller(transport, history=_history(("user", "hi")))
    assert not ctrl.can_retry
    assert not ctrl.retry()
    assert transport.sent == []


def test_failed_stream_sets_error_and_allows_retry():
    transport = FakeTransport(replies=("par",), error="provider down")
    ctrl = _controller(transport)
    ctrl.submit("hi")
    assert ctrl.last_error == "provider down"
    assert ctrl.status == "idle"
    assert ctrl.can_retry
    assert ctrl.retry()
    messages, body = transport.sent[-1]
    assert messages[0].parts == [TextPart(text="hi")]
    assert body["skipUserMessage"] is True


def test_stop_cancels_active_stream():
    transport = FakeTransport(replies=("a", "b", "c"))
    def stop_after_first_reply(c):
        if c.messages and c.messages[-1].role == "assistant":
            c.stop()

    ctrl = _controller(transport, on_update=stop_after_first_reply)
    ctrl.submit("hi")
    assert ctrl.last_error == "cancelled"
    assert ctrl.messages[-1].parts == [TextPart(text="a")]


def test_from_conversation_seeds_model_and_history():
    data = {
        "conversationId": "c1",
        "model": "m9",
        "messages": [{"id": "u1", "role": "user", "parts": [{"type": "text", "text": "q"}]}],
    }
    ctrl = ClientTurnController.from_conversation(data, FakeTransport(), ConversationState())
    assert ctrl.selected_model == "m9"
    assert [m.id for m in ctrl.history] == ["u1"]
