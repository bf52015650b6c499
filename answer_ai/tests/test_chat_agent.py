import json
import tempfile
import threading
import time
from pathlib import Path

from answer_ai.agents.chat_agent import MAX_ROUNDS, ChatAgent, ChatAgentConfig
from answer_ai.agents.context_builder import ConversationContextBuilder, InboundMessage
from answer_ai.domain.exceptions import BusinessError, NetworkError
from answer_ai.domain.models import ChatDelta, ChatStreamChoice, ChatStreamChunk
from answer_ai.infrastructure.storage.json_store import JsonConversationStore
from answer_ai.prompts import LocalizedPromptProvider
from answer_ai.providers.openai_client import OpenAICompatibleClient
from answer_ai.services.conversation_service import AIConversationService
from answer_ai.tools.definitions import ToolCallDelta
from answer_ai.tools.executor import ToolDispatcher, ToolExecutor
from answer_ai.tools.qa_tools import qa_tool_defs, qa_tool_handlers


class FakeWriter:
    def __init__(self, fail_after=None):
        self.chunks = []
        self.fail_after = fail_after

    def write(self, data):
        if self.fail_after is not None and len(self.chunks) >= self.fail_after:
            raise BrokenPipeError("client gone")
        self.chunks.append(data)

    def frames(self):
        return [json.loads(c[len("data: "):]) for c in self.chunks if c != "data: [DONE]\n\n"]

    def contents(self):
        out = []
        for frame in self.frames():
            delta = frame["choices"][0]["delta"]
            if "content" in delta:
                out.append(delta["content"])
        return out


class FakeBackend:
    def search_questions(self, keyword, username, tag, score):
        return "questions"

    def answers_by_question(self, question_id):
        return "answers"

    def search_comments(self, object_id):
        return "comments"

    def search_tags(self, tag_name):
        return "python, go"

    def tag_detail(self, tag_name):
        return "tag detail"

    def user_detail(self, username):
        return "user"


def make_chunk(content="", tool_calls=None, finish=None):
    return ChatStreamChunk(
        model="m",
        choices=[ChatStreamChoice(index=0, delta=ChatDelta(content=content, tool_calls=tool_calls or []), finish_reason=finish)],
    )


def tool_round(name="get_tags", call_id="call_1"):
    return [
        make_chunk(tool_calls=[ToolCallDelta(index=0, id=call_id, type="function", name=name, arguments='{"tag_name":')]),
        make_chunk(tool_calls=[ToolCallDelta(index=0, arguments=' "python"}')]),
        make_chunk(finish="tool_calls"),
    ]


class ScriptedProvider:
    """按轮次返回预设增量；脚本用完后重复最后一轮。"""

    name = "fake"

    def __init__(self, rounds):
        self.rounds = rounds
        self.requests = []

    def chat_stream(self, req):
        self.requests.append(list(req.messages))
        script = self.rounds[min(len(self.requests), len(self.rounds)) - 1]
        for chunk in script:
            yield chunk


class FailingProvider:
    name = "fake"

    def __init__(self):
        self.calls = 0

    def chat_stream(self, req):
        self.calls += 1
        raise NetworkError(code="NETWORK_ERROR", message="connection refused")
        yield


def make_agent(provider, root, store_cls=JsonConversationStore, round_timeout=None):
    store = store_cls(root=Path(root) / ".storage")
    service = AIConversationService(store)
    agent = ChatAgent(
        provider_client=provider,
        dispatcher=ToolDispatcher(ToolExecutor(qa_tool_handlers(FakeBackend()))),
        conversation_service=service,
        context_builder=ConversationContextBuilder(LocalizedPromptProvider()),
        tool_defs=qa_tool_defs(),
        config=ChatAgentConfig(model="m", round_timeout=round_timeout),
    )
    return agent, store


def test_single_round_stop_streams_and_persists():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([[make_chunk(content="Hello"), make_chunk(finish="stop")]])
        agent, store = make_agent(provider, d)
        writer = FakeWriter()

        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], writer, user_id="u1")

        assert len(provider.requests) == 1
        frames = writer.frames()
        assert frames[0]["choices"][0]["delta"] == {"role": "assistant"}
        assert writer.contents() == ["Hello"]
        assert frames[-1]["choices"][0]["finish_reason"] == "stop"
        assert writer.chunks[-1] == "data: [DONE]\n\n"
        assert len({f["id"] for f in frames}) == 1

        conversation = store.get_conversation(ctx.conversation_id)
        assert conversation.topic == "hi"
        assert conversation.user_id == "u1"
        records = store.list_records(ctx.conversation_id)
        assert [r.role for r in records] == ["user", "assistant"]
        assert "hi" in records[0].content
        assert records[1].content == "Hello\n"
        assert records[0].chat_completion_id == records[1].chat_completion_id == frames[0]["id"]


def test_tool_round_then_answer_feeds_results_back():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([tool_round(), [make_chunk(content="Tags: python, go"), make_chunk(finish="stop")]])
        agent, store = make_agent(provider, d)
        writer = FakeWriter()

        ctx = agent.chat_completions([InboundMessage(role="user", content="list tags")], writer)

        assert len(provider.requests) == 2
        second = provider.requests[1]
        assert second[-2].role == "assistant"
        assert second[-2].tool_calls[0].arguments == '{"tag_name": "python"}'
        assert second[-1].role == "tool"
        assert second[-1].tool_call_id == "call_1"
        assert second[-1].content == "python, go"
        assert writer.contents() == ["Tags: python, go"]

        records = store.list_records(ctx.conversation_id)
        assert [r.role for r in records] == ["user", "assistant"]
        assert records[1].content == "Tags: python, go\n"


def test_always_tool_calls_stops_at_max_rounds():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([tool_round()])
        agent, _ = make_agent(provider, d)
        writer = FakeWriter()

        agent.chat_completions([InboundMessage(role="user", content="loop")], writer)

        assert len(provider.requests) == MAX_ROUNDS
        assert writer.frames()[-1]["choices"][0]["finish_reason"] == "stop"
        assert writer.chunks[-1] == "data: [DONE]\n\n"


def test_unknown_tool_error_is_fed_back_and_next_round_runs():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([tool_round(name="Get_Tags"), [make_chunk(content="sorry"), make_chunk(finish="stop")]])
        agent, _ = make_agent(provider, d)

        agent.chat_completions([InboundMessage(role="user", content="tags?")], FakeWriter())

        assert len(provider.requests) == 2
        assert provider.requests[1][-1].content == "Error calling tool Get_Tags: unknown tool: Get_Tags"


def test_tool_calls_without_valid_entries_end_the_loop():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([tool_round(call_id="")])
        agent, _ = make_agent(provider, d)
        writer = FakeWriter()

        agent.chat_completions([InboundMessage(role="user", content="x")], writer)

        assert len(provider.requests) == 1
        assert writer.chunks[-1] == "data: [DONE]\n\n"


def test_existing_conversation_restores_history():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([[make_chunk(content="Hello"), make_chunk(finish="stop")]])
        agent, store = make_agent(provider, d)
        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], FakeWriter(), user_id="u1")

        agent.chat_completions(
            [InboundMessage(role="user", content="again")],
            FakeWriter(),
            user_id="u1",
            conversation_id=ctx.conversation_id,
        )

        sent = provider.requests[1]
        assert [m.role for m in sent] == ["user", "assistant", "user"]
        assert sent[1].content == "Hello\n"
        assert sent[2].content == "again"
        records = store.list_records(ctx.conversation_id)
        assert [r.role for r in records] == ["user", "assistant", "user", "assistant"]
        assert records[2].content == "again"
        assert records[0].chat_completion_id != records[2].chat_completion_id


def test_open_failure_sends_error_then_terminal_frames():
    with tempfile.TemporaryDirectory() as d:
        provider = FailingProvider()
        agent, _ = make_agent(provider, d)
        writer = FakeWriter()

        agent.chat_completions([InboundMessage(role="user", content="hi")], writer)

        assert provider.calls == 1
        assert writer.contents() == ["Error: Failed to create AI stream"]
        assert writer.frames()[-1]["choices"][0]["finish_reason"] == "stop"
        assert writer.chunks[-1] == "data: [DONE]\n\n"


def test_client_disconnect_still_persists_partial_answer():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([[make_chunk(content="Hel"), make_chunk(content="lo"), make_chunk(finish="stop")]])
        agent, store = make_agent(provider, d)
        # 角色帧与第一段正文写出后客户端断开
        writer = FakeWriter(fail_after=2)

        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], writer)

        assert writer.contents() == ["Hel"]
        assert "data: [DONE]\n\n" not in writer.chunks
        records = store.list_records(ctx.conversation_id)
        assert [r.role for r in records] == ["user", "assistant"]
        assert records[1].content == "Hello\n"


def test_cancel_event_ends_stream_with_terminal_frames():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([[make_chunk(content="never"), make_chunk(finish="stop")]])
        agent, _ = make_agent(provider, d)
        writer = FakeWriter()
        cancel = threading.Event()
        cancel.set()

        agent.chat_completions([InboundMessage(role="user", content="hi")], writer, cancel_event=cancel)

        assert writer.contents() == []
        assert writer.chunks[-1] == "data: [DONE]\n\n"


class BrokenProvider:
    """先推送一段正文，随后抛出非业务异常。"""

    name = "fake"

    def chat_stream(self, req):
        yield make_chunk(content="Hi")
        raise AttributeError("'str' object has no attribute 'get'")


class SlowProvider:
    name = "fake"

    def chat_stream(self, req):
        yield make_chunk(content="a")
        time.sleep(0.2)
        yield make_chunk(content="b")
        yield make_chunk(content="c")
        yield make_chunk(finish="stop")


class RecordWriteFailingStore(JsonConversationStore):
    def create_record(self, record):
        raise BusinessError(code="STORE_WRITE_ERROR", message="disk full")


class UpstreamSettings:
    ai_provider = "openai"
    ai_api_key = "sk-test-123456"
    ai_api_host = "https://api.example.com"
    http_timeout = 1.0


def install_upstream(monkeypatch, lines):
    class Response:
        status_code = 200

        def iter_lines(self):
            for line in lines:
                yield line

    class StreamContext:
        def __enter__(self):
            return Response()

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, *a, **kw):
            return StreamContext()

    monkeypatch.setattr("httpx.Client", Client)


def test_non_object_upstream_line_does_not_break_the_stream(monkeypatch):
    install_upstream(
        monkeypatch,
        [
            'data: {"choices": [{"delta": {"content": "Hi"}}]}',
            'data: "keepalive"',
            "data: [DONE]",
        ],
    )
    with tempfile.TemporaryDirectory() as d:
        agent, store = make_agent(OpenAICompatibleClient(UpstreamSettings()), d)
        writer = FakeWriter()

        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], writer)

        assert writer.contents() == ["Hi"]
        assert writer.frames()[-1]["choices"][0]["finish_reason"] == "stop"
        assert writer.chunks[-1] == "data: [DONE]\n\n"
        records = store.list_records(ctx.conversation_id)
        assert [r.content for r in records][1] == "Hi\n"


def test_unexpected_error_still_closes_stream_and_persists():
    with tempfile.TemporaryDirectory() as d:
        agent, store = make_agent(BrokenProvider(), d)
        writer = FakeWriter()

        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], writer)

        assert writer.contents() == ["Hi", "Error: Internal error while processing the request"]
        assert writer.frames()[-1]["choices"][0]["finish_reason"] == "stop"
        assert writer.chunks[-1] == "data: [DONE]\n\n"
        records = store.list_records(ctx.conversation_id)
        assert [r.role for r in records] == ["user", "assistant"]
        assert records[1].content == "Hi\n"


def test_unexpected_error_while_loading_history_still_closes_stream():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([[make_chunk(content="Hello"), make_chunk(finish="stop")]])
        agent, store = make_agent(provider, d)
        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], FakeWriter(), user_id="u1")

        def broken_list_records(conversation_id):
            raise OSError("permission denied")

        store.list_records = broken_list_records
        writer = FakeWriter()
        result = agent.chat_completions(
            [InboundMessage(role="user", content="again")],
            writer,
            user_id="u1",
            conversation_id=ctx.conversation_id,
        )

        assert result is None
        assert len(provider.requests) == 1
        assert writer.contents() == ["Error: Internal error while processing the request"]
        assert writer.chunks[-1] == "data: [DONE]\n\n"


def test_round_timeout_ends_round_like_eof():
    with tempfile.TemporaryDirectory() as d:
        agent, store = make_agent(SlowProvider(), d, round_timeout=0.05)
        writer = FakeWriter()

        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], writer)

        # 超时后剩余增量不再读取
        assert writer.contents() == ["a", "b"]
        assert writer.frames()[-1]["choices"][0]["finish_reason"] == "stop"
        assert writer.chunks[-1] == "data: [DONE]\n\n"
        assert store.list_records(ctx.conversation_id)[1].content == "ab\n"


def test_persistence_error_is_logged_not_raised():
    with tempfile.TemporaryDirectory() as d:
        provider = ScriptedProvider([[make_chunk(content="Hello"), make_chunk(finish="stop")]])
        agent, store = make_agent(provider, d, store_cls=RecordWriteFailingStore)
        writer = FakeWriter()

        ctx = agent.chat_completions([InboundMessage(role="user", content="hi")], writer)

        assert ctx is not None
        assert writer.contents() == ["Hello"]
        assert writer.chunks[-1] == "data: [DONE]\n\n"
        assert store.get_conversation(ctx.conversation_id) is not None
        assert store.list_records(ctx.conversation_id) == []
