import tempfile
from pathlib import Path

import pytest
from pydantic import ValidationError as SettingsValidationError

from answer_ai.api import service
from answer_ai.config.settings import Settings, ensure_ai_enabled
from answer_ai.domain.exceptions import ServiceUnavailableError, ValidationError
from answer_ai.domain.models import ChatDelta, ChatStreamChoice, ChatStreamChunk
from answer_ai.infrastructure.storage.json_store import JsonConversationStore


class SettingsStub:
    ai_enabled = True
    ai_provider = "openai"
    ai_api_host = "https://api.example.com"
    ai_api_key = "sk-test-123456"
    ai_model = "gpt-test"
    http_timeout = 1.0
    round_timeout = None
    prompt_zh_cn = ""
    prompt_en_us = ""
    default_language = "en_US"
    storage_root = ".storage"


class FakeWriter:
    def __init__(self):
        self.chunks = []

    def write(self, data):
        self.chunks.append(data)


class FakeBackend:
    def search_questions(self, keyword, username, tag, score):
        return ""

    def answers_by_question(self, question_id):
        return ""

    def search_comments(self, object_id):
        return ""

    def search_tags(self, tag_name):
        return ""

    def tag_detail(self, tag_name):
        return ""

    def user_detail(self, username):
        return ""


class OneShotProvider:
    name = "fake"

    def chat_stream(self, req):
        yield ChatStreamChunk(model="m", choices=[ChatStreamChoice(index=0, delta=ChatDelta(content="Hello"))])
        yield ChatStreamChunk(model="m", choices=[ChatStreamChoice(index=0, delta=ChatDelta(), finish_reason="stop")])


@pytest.fixture
def configured(monkeypatch):
    cfg = SettingsStub()
    monkeypatch.setattr(service, "settings", cfg)
    monkeypatch.setattr(service, "create_provider", lambda _cfg: OneShotProvider())
    with tempfile.TemporaryDirectory() as d:
        service.configure(FakeBackend(), store=JsonConversationStore(root=Path(d) / ".storage"))
        yield cfg
        service.configure(None)


def test_ensure_ai_enabled_checks_switch_model_and_key():
    with pytest.raises(ServiceUnavailableError):
        ensure_ai_enabled(Settings(ai_enabled=False))
    with pytest.raises(ValidationError) as exc:
        ensure_ai_enabled(Settings(ai_enabled=True, ai_model=""))
    assert exc.value.code == "AI_MODEL_MISSING"
    with pytest.raises(ValidationError) as exc:
        ensure_ai_enabled(Settings(ai_enabled=True, ai_model="m", ai_api_key=None))
    assert exc.value.code == "MISSING_API_KEY"


def test_short_api_key_is_rejected():
    with pytest.raises(SettingsValidationError):
        Settings(ai_api_key="short")


def test_disabled_ai_fails_before_any_frame(configured):
    configured.ai_enabled = False
    writer = FakeWriter()
    with pytest.raises(ServiceUnavailableError):
        service.chat_completions([{"role": "user", "content": "hi"}], writer)
    assert writer.chunks == []


def test_empty_messages_rejected_before_streaming(configured):
    writer = FakeWriter()
    with pytest.raises(ValidationError):
        service.chat_completions([], writer)
    assert writer.chunks == []


def test_chat_then_list_detail_vote_and_admin(configured):
    writer = FakeWriter()
    result = service.chat_completions([{"role": "user", "content": "hi"}], writer, user_id="u1")
    assert result["is_new"] is True
    assert writer.chunks[-1] == "data: [DONE]\n\n"

    page = service.list_conversations("u1")
    assert page["total"] == 1
    conversation_id = page["list"][0]["conversation_id"]
    assert conversation_id == result["conversation_id"]

    detail = service.get_conversation_detail(conversation_id, "u1")
    assert detail["records"][0]["content"] == "hi"
    assert detail["records"][1]["content"] == "Hello\n"
    assert service.get_conversation_detail(conversation_id, "u2") is None

    completion_id = detail["records"][1]["chat_completion_id"]
    service.vote_record(completion_id, "u1", "helpful")
    admin_page = service.admin_list_conversations()
    assert admin_page["list"][0]["helpful_count"] == 1

    service.admin_delete_conversation(conversation_id)
    assert service.list_conversations("u1")["total"] == 0
