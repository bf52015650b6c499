"""对外 API 服务模块。

提供简化的函数接口供 Web 层调用：Web 层负责路由、鉴权以及
把 writer 绑定到 text/event-stream 响应上，这里只处理业务。
"""

from dataclasses import asdict
import threading
from typing import Any, Dict, List, Optional

from answer_ai.agents.chat_agent import ChatAgent, ChatAgentConfig
from answer_ai.agents.context_builder import ConversationContextBuilder, InboundMessage
from answer_ai.config.settings import ensure_ai_enabled, settings
from answer_ai.domain.conversation import ConversationStore
from answer_ai.domain.exceptions import ValidationError
from answer_ai.infrastructure.logging.logger import logger
from answer_ai.infrastructure.storage.json_store import JsonConversationStore
from answer_ai.prompts import LocalizedPromptProvider
from answer_ai.providers import create_provider
from answer_ai.services.conversation_service import AIConversationService, UserInfoProvider
from answer_ai.streaming.emitter import StreamWriter
from answer_ai.tools.executor import ToolDispatcher, ToolExecutor
from answer_ai.tools.qa_tools import QASearchBackend, qa_tool_defs, qa_tool_handlers


_store: Optional[ConversationStore] = None
_search_backend: Optional[QASearchBackend] = None
_user_info: Optional[UserInfoProvider] = None
_service: Optional[AIConversationService] = None
_agent: Optional[ChatAgent] = None


def configure(
    search_backend: QASearchBackend,
    store: Optional[ConversationStore] = None,
    user_info: Optional[UserInfoProvider] = None,
) -> None:
    """注入站点检索服务与存储，重置已创建的单例。"""
    global _store, _search_backend, _user_info, _service, _agent
    _search_backend = search_backend
    _store = store
    _user_info = user_info
    _service = None
    _agent = None


def get_conversation_service() -> AIConversationService:
    global _store, _service
    if _store is None:
        _store = JsonConversationStore(root=settings.storage_root)
    if _service is None:
        _service = AIConversationService(_store, _user_info)
    return _service


def get_default_agent() -> ChatAgent:
    """获取默认的 ChatAgent 实例（单例）。"""
    global _agent
    if _agent is None:
        if _search_backend is None:
            raise ValidationError(code="SEARCH_BACKEND_MISSING", message="AI search backend not configured")
        _agent = ChatAgent(
            provider_client=create_provider(settings),
            dispatcher=ToolDispatcher(ToolExecutor(qa_tool_handlers(_search_backend))),
            conversation_service=get_conversation_service(),
            context_builder=ConversationContextBuilder(LocalizedPromptProvider(settings)),
            tool_defs=qa_tool_defs(),
            config=ChatAgentConfig(model=settings.ai_model, round_timeout=settings.round_timeout),
        )
    return _agent


def chat_completions(
    messages: List[Dict[str, Any]],
    writer: StreamWriter,
    conversation_id: Optional[str] = None,
    user_id: str = "",
    language: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Dict[str, Any]:
    """运行一次流式 AI 对话。

    Args:
        messages: 请求消息列表，每项包含 role 与 content，至少一条
        writer: 绑定到 SSE 响应的写出对象
        conversation_id: 会话ID（可选，不提供则创建新会话）
        user_id: 当前登录用户 ID
        language: 请求语言（如 zh_CN / en_US），为空时取配置默认值
        cancel_event: 客户端断开时由 Web 层置位

    Returns:
        包含会话ID与是否新会话的字典

    Raises:
        ServiceUnavailableError / ValidationError: 开始流式输出之前的配置或参数错误
    """
    ensure_ai_enabled(settings)
    inbound = [
        InboundMessage(role=str(m.get("role") or "user"), content=str(m.get("content") or ""))
        for m in messages or []
    ]
    if not inbound:
        raise ValidationError(code="EMPTY_MESSAGES", message="messages must contain at least one item")

    agent = get_default_agent()
    ctx = agent.chat_completions(
        inbound,
        writer,
        user_id=user_id,
        conversation_id=conversation_id,
        language=language or settings.default_language,
        cancel_event=cancel_event,
    )
    if ctx is None:
        return {"conversation_id": conversation_id, "is_new": False}
    return {"conversation_id": ctx.conversation_id, "is_new": ctx.is_new}


def list_conversations(user_id: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
    ensure_ai_enabled(settings)
    return asdict(get_conversation_service().get_conversation_list(user_id, page, page_size))


def get_conversation_detail(conversation_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    ensure_ai_enabled(settings)
    detail = get_conversation_service().get_conversation_detail(conversation_id, user_id)
    return asdict(detail) if detail else None


def vote_record(chat_completion_id: str, user_id: str, vote_type: str, cancel: bool = False) -> None:
    ensure_ai_enabled(settings)
    get_conversation_service().vote_record(chat_completion_id, user_id, vote_type, cancel)
    logger.info(
        "Vote recorded",
        extra={"extra": {"chat_completion_id": chat_completion_id, "vote_type": vote_type, "cancel": cancel}},
    )


def admin_list_conversations(page: int = 1, page_size: int = 20) -> Dict[str, Any]:
    return asdict(get_conversation_service().get_conversation_list_for_admin(page, page_size))


def admin_get_conversation_detail(conversation_id: str) -> Dict[str, Any]:
    return asdict(get_conversation_service().get_conversation_detail_for_admin(conversation_id))


def admin_delete_conversation(conversation_id: str) -> None:
    get_conversation_service().delete_conversation_for_admin(conversation_id)
    logger.info("Conversation deleted", extra={"extra": {"conversation_id": conversation_id}})
