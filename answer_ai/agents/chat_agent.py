"""AI 助手编排引擎核心模块。

一次对外请求的完整流程：
1. 发送角色声明帧（role=assistant）。
2. 构建会话上下文（新会话包装提示词 / 已有会话恢复历史）。
3. 多轮编排：调用模型流式接口 → 累积工具调用并实时转发正文 →
   需要工具时分发执行并继续下一轮，最多 MAX_ROUNDS 轮。
4. 发送终止帧与 [DONE]，无论循环如何结束。
5. 尽力持久化本轮对话，失败只记日志。
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence
import logging
import threading
import time

from answer_ai.agents.context_builder import ConversationContextBuilder, InboundMessage, generate_token
from answer_ai.domain.exceptions import BusinessError, ClientDisconnectedError
from answer_ai.domain.models import ChatMessage, ChatRequest, ConversationContext
from answer_ai.infrastructure.logging.logger import logger
from answer_ai.providers.base import ProviderClient
from answer_ai.services.conversation_service import AIConversationService
from answer_ai.streaming.accumulator import OPEN_STREAM_ERROR, RoundStatus, ToolCallAccumulator
from answer_ai.streaming.emitter import StreamEmitter, StreamWriter
from answer_ai.tools.definitions import ToolDef
from answer_ai.tools.executor import ToolDispatcher


MAX_ROUNDS = 10
CONTEXT_INIT_ERROR = "Failed to initialize conversation context"
INTERNAL_ERROR = "Internal error while processing the request"


@dataclass
class ChatAgentConfig:
    model: str
    round_timeout: Optional[float] = None  # 单轮墙钟超时（秒），None 表示不限制


class ChatAgent:
    def __init__(
        self,
        provider_client: ProviderClient,
        dispatcher: ToolDispatcher,
        conversation_service: AIConversationService,
        context_builder: ConversationContextBuilder,
        tool_defs: List[ToolDef],
        config: ChatAgentConfig,
    ):
        self._provider_client = provider_client
        self._dispatcher = dispatcher
        self._conversations = conversation_service
        self._context_builder = context_builder
        self._tool_defs = tool_defs
        self._config = config

    def chat_completions(
        self,
        messages: Sequence[InboundMessage],
        writer: StreamWriter,
        user_id: str = "",
        conversation_id: Optional[str] = None,
        language: str = "en_US",
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[ConversationContext]:
        """执行一次流式对话，返回本次使用的会话上下文（初始化失败时为 None）。

        配置类错误应在调用本方法之前抛出；进入本方法后所有错误都在流内表达。
        """

        completion_id = f"chatcmpl-{generate_token()}"
        created = int(time.time())
        emitter = StreamEmitter(writer, completion_id, self._config.model)
        log_ctx: Dict[str, Any] = {"chat_completion_id": completion_id, "user_id": user_id}
        ctx: Optional[ConversationContext] = None

        try:
            emitter.send_role()
            ctx = self._init_context(messages, user_id, conversation_id, language, log_ctx)
            if ctx is None:
                emitter.send_error(CONTEXT_INIT_ERROR)
            else:
                self.run(ctx, emitter, log_ctx, cancel_event)
            emitter.send_stop(created=created)
            emitter.send_done()
        except ClientDisconnectedError as e:
            self._log(logging.WARNING, "Client disconnected", log_ctx, error=e.message)
        except Exception as e:
            self._log(logging.ERROR, "Unexpected error in AI conversation", log_ctx, exc_info=True, error=str(e))
            self._close_stream(emitter, created, log_ctx)

        if ctx is not None:
            self._persist(completion_id, ctx, log_ctx)
        return ctx

    def run(
        self,
        ctx: ConversationContext,
        emitter: StreamEmitter,
        log_ctx: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """多轮编排循环，返回实际执行的轮数。

        每轮非空的正文都会作为 assistant 消息追加到 ctx.messages，供持久化使用；
        工具调用与工具结果只进入发给模型的 history。
        """

        log_ctx = log_ctx or {}
        history: List[ChatMessage] = list(ctx.messages)

        for round_num in range(MAX_ROUNDS):
            self._log(logging.DEBUG, "AI conversation round", log_ctx, round=round_num + 1)
            req = ChatRequest(model=ctx.model, messages=history, tools=self._tool_defs, stream=True)
            accumulator = ToolCallAccumulator(emitter, history)

            try:
                stream = self._provider_client.chat_stream(req)
            except BusinessError as e:
                self._log(logging.ERROR, "Failed to create stream", log_ctx, code=e.code, error=e.message)
                emitter.send_error(OPEN_STREAM_ERROR)
                return round_num + 1

            try:
                outcome = accumulator.run(stream, deadline=self._deadline(), cancel_event=cancel_event)
            except Exception:
                # 已转发给客户端的部分正文仍需落库
                if accumulator.content:
                    ctx.messages.append(ChatMessage(role="assistant", content=accumulator.content))
                raise

            if outcome.usage is not None:
                self._log(
                    logging.INFO,
                    "AI round usage",
                    log_ctx,
                    round=round_num + 1,
                    prompt_tokens=outcome.usage.prompt_tokens,
                    completion_tokens=outcome.usage.completion_tokens,
                    total_tokens=outcome.usage.total_tokens,
                )
            if outcome.content:
                ctx.messages.append(ChatMessage(role="assistant", content=outcome.content))
            if outcome.cancelled or outcome.status is RoundStatus.COMPLETE:
                return round_num + 1

            self._log(
                logging.INFO,
                "Executing tool calls",
                log_ctx,
                round=round_num + 1,
                call_count=len(outcome.tool_calls),
            )
            if self._dispatcher.dispatch(outcome.tool_calls, history) == 0:
                return round_num + 1
            if cancel_event is not None and cancel_event.is_set():
                return round_num + 1

        self._log(logging.WARNING, "AI conversation reached maximum rounds limit", log_ctx, max_rounds=MAX_ROUNDS)
        return MAX_ROUNDS

    def _init_context(
        self,
        messages: Sequence[InboundMessage],
        user_id: str,
        conversation_id: Optional[str],
        language: str,
        log_ctx: Dict[str, Any],
    ) -> Optional[ConversationContext]:
        try:
            stored = None
            if conversation_id:
                stored = self._conversations.get_history(conversation_id, user_id)
            ctx = self._context_builder.build(
                messages,
                stored,
                model=self._config.model,
                user_id=user_id,
                conversation_id=conversation_id,
                language=language,
            )
        except BusinessError as e:
            self._log(logging.ERROR, "Failed to get conversation detail", log_ctx, code=e.code, error=e.message)
            return None
        log_ctx["conversation_id"] = ctx.conversation_id
        self._log(
            logging.INFO,
            "Conversation context ready",
            log_ctx,
            is_new=ctx.is_new,
            message_count=len(ctx.messages),
        )
        return ctx

    def _persist(self, completion_id: str, ctx: ConversationContext, log_ctx: Dict[str, Any]) -> None:
        if not ctx.messages:
            return
        try:
            if ctx.is_new:
                if not ctx.topic:
                    self._log(logging.WARNING, "No user message found for new conversation", log_ctx)
                    return
                self._conversations.create_conversation(ctx.user_id, ctx.conversation_id, ctx.topic)
            self._conversations.save_conversation_records(ctx.conversation_id, completion_id, ctx.messages)
        except BusinessError as e:
            self._log(logging.ERROR, "Failed to save conversation records", log_ctx, code=e.code, error=e.message)
        except Exception as e:
            self._log(logging.ERROR, "Failed to save conversation records", log_ctx, exc_info=True, error=str(e))

    def _close_stream(self, emitter: StreamEmitter, created: int, log_ctx: Dict[str, Any]) -> None:
        """意外错误后尽力补发错误帧、终止帧与 [DONE]。"""
        if emitter.closed:
            return
        try:
            emitter.send_error(INTERNAL_ERROR)
            emitter.send_stop(created=created)
            emitter.send_done()
        except ClientDisconnectedError as e:
            self._log(logging.WARNING, "Client disconnected", log_ctx, error=e.message)

    def _deadline(self) -> Optional[float]:
        if not self._config.round_timeout:
            return None
        return time.monotonic() + self._config.round_timeout

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], exc_info: bool = False, **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, exc_info=exc_info, extra={"extra": payload})
