"""流式工具调用累积器。

上游以 token 为粒度推送增量：正文片段立即转发给客户端，
工具调用片段按槽位（index）缓存拼接，直到本轮出现终止标记或流结束。
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional
import threading
import time

from answer_ai.domain.exceptions import BusinessError, ClientDisconnectedError
from answer_ai.domain.models import ChatMessage, ChatStreamChunk, ChatUsage
from answer_ai.infrastructure.logging.logger import logger
from answer_ai.tools.definitions import ToolCall, ToolCallDelta
from .emitter import StreamEmitter


FINISH_TOOL_CALLS = "tool_calls"
OPEN_STREAM_ERROR = "Failed to create AI stream"


class RoundStatus(str, Enum):
    COMPLETE = "complete"
    AWAITING_TOOLS = "awaiting_tools"


@dataclass
class RoundOutcome:
    """一轮流式读取的结果。

    - COMPLETE: content 已作为 assistant 消息追加到历史（非空时）。
    - AWAITING_TOOLS: tool_calls 按槽位升序冻结，content 尚未写入历史。
    """

    status: RoundStatus
    content: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    cancelled: bool = False
    usage: Optional[ChatUsage] = None


class ToolCallAccumulator:
    """单轮状态机：正文缓冲 + 槽位到 ToolCall 的映射。"""

    def __init__(self, emitter: StreamEmitter, history: List[ChatMessage]):
        self._emitter = emitter
        self._history = history
        self._content: List[str] = []
        self._slots: Dict[int, ToolCall] = {}
        self.usage: Optional[ChatUsage] = None

    @property
    def content(self) -> str:
        return "".join(self._content)

    def run(
        self,
        stream: Iterable[ChatStreamChunk],
        deadline: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> RoundOutcome:
        """消费整轮增量并返回结果。

        流打开失败（首个增量之前即出错）时只发送一帧错误信息并视为完成；
        读到一半出错则按“无终止标记的流结束”处理。

        cancel_event 与 deadline 只在两次增量之间检查：上游停止推送时，
        阻塞中的读取要等到 httpx 的 http_timeout 才会以 NetworkError 返回，
        之后按流结束处理。
        """

        received = False
        iterator = iter(stream)
        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    logger.info("Stream cancelled by caller")
                    outcome = self.finish()
                    outcome.cancelled = True
                    return outcome
                try:
                    chunk = next(iterator)
                except StopIteration:
                    logger.info("Stream finished")
                    return self.finish()
                except ClientDisconnectedError:
                    raise
                except BusinessError as e:
                    if not received:
                        logger.error(
                            "Failed to create stream",
                            extra={"extra": {"code": e.code, "error": e.message}},
                        )
                        self._emitter.send_error(OPEN_STREAM_ERROR)
                        return RoundOutcome(status=RoundStatus.COMPLETE)
                    logger.error("Stream error", extra={"extra": {"code": e.code, "error": e.message}})
                    return self.finish()

                received = True
                outcome = self.feed(chunk)
                if outcome is not None:
                    return outcome
                if deadline is not None and time.monotonic() > deadline:
                    logger.warning("Round timeout reached, closing stream")
                    return self.finish()
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()

    def feed(self, chunk: ChatStreamChunk) -> Optional[RoundOutcome]:
        """处理一个增量，遇到终止标记时返回本轮结果。"""

        if chunk.usage is not None:
            self.usage = chunk.usage
        if not chunk.choices:
            return None
        choice = chunk.choices[0]
        delta = choice.delta

        for fragment in delta.tool_calls:
            self._merge(fragment)

        if delta.content:
            self._content.append(delta.content)
            self._emitter.send_content(delta.content)

        if choice.finish_reason:
            if choice.finish_reason == FINISH_TOOL_CALLS:
                return self._awaiting_tools()
            return self._complete()
        return None

    def finish(self) -> RoundOutcome:
        """流结束但没有终止标记：有槽位则视为 tool_calls，否则视为 stop。"""

        if self._slots:
            return self._awaiting_tools()
        return self._complete()

    def _merge(self, fragment: ToolCallDelta) -> None:
        slot = self._slots.get(fragment.index)
        if slot is None:
            self._slots[fragment.index] = ToolCall(
                id=fragment.id,
                name=fragment.name,
                arguments=fragment.arguments,
                type=fragment.type or "function",
            )
            return
        # 参数只追加，不覆盖；函数名仅在非空时替换
        slot.append_arguments(fragment.arguments)
        if fragment.name:
            slot.name = fragment.name
        if fragment.id and not slot.id:
            slot.id = fragment.id

    def _awaiting_tools(self) -> RoundOutcome:
        calls = [self._slots[index] for index in sorted(self._slots)]
        return RoundOutcome(
            status=RoundStatus.AWAITING_TOOLS, content=self.content, tool_calls=calls, usage=self.usage
        )

    def _complete(self) -> RoundOutcome:
        content = self.content
        if content:
            self._history.append(ChatMessage(role="assistant", content=content))
        return RoundOutcome(status=RoundStatus.COMPLETE, content=content, usage=self.usage)
