"""统一的对话、流式增量与下行帧数据模型。

本模块定义了编排引擎内部在各组件之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给上游模型的流式补全请求。
- ChatStreamChunk: 上游流式响应解析后的一次增量。
- StreamFrame: 推送给浏览器的一帧 SSE 数据。
- ConversationContext: 单次请求独占的会话上下文。

Provider 适配层只依赖这些模型，负责与各家 JSON 之间的转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from answer_ai.tools.definitions import ToolCall, ToolCallDelta, ToolDef


# 与 OpenAI 兼容接口的 role 字段对应
Role = Literal["system", "user", "assistant", "tool"]

CHUNK_OBJECT = "chat.completion.chunk"


@dataclass(frozen=True)
class ChatMessage:
    """一条对话消息，追加到历史之后不再修改。

    - tool_calls: role 为 "assistant" 且模型请求工具时，保存完整的调用列表。
    - tool_call_id: role 为 "tool" 时，关联到对应的工具调用。
    - chat_completion_id: 仅从存储恢复的历史消息携带，表示该消息已落库。
    """

    role: Role
    content: str
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None
    chat_completion_id: Optional[str] = None


@dataclass
class ChatRequest:
    """一次流式补全请求。"""

    model: str
    messages: List[ChatMessage]
    tools: Optional[List["ToolDef"]] = None
    stream: bool = True


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatDelta:
    """流式返回中的单次增量内容。"""

    role: Optional[str] = None
    content: str = ""
    tool_calls: List["ToolCallDelta"] = field(default_factory=list)


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatDelta
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """上游流式对话的增量结果。

    每个 chunk 由若干 choice 组成，编排引擎只消费 index=0 的那一条。
    """

    model: str
    choices: List[ChatStreamChoice]
    usage: Optional[ChatUsage] = None


@dataclass(frozen=True)
class StreamFrame:
    """下行给客户端的一帧数据，构造后不可变。"""

    id: str
    created: int
    model: str
    role: Optional[str] = None
    content: Optional[str] = None
    finish_reason: Optional[str] = None
    index: int = 0
    object: str = CHUNK_OBJECT

    def to_dict(self) -> Dict[str, Any]:
        delta: Dict[str, Any] = {}
        if self.role:
            delta["role"] = self.role
        if self.content:
            delta["content"] = self.content
        return {
            "id": self.id,
            "object": self.object,
            "created": self.created,
            "model": self.model,
            "choices": [
                {
                    "index": self.index,
                    "delta": delta,
                    "finish_reason": self.finish_reason,
                }
            ],
        }


@dataclass
class ConversationContext:
    """单次请求的会话上下文，只属于一次编排调用，不跨请求共享。

    - messages: 本轮对外可见的对话记录（用户消息 + 每轮助手输出），
      结束后交给持久化层保存。
    - topic: 新会话时为首条用户消息原文，用作会话标题。
    """

    conversation_id: str
    user_id: str
    model: str
    messages: List[ChatMessage] = field(default_factory=list)
    topic: str = ""
    is_new: bool = False
