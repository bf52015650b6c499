"""会话上下文构建。

根据已存储的会话（若存在）与本次请求的消息，构造本轮编排所需的
ConversationContext：新会话使用本地化提示词包装首条问题，
已有会话则按时间顺序恢复历史记录并追加新的用户消息。
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence
from uuid import uuid4

from answer_ai.domain.conversation import ConversationRecord
from answer_ai.domain.exceptions import ValidationError
from answer_ai.domain.models import ChatMessage, ConversationContext
from answer_ai.prompts import PromptProvider


@dataclass
class InboundMessage:
    role: str
    content: str


def generate_token() -> str:
    return uuid4().hex


class ConversationContextBuilder:
    def __init__(self, prompt_provider: PromptProvider):
        self._prompts = prompt_provider

    def build(
        self,
        messages: Sequence[InboundMessage],
        stored_records: Optional[List[ConversationRecord]],
        model: str,
        user_id: str = "",
        conversation_id: Optional[str] = None,
        language: str = "en_US",
    ) -> ConversationContext:
        """构造上下文。

        Args:
            messages: 本次请求携带的消息（至少一条）
            stored_records: 已存储的会话记录；None 表示会话不存在（新会话）
            model: 目标模型名
            user_id: 当前登录用户
            conversation_id: 请求中的会话 ID，为空时生成新的 ID
            language: 请求语言，用于选择提示词模板
        """
        if not messages:
            raise ValidationError(code="EMPTY_MESSAGES", message="messages must contain at least one item")

        ctx = ConversationContext(
            conversation_id=conversation_id or generate_token(),
            user_id=user_id,
            model=model,
        )

        if stored_records is None:
            ctx.is_new = True
            ctx.topic = messages[0].content
            ctx.messages = self._initial_messages(messages, language)
            return ctx

        for record in stored_records:
            ctx.messages.append(
                ChatMessage(
                    role=record.role,
                    content=record.content,
                    chat_completion_id=record.chat_completion_id,
                )
            )
        first = messages[0]
        ctx.messages.append(ChatMessage(role=first.role or "user", content=first.content))
        return ctx

    def _initial_messages(self, messages: Sequence[InboundMessage], language: str) -> List[ChatMessage]:
        # 多条消息原样透传、不做提示词包装，与单条消息的处理并不对称
        if len(messages) > 1:
            return [ChatMessage(role=m.role, content=m.content) for m in messages]
        prompt = self._prompts.get_prompt(language, messages[0].content)
        return [ChatMessage(role="user", content=prompt)]
