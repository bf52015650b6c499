"""AI 会话持久化服务。

负责在一次流式对话结束后落库，并提供会话列表/详情/投票以及管理端接口。
一次对外“轮次”无论内部经历了多少次工具往返，都只保存一条 assistant 记录。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from answer_ai.domain.conversation import Conversation, ConversationRecord, ConversationStore, PageModel
from answer_ai.domain.exceptions import ForbiddenError, NotFoundError, ValidationError
from answer_ai.domain.models import ChatMessage
from answer_ai.infrastructure.logging.logger import logger


VOTE_HELPFUL = "helpful"
VOTE_UNHELPFUL = "unhelpful"


@dataclass
class ConversationDetail:
    conversation_id: str
    topic: str
    records: List[Dict[str, Any]]
    created_at: int
    updated_at: int
    user_info: Dict[str, Any] = field(default_factory=dict)


class UserInfoProvider:
    """管理端展示用户信息的默认实现，只返回用户 ID。"""

    def get_user_info(self, user_id: str) -> Optional[Dict[str, Any]]:
        return {"id": user_id, "username": "", "display_name": "", "avatar": "", "rank": 0}


def _unix(value: Optional[datetime]) -> int:
    return int(value.timestamp()) if value else 0


def _record_dict(record: ConversationRecord) -> Dict[str, Any]:
    return {
        "chat_completion_id": record.chat_completion_id,
        "role": record.role,
        "content": record.content,
        "helpful": record.helpful,
        "unhelpful": record.unhelpful,
        "created_at": _unix(record.created_at),
    }


class AIConversationService:
    def __init__(self, store: ConversationStore, user_info: Optional[UserInfoProvider] = None):
        self._store = store
        self._user_info = user_info or UserInfoProvider()

    # ---- 对话落库 ----

    def create_conversation(self, user_id: str, conversation_id: str, topic: str) -> Conversation:
        now = datetime.now(timezone.utc)
        conversation = Conversation(
            conversation_id=conversation_id,
            user_id=user_id,
            topic=topic,
            created_at=now,
            updated_at=now,
        )
        self._store.create_conversation(conversation)
        return conversation

    def save_conversation_records(
        self, conversation_id: str, chat_completion_id: str, messages: List[ChatMessage]
    ) -> None:
        """按角色拆分并保存本轮消息。

        - 已携带 chat_completion_id 的消息属于历史轮次，跳过。
        - user 消息原样保存。
        - 其余角色的内容以换行拼接为一条 assistant 记录。
        """

        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id)

        parts: List[str] = []
        for message in messages:
            if message.chat_completion_id:
                continue
            if message.role == "user":
                self._store.create_record(
                    ConversationRecord(
                        conversation_id=conversation_id,
                        chat_completion_id=chat_completion_id,
                        role="user",
                        content=message.content,
                    )
                )
                continue
            parts.append(message.content)
            parts.append("\n")

        self._store.create_record(
            ConversationRecord(
                conversation_id=conversation_id,
                chat_completion_id=chat_completion_id,
                role="assistant",
                content="".join(parts),
            )
        )
        conversation.updated_at = datetime.now(timezone.utc)
        self._store.update_conversation(conversation)

    # ---- 用户端 ----

    def get_conversation_list(self, user_id: str, page: int = 1, page_size: int = 20) -> PageModel:
        conversations, total = self._store.list_conversations(page, page_size, user_id=user_id)
        items = [
            {
                "conversation_id": c.conversation_id,
                "topic": c.topic,
                "created_at": _unix(c.created_at),
            }
            for c in conversations
        ]
        return PageModel(total=total, list=items)

    def get_conversation_detail(self, conversation_id: str, user_id: str) -> Optional[ConversationDetail]:
        """获取会话详情；会话不存在或不属于该用户时返回 None。"""

        conversation = self._store.get_conversation(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return ConversationDetail(
            conversation_id=conversation.conversation_id,
            topic=conversation.topic,
            records=self._records_with_topic(conversation),
            created_at=_unix(conversation.created_at),
            updated_at=_unix(conversation.updated_at),
        )

    def get_history(self, conversation_id: str, user_id: str) -> Optional[List[ConversationRecord]]:
        """供上下文构建使用的原始记录（按时间顺序），不替换首条内容。"""

        conversation = self._store.get_conversation(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return self._store.list_records(conversation_id)

    def vote_record(self, chat_completion_id: str, user_id: str, vote_type: str, cancel: bool = False) -> None:
        if vote_type not in (VOTE_HELPFUL, VOTE_UNHELPFUL):
            raise ValidationError(code="INVALID_VOTE_TYPE", message=vote_type)
        record = self._store.get_record_by_completion_id("assistant", chat_completion_id)
        if record is None:
            raise NotFoundError(code="RECORD_NOT_FOUND", message=chat_completion_id)
        conversation = self._store.get_conversation(record.conversation_id)
        if conversation is None:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=record.conversation_id)
        if conversation.user_id != user_id:
            raise ForbiddenError(code="UNAUTHORIZED", message="not the owner of this conversation")

        if vote_type == VOTE_HELPFUL:
            if cancel:
                record.helpful = 0
            else:
                record.helpful, record.unhelpful = 1, 0
        else:
            if cancel:
                record.unhelpful = 0
            else:
                record.unhelpful, record.helpful = 1, 0
        self._store.update_record_vote(record)

    # ---- 管理端 ----

    def get_conversation_list_for_admin(self, page: int = 1, page_size: int = 20) -> PageModel:
        conversations, total = self._store.list_conversations(page, page_size)
        items = []
        for c in conversations:
            user_info = self._user_info.get_user_info(c.user_id)
            if user_info is None:
                logger.error("User not found for conversation", extra={"extra": {"conversation_id": c.conversation_id}})
                continue
            stats = self._store.vote_stats(c.conversation_id)
            items.append(
                {
                    "id": c.conversation_id,
                    "topic": c.topic,
                    "user_info": user_info,
                    "helpful_count": stats["helpful"],
                    "unhelpful_count": stats["unhelpful"],
                    "created_at": _unix(c.created_at),
                }
            )
        return PageModel(total=total, list=items)

    def get_conversation_detail_for_admin(self, conversation_id: str) -> ConversationDetail:
        conversation = self._store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        return ConversationDetail(
            conversation_id=conversation.conversation_id,
            topic=conversation.topic,
            records=self._records_with_topic(conversation),
            created_at=_unix(conversation.created_at),
            updated_at=_unix(conversation.updated_at),
            user_info=self._user_info.get_user_info(conversation.user_id) or {},
        )

    def delete_conversation_for_admin(self, conversation_id: str) -> None:
        if self._store.get_conversation(conversation_id) is None:
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        self._store.delete_conversation(conversation_id)

    def _records_with_topic(self, conversation: Conversation) -> List[Dict[str, Any]]:
        # 首条记录存的是包装后的提示词，展示时替换为原始问题
        records = [_record_dict(r) for r in self._store.list_records(conversation.conversation_id)]
        if records:
            records[0]["content"] = conversation.topic
        return records
