from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Tuple


@dataclass
class Conversation:
    conversation_id: str
    user_id: str
    topic: str
    created_at: datetime
    updated_at: datetime


@dataclass
class ConversationRecord:
    """一次对外“轮次”落库后的记录。

    同一轮中的用户消息与助手回答共享同一个 chat_completion_id。
    """

    conversation_id: str
    chat_completion_id: str
    role: str
    content: str
    helpful: int = 0
    unhelpful: int = 0
    id: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class PageModel:
    total: int
    list: List[Any] = field(default_factory=list)


class ConversationStore(Protocol):
    def create_conversation(self, conversation: Conversation) -> None:
        ...

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    def update_conversation(self, conversation: Conversation) -> None:
        ...

    def list_conversations(
        self, page: int, page_size: int, user_id: Optional[str] = None
    ) -> Tuple[List[Conversation], int]:
        ...

    def delete_conversation(self, conversation_id: str) -> None:
        ...

    def create_record(self, record: ConversationRecord) -> ConversationRecord:
        ...

    def list_records(self, conversation_id: str) -> List[ConversationRecord]:
        ...

    def get_record_by_completion_id(self, role: str, chat_completion_id: str) -> Optional[ConversationRecord]:
        ...

    def update_record_vote(self, record: ConversationRecord) -> None:
        ...

    def vote_stats(self, conversation_id: str) -> Dict[str, int]:
        ...
