import json
import os
import shutil
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from answer_ai.config.settings import settings
from answer_ai.domain.conversation import Conversation, ConversationRecord, ConversationStore
from answer_ai.domain.exceptions import BusinessError, NotFoundError


def _dump_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _load_time(value: Any) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """基于本地 JSON 文件的会话存储。

    目录结构::

        <root>/record_seq.json
        <root>/conversations/<conversation_id>/meta.json
        <root>/conversations/<conversation_id>/records.jsonl
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._conv_root = self._root / "conversations"
        self._conv_root.mkdir(parents=True, exist_ok=True)
        self._seq_path = self._root / "record_seq.json"
        self._lock = threading.RLock()

    # ---- 会话 ----

    def create_conversation(self, conversation: Conversation) -> None:
        cdir = self._conv_root / conversation.conversation_id
        with self._lock:
            if (cdir / "meta.json").exists():
                raise BusinessError(code="CONVERSATION_EXISTS", message=conversation.conversation_id)
            cdir.mkdir(parents=True, exist_ok=True)
            self._write_meta(cdir, conversation)

    def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        meta_path = self._conv_root / conversation_id / "meta.json"
        if not conversation_id or not meta_path.exists():
            return None
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        return self._to_conversation(data)

    def update_conversation(self, conversation: Conversation) -> None:
        cdir = self._conv_root / conversation.conversation_id
        with self._lock:
            if not (cdir / "meta.json").exists():
                raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation.conversation_id)
            self._write_meta(cdir, conversation)

    def list_conversations(
        self, page: int, page_size: int, user_id: Optional[str] = None
    ) -> Tuple[List[Conversation], int]:
        items: List[Conversation] = []
        for cdir in self._conv_root.glob("*/"):
            meta_path = cdir / "meta.json"
            if not meta_path.exists():
                continue
            try:
                conv = self._to_conversation(json.loads(meta_path.read_text(encoding="utf-8")))
            except (OSError, ValueError, KeyError):
                continue
            if user_id is not None and conv.user_id != user_id:
                continue
            items.append(conv)
        items.sort(key=lambda c: c.created_at, reverse=True)
        page = max(page, 1)
        page_size = max(page_size, 1)
        start = (page - 1) * page_size
        return items[start:start + page_size], len(items)

    def delete_conversation(self, conversation_id: str) -> None:
        cdir = self._conv_root / conversation_id
        if not cdir.exists():
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=conversation_id)
        with self._lock:
            try:
                shutil.rmtree(cdir)
            except OSError as e:
                raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    # ---- 记录 ----

    def create_record(self, record: ConversationRecord) -> ConversationRecord:
        cdir = self._conv_root / record.conversation_id
        if not cdir.exists():
            raise NotFoundError(code="CONVERSATION_NOT_FOUND", message=record.conversation_id)
        with self._lock:
            now = datetime.now(timezone.utc)
            record.id = self._next_record_id()
            record.created_at = record.created_at or now
            record.updated_at = now
            try:
                with (cdir / "records.jsonl").open("a", encoding="utf-8") as f:
                    f.write(json.dumps(self._record_payload(record), ensure_ascii=False) + "\n")
            except OSError as e:
                raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        return record

    def list_records(self, conversation_id: str) -> List[ConversationRecord]:
        records_path = self._conv_root / conversation_id / "records.jsonl"
        items: List[ConversationRecord] = []
        if not records_path.exists():
            return items
        for line in records_path.read_text(encoding="utf-8").splitlines():
            try:
                items.append(self._to_record(json.loads(line)))
            except (ValueError, KeyError):
                continue
        items.sort(key=lambda r: (r.created_at, r.id))
        return items

    def get_record_by_completion_id(self, role: str, chat_completion_id: str) -> Optional[ConversationRecord]:
        for cdir in self._conv_root.glob("*/"):
            for record in self.list_records(cdir.name):
                if record.role == role and record.chat_completion_id == chat_completion_id:
                    return record
        return None

    def update_record_vote(self, record: ConversationRecord) -> None:
        cdir = self._conv_root / record.conversation_id
        with self._lock:
            records = self.list_records(record.conversation_id)
            found = False
            for item in records:
                if item.id == record.id:
                    item.helpful = record.helpful
                    item.unhelpful = record.unhelpful
                    item.updated_at = datetime.now(timezone.utc)
                    found = True
            if not found:
                raise NotFoundError(code="RECORD_NOT_FOUND", message=str(record.id))
            lines = [json.dumps(self._record_payload(r), ensure_ascii=False) for r in records]
            self._atomic_write(cdir / "records.jsonl", "\n".join(lines) + "\n")

    def vote_stats(self, conversation_id: str) -> Dict[str, int]:
        helpful = unhelpful = 0
        for record in self.list_records(conversation_id):
            if record.role != "assistant":
                continue
            helpful += record.helpful
            unhelpful += record.unhelpful
        return {"helpful": helpful, "unhelpful": unhelpful}

    # ---- 内部工具 ----

    def _next_record_id(self) -> int:
        current = 0
        if self._seq_path.exists():
            try:
                current = int(json.loads(self._seq_path.read_text(encoding="utf-8")).get("last_id", 0))
            except (OSError, ValueError):
                current = 0
        next_id = current + 1
        self._atomic_write(self._seq_path, json.dumps({"last_id": next_id}))
        return next_id

    def _write_meta(self, cdir: Path, conv: Conversation) -> None:
        obj = {
            "conversation_id": conv.conversation_id,
            "user_id": conv.user_id,
            "topic": conv.topic,
            "created_at": _dump_time(conv.created_at),
            "updated_at": _dump_time(conv.updated_at),
        }
        self._atomic_write(cdir / "meta.json", json.dumps(obj, ensure_ascii=False))

    @staticmethod
    def _atomic_write(path: Path, text: str) -> None:
        tmp_path = path.parent / f"{path.name}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_text(text, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    @staticmethod
    def _record_payload(record: ConversationRecord) -> Dict[str, Any]:
        payload = asdict(record)
        payload["created_at"] = _dump_time(record.created_at)
        payload["updated_at"] = _dump_time(record.updated_at)
        return payload

    @staticmethod
    def _to_conversation(data: Dict[str, Any]) -> Conversation:
        return Conversation(
            conversation_id=data["conversation_id"],
            user_id=data.get("user_id") or "",
            topic=data.get("topic") or "",
            created_at=_load_time(data["created_at"]),
            updated_at=_load_time(data["updated_at"]),
        )

    @staticmethod
    def _to_record(data: Dict[str, Any]) -> ConversationRecord:
        return ConversationRecord(
            id=int(data.get("id", 0)),
            conversation_id=data["conversation_id"],
            chat_completion_id=data.get("chat_completion_id") or "",
            role=data["role"],
            content=data.get("content") or "",
            helpful=int(data.get("helpful", 0)),
            unhelpful=int(data.get("unhelpful", 0)),
            created_at=_load_time(data["created_at"]),
            updated_at=_load_time(data.get("updated_at") or data["created_at"]),
        )
