"""SSE 下行帧写出。

每一帧写成 ``data: <json>\\n\\n`` 并立即 flush，流以 ``data: [DONE]\\n\\n`` 结束。
writer 只需提供 write(str)，可选提供 flush()。
"""

import json
import time
from typing import Optional, Protocol

from answer_ai.domain.exceptions import ClientDisconnectedError
from answer_ai.domain.models import StreamFrame


DONE_LINE = "data: [DONE]\n\n"
FINISH_STOP = "stop"


class StreamWriter(Protocol):
    def write(self, data: str) -> object:
        ...


class StreamEmitter:
    def __init__(self, writer: StreamWriter, completion_id: str, model: str):
        self._writer = writer
        self.completion_id = completion_id
        self.model = model
        self.closed = False

    # ---- 帧构造 ----

    def frame(
        self,
        content: Optional[str] = None,
        role: Optional[str] = None,
        finish_reason: Optional[str] = None,
        created: Optional[int] = None,
    ) -> StreamFrame:
        return StreamFrame(
            id=self.completion_id,
            created=created if created is not None else int(time.time()),
            model=self.model,
            role=role,
            content=content,
            finish_reason=finish_reason,
        )

    # ---- 写出 ----

    def send(self, frame: StreamFrame) -> None:
        self._write(f"data: {json.dumps(frame.to_dict(), ensure_ascii=False)}\n\n")

    def send_role(self) -> None:
        self.send(self.frame(role="assistant"))

    def send_content(self, content: str) -> None:
        self.send(self.frame(content=content))

    def send_error(self, message: str) -> None:
        self.send(self.frame(content=f"Error: {message}"))

    def send_stop(self, created: Optional[int] = None) -> None:
        self.send(self.frame(finish_reason=FINISH_STOP, created=created))

    def send_done(self) -> None:
        self._write(DONE_LINE)

    def _write(self, data: str) -> None:
        if self.closed:
            raise ClientDisconnectedError(code="CLIENT_DISCONNECTED", message="stream already closed")
        try:
            self._writer.write(data)
            flush = getattr(self._writer, "flush", None)
            if flush is not None:
                flush()
        except OSError as e:
            self.closed = True
            raise ClientDisconnectedError(code="CLIENT_DISCONNECTED", message=str(e))
