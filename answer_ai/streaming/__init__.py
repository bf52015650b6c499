"""流式输出：SSE 帧写出与工具调用增量累积。"""

from answer_ai.streaming.accumulator import RoundOutcome, RoundStatus, ToolCallAccumulator
from answer_ai.streaming.emitter import StreamEmitter

__all__ = ["RoundOutcome", "RoundStatus", "StreamEmitter", "ToolCallAccumulator"]
