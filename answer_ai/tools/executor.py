from dataclasses import replace
from typing import Any, Dict, List
import json
import logging

from answer_ai.domain.models import ChatMessage
from answer_ai.infrastructure.logging.logger import logger
from .definitions import ToolCall, ToolResult
from .qa_tools import ToolFunc


class UnknownToolError(LookupError):
    pass


class ToolExecutor:
    """按工具名精确匹配（区分大小写）执行已注册的工具。"""

    def __init__(self, tools: Dict[str, ToolFunc]):
        self._tools = tools

    def execute(self, call: ToolCall, arguments: Dict[str, Any]) -> ToolResult:
        func = self._tools.get(call.name)
        if func is None:
            raise UnknownToolError(f"unknown tool: {call.name}")
        return ToolResult(call_id=call.id, content=func(arguments))


class ToolDispatcher:
    """把一轮冻结后的工具调用列表转换为对话历史。

    - 缺少 id 或函数名的调用被丢弃并记录 warning。
    - 空参数按 "{}" 处理。
    - 先追加一条携带全部有效调用的 assistant 消息，再按顺序为每个调用追加
      一条 tool 消息；参数解析失败、未知工具与工具异常都转为错误文本，不向上抛出。
    """

    def __init__(self, executor: ToolExecutor):
        self._executor = executor

    def dispatch(self, calls: List[ToolCall], history: List[ChatMessage]) -> int:
        valid: List[ToolCall] = []
        for call in calls:
            if not call.id or not call.name:
                logger.warning(
                    "Invalid tool call: missing required fields",
                    extra={"extra": {"tool_call_id": call.id, "tool_name": call.name}},
                )
                continue
            valid.append(replace(call, arguments=call.arguments or "{}"))

        if not valid:
            logger.warning("No valid tool calls found")
            return 0

        history.append(ChatMessage(role="assistant", content="", tool_calls=valid))
        for call in valid:
            history.append(ChatMessage(role="tool", content=self._run(call), tool_call_id=call.id))
        return len(valid)

    def _run(self, call: ToolCall) -> str:
        try:
            arguments = json.loads(call.arguments)
            if not isinstance(arguments, dict):
                raise ValueError(f"expected a JSON object, got {type(arguments).__name__}")
        except ValueError as e:
            self._log_failure("Failed to parse tool arguments", call, e)
            return f"Error parsing tool arguments: {e}"

        try:
            result = self._executor.execute(call, arguments)
        except Exception as e:
            self._log_failure("Failed to call tool", call, e)
            return f"Error calling tool {call.name}: {e}"
        logger.info(
            "Tool execution finished",
            extra={"extra": {"tool_call_id": call.id, "tool_name": call.name, "result_preview": result.content[:200]}},
        )
        return result.content

    @staticmethod
    def _log_failure(message: str, call: ToolCall, error: Exception) -> None:
        logger.log(
            logging.ERROR,
            message,
            extra={
                "extra": {
                    "tool_call_id": call.id,
                    "tool_name": call.name,
                    "arguments": call.arguments,
                    "error": str(error),
                }
            },
        )
