"""OpenAI 兼容接口的流式 Provider 适配器。

站点可以配置任意 OpenAI 兼容服务（OpenAI、DeepSeek、Ollama 等）：
- URL: {api_host}/v1/chat/completions（缺少 /v1 时自动补齐）
- 认证: Authorization: Bearer <api_key>

本实现只依赖公共字段：model/messages/tools/stream，
并把 SSE 响应逐行解析为 ChatStreamChunk。
"""

import json
from typing import Any, Dict, Iterable, List

import httpx

from answer_ai.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from answer_ai.domain.models import (
    ChatDelta,
    ChatMessage,
    ChatRequest,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
)
from answer_ai.infrastructure.logging.logger import logger
from answer_ai.tools.definitions import ToolCallDelta


def _text(value: Any) -> str:
    # 上游偶尔返回 null 或非字符串字段，统一按空串处理
    return value if isinstance(value, str) else ""


def _int(value: Any) -> int:
    return value if isinstance(value, int) else 0


def normalize_base_url(api_host: str) -> str:
    base = (api_host or "").rstrip("/")
    if not base.endswith("/v1"):
        base += "/v1"
    return base


class OpenAICompatibleClient:
    """OpenAI 兼容 Provider 客户端实现。"""

    def __init__(self, cfg):
        self._settings = cfg

    @property
    def name(self) -> str:
        return getattr(self._settings, "ai_provider", None) or "openai"

    # ---- 流式 ----

    def chat_stream(self, req: ChatRequest) -> Iterable[ChatStreamChunk]:
        api_key = getattr(self._settings, "ai_api_key", None)
        if not api_key:
            raise ValidationError(code="MISSING_API_KEY", message="AI api key not set")
        payload = self._build_payload(req)
        url = f"{normalize_base_url(self._settings.ai_api_host)}/chat/completions"
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                        "Accept": "text/event-stream",
                    },
                ) as resp:
                    if resp.status_code == 429:
                        raise RateLimitError(code="RATE_LIMIT", message="AI provider rate limit")
                    if resp.status_code >= 400:
                        resp.read()
                        raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
                    for line in resp.iter_lines():
                        if not line:
                            continue
                        data_str = line
                        if data_str.startswith("data:"):
                            data_str = data_str[5:].strip()
                        else:
                            data_str = data_str.strip()
                        if not data_str:
                            continue
                        if data_str == "[DONE]":
                            return
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        if not isinstance(payload_chunk, dict):
                            continue
                        yield self._parse_stream_chunk(payload_chunk, req)
        except httpx.HTTPError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))

    # ---- 辅助方法 ----

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "stream": req.stream,
        }
        if req.tools:
            payload["tools"] = [tool.to_function_schema() for tool in req.tools]
        return payload

    def _parse_stream_chunk(self, data: dict, req: ChatRequest) -> ChatStreamChunk:
        choices: List[ChatStreamChoice] = []
        raw_choices = data.get("choices")
        for i, ch in enumerate(raw_choices if isinstance(raw_choices, list) else []):
            if not isinstance(ch, dict):
                continue
            delta_payload = ch.get("delta")
            if not isinstance(delta_payload, dict):
                delta_payload = {}
            index = ch.get("index", i)
            choices.append(
                ChatStreamChoice(
                    index=index if isinstance(index, int) else i,
                    delta=ChatDelta(
                        role=_text(delta_payload.get("role")) or None,
                        content=_text(delta_payload.get("content")),
                        tool_calls=self._parse_tool_call_deltas(delta_payload.get("tool_calls")),
                    ),
                    finish_reason=_text(ch.get("finish_reason")) or None,
                )
            )
        usage_raw = data.get("usage")
        usage = None
        if isinstance(usage_raw, dict) and usage_raw:
            usage = ChatUsage(
                prompt_tokens=_int(usage_raw.get("prompt_tokens")),
                completion_tokens=_int(usage_raw.get("completion_tokens")),
                total_tokens=_int(usage_raw.get("total_tokens")),
            )
        return ChatStreamChunk(
            model=_text(data.get("model")) or req.model,
            choices=choices,
            usage=usage,
        )

    @staticmethod
    def _parse_tool_call_deltas(raw: Any) -> List[ToolCallDelta]:
        fragments: List[ToolCallDelta] = []
        if not isinstance(raw, list):
            return fragments
        for pos, call in enumerate(raw):
            if not isinstance(call, dict):
                continue
            func = call.get("function")
            if not isinstance(func, dict):
                func = {}
            index = call.get("index")
            if index is None:
                index = pos
            try:
                index = int(index)
            except (TypeError, ValueError):
                logger.warning("Skipping tool call fragment with invalid index", extra={"extra": {"index": str(index)}})
                continue
            fragments.append(
                ToolCallDelta(
                    index=index,
                    id=_text(call.get("id")),
                    type=_text(call.get("type")),
                    name=_text(func.get("name")),
                    arguments=_text(func.get("arguments")),
                )
            )
        return fragments

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.content or not message.tool_calls:
            payload["content"] = message.content
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": call.type or "function",
                    "function": {"name": call.name, "arguments": call.arguments or "{}"},
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload
