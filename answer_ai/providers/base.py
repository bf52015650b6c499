"""Provider 抽象接口。

编排循环不直接依赖具体厂商的 HTTP 实现，而是依赖此协议：

- 每个厂商实现一个 ProviderClient（如 OpenAICompatibleClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把流式响应解析为 ChatStreamChunk。
"""

from typing import Iterable, Protocol

from answer_ai.domain.models import ChatRequest, ChatStreamChunk


class ProviderClient(Protocol):
    """模型流式客户端协议。

    chat_stream 在连接无法建立或上游返回错误时抛出 BusinessError 子类
    （NetworkError / ApiError / RateLimitError / ValidationError）。
    """

    name: str

    def chat_stream(self, req: ChatRequest) -> Iterable[ChatStreamChunk]:
        ...
