"""模型 Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 提供 OpenAI 兼容接口的流式实现 (openai_client)。
"""

from typing import Any, Optional

from answer_ai.config.settings import settings
from answer_ai.providers.base import ProviderClient
from answer_ai.providers.openai_client import OpenAICompatibleClient


def create_provider(cfg: Optional[Any] = None) -> ProviderClient:
    """根据站点配置创建 Provider 实例。"""

    return OpenAICompatibleClient(cfg or settings)
