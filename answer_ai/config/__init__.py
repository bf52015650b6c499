"""配置包：对外暴露全局 settings 与 AI 开关校验。"""

from answer_ai.config.settings import Settings, ensure_ai_enabled, settings

__all__ = ["Settings", "ensure_ai_enabled", "settings"]
