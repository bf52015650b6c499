"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，
优先级：显式参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from answer_ai.domain.exceptions import ServiceUnavailableError, ValidationError


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("ANSWER_AI_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """AI 助手相关的站点配置。"""

    # ---- 功能开关与 Provider ----
    ai_enabled: bool = Field(default=False, description="是否启用 AI 助手")
    ai_provider: str = Field(default="openai", description="Provider 名称，仅用于日志")
    ai_api_host: str = Field(
        default="https://api.openai.com",
        description="OpenAI 兼容接口地址，缺少 /v1 后缀时自动补齐",
    )
    ai_api_key: Optional[str] = Field(default=None, description="Provider API 密钥")
    ai_model: str = Field(default="", description="本站点使用的模型名")

    http_timeout: float = Field(default=60.0, ge=1.0, description="HTTP 超时时间（秒）")
    round_timeout: Optional[float] = Field(
        default=None,
        ge=1.0,
        description="单轮流式读取的墙钟超时（秒），为空表示不限制",
    )

    # ---- 提示词模板（站点自定义，留空则使用内置默认模板）----
    prompt_zh_cn: str = Field(default="", description="中文提示词模板，{question} 为用户问题占位符")
    prompt_en_us: str = Field(default="", description="英文提示词模板，{question} 为用户问题占位符")
    default_language: str = Field(default="en_US", description="请求未携带语言时使用的语言")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("ai_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


def ensure_ai_enabled(cfg: Any) -> None:
    """在开始流式输出之前校验 AI 配置，失败时抛出普通业务异常。"""

    if not getattr(cfg, "ai_enabled", False):
        raise ServiceUnavailableError(code="AI_DISABLED", message="AI service is not enabled")
    if not getattr(cfg, "ai_model", ""):
        raise ValidationError(code="AI_MODEL_MISSING", message="AI service configuration error: model not set")
    if not getattr(cfg, "ai_api_key", None):
        raise ValidationError(code="MISSING_API_KEY", message="AI service configuration error: api key not set")


settings = Settings()
