"""本地化提示词。

新会话只有一条用户消息时，用户问题会被包进按语言选择的提示词模板：
优先使用站点配置的模板（settings.prompt_zh_cn / prompt_en_us），
为空时回退到本目录下 zh/、en/ 中的默认模板。
"""

from pathlib import Path
from typing import Any, Dict, Optional, Protocol


PROMPTS_DIR = Path(__file__).resolve().parent
PLACEHOLDER = "{question}"
LANGUAGE_CHINESE = "zh_CN"
LANGUAGE_ENGLISH = "en_US"


class PromptProvider(Protocol):
    def get_prompt(self, language: str, question: str) -> str:
        ...


def _locale_dir(language: str) -> str:
    return "zh" if (language or "").lower().startswith("zh") else "en"


def load_default_template(language: str) -> str:
    fname = PROMPTS_DIR / _locale_dir(language) / "qa_assistant.md"
    return fname.read_text(encoding="utf-8").strip()


def render_prompt(template: str, question: str) -> str:
    if PLACEHOLDER in template:
        return template.replace(PLACEHOLDER, question)
    return f"{template}\n\n{question}"


class LocalizedPromptProvider:
    """只读的提示词提供者，由调用方注入，不持有全局可变状态。"""

    def __init__(self, cfg: Optional[Any] = None):
        self._site_templates: Dict[str, str] = {
            "zh": getattr(cfg, "prompt_zh_cn", "") or "",
            "en": getattr(cfg, "prompt_en_us", "") or "",
        }

    def get_prompt(self, language: str, question: str) -> str:
        template = self._site_templates.get(_locale_dir(language)) or load_default_template(language)
        return render_prompt(template, question)
