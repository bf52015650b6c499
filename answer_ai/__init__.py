"""Answer AI 顶层包。

该包实现问答社区后端中的“AI 助手”流式对话核心，
包括配置加载、领域模型、模型 Provider 适配、检索工具注册表、
流式工具调用累积、多轮编排循环与会话持久化等能力。
"""

from answer_ai.agents.chat_agent import ChatAgent, ChatAgentConfig

__all__ = ["ChatAgent", "ChatAgentConfig"]
