"""领域层模型与协议。

包含：
- models: ChatMessage / ChatStreamChunk / StreamFrame / ConversationContext。
- conversation: 会话与记录的存储模型及 ConversationStore 抽象。
- exceptions: 业务异常类型定义。
"""
