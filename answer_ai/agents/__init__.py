"""编排层：会话上下文构建与多轮工具调用循环。"""
