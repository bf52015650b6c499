"""检索工具：定义、固定注册表与分发执行器。"""
