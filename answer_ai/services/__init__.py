"""会话持久化与查询服务。"""
