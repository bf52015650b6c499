"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层统一捕获并映射为 HTTP 响应。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、provider 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ServiceUnavailableError(BusinessError):
    """功能未开启（如站点关闭了 AI 助手）。"""

    def __init__(self, code: str, message: str, http_status: int = 503, **extra):
        super().__init__(code, message, http_status, **extra)


class NotFoundError(BusinessError):
    """会话或记录不存在。"""

    def __init__(self, code: str, message: str, http_status: int = 404, **extra):
        super().__init__(code, message, http_status, **extra)


class ForbiddenError(BusinessError):
    """当前用户无权操作该对象。"""

    def __init__(self, code: str, message: str, http_status: int = 403, **extra):
        super().__init__(code, message, http_status, **extra)


class ClientDisconnectedError(BusinessError):
    """客户端连接已断开，流式输出无法继续写入。"""
