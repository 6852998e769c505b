"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 API 层或 UI 层做统一捕获与用户提示。

注意：ChatStore 的变更接口从不向调用方抛出这些异常，
查找失败等情况在内部记录日志后降级为安全默认值。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 conversation_id、model_id 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ModelNotFoundError(BusinessError):
    """模型注册表中找不到指定的模型 ID。"""

    def __init__(self, model_id: str):
        super().__init__(code="MODEL_NOT_FOUND", message=f"Unknown model: {model_id!r}", http_status=404, model_id=model_id)
        self.model_id = model_id


class StorageError(BusinessError):
    """底层键值存储读写失败。"""


class MigrationError(BusinessError):
    """持久化数据无法解析或迁移。"""
