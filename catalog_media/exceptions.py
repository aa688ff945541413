from typing import Optional


class MediaError(Exception):
    """所有业务异常的基类。"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(MediaError):
    """存储端点或凭证缺失/无效，不可重试。"""


class StorageTransportError(MediaError):
    """对象存储请求失败（网络错误或非 2xx 响应），不做自动重试。"""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        operation: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.operation = operation
        self.key = key

    def __str__(self) -> str:
        parts = [self.message]
        if self.operation:
            parts.append(f"operation={self.operation}")
        if self.key:
            parts.append(f"key={self.key}")
        if self.status_code is not None:
            parts.append(f"status={self.status_code}")
        return " ".join(parts)


class ValidationError(MediaError):
    """图片记录字段不满足约束，写库前拒绝。"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(MediaError):
    """引用的商品或图片记录不存在。"""


class MigrationError(MediaError):
    """迁移任务在某个阶段失败，剩余阶段全部放弃。"""

    def __init__(self, phase: str, cause: BaseException):
        super().__init__(f"[{phase}] {cause}")
        self.phase = phase
        self.cause = cause
