"""
业务错误定义

所有业务错误继承 CVPlusError，携带HTTP状态码、错误码和可选的详情，
由 main.py 中的异常处理器统一转换为 APIResponse.error 格式。
"""
from typing import Any, Dict, Optional


class CVPlusError(Exception):
    """业务错误基类"""
    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        is_operational: bool = True
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details
        # 非业务性错误在生产环境不向客户端暴露原始信息
        self.is_operational = is_operational

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(CVPlusError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthError(CVPlusError):
    status_code = 401
    code = "AUTH_ERROR"


class AuthorizationError(CVPlusError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"


class NotFoundError(CVPlusError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "资源", details: Optional[Dict[str, Any]] = None):
        super().__init__(f"{resource}不存在", details=details)


class ConflictError(CVPlusError):
    status_code = 409
    code = "CONFLICT"


class PaymentRequiredError(CVPlusError):
    status_code = 402
    code = "PAYMENT_REQUIRED"

    def __init__(self, message: str = "需要升级订阅或补充积分", required_credits: Optional[int] = None):
        details = {"required_credits": required_credits} if required_credits is not None else None
        super().__init__(message, details=details)


class RateLimitError(CVPlusError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str = "请求过于频繁，请稍后再试", retry_after: Optional[int] = None):
        details = {"retry_after": retry_after} if retry_after is not None else None
        super().__init__(message, details=details)


class ServiceUnavailableError(CVPlusError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, service: str, retry_after: Optional[int] = None, message: Optional[str] = None):
        details: Dict[str, Any] = {"service": service}
        if retry_after is not None:
            details["retry_after"] = retry_after
        super().__init__(message or f"{service} 服务暂时不可用", details=details)


def map_external_api_error(
    status_code: Optional[int],
    service: str,
    message: str = "",
    retry_after: Optional[int] = None
) -> CVPlusError:
    """将外部服务的HTTP状态码映射为业务错误"""
    if status_code == 400:
        return ValidationError(f"{service} 请求参数无效: {message}".rstrip(": "))
    if status_code == 401:
        return CVPlusError(f"{service} 鉴权失败", 500, "EXTERNAL_AUTH_ERROR", {"service": service})
    if status_code == 403:
        return CVPlusError(f"{service} 拒绝访问", 500, "EXTERNAL_ACCESS_DENIED", {"service": service})
    if status_code == 404:
        return NotFoundError(f"{service} 资源")
    if status_code == 429:
        return RateLimitError(f"{service} 限流，请稍后重试", retry_after=retry_after or 60)
    if status_code in (500, 502, 503, 504):
        return ServiceUnavailableError(service, retry_after=retry_after)
    return CVPlusError(
        f"{service} 调用失败: {message}".rstrip(": "),
        500,
        "EXTERNAL_API_ERROR",
        {"service": service, "status_code": status_code}
    )
