"""
统一API响应格式
"""
from typing import Any, Optional, Dict, Union
from .constants import SUCCESS_MESSAGE


class APIResponse:
    """统一API响应格式"""

    @staticmethod
    def success(data: Any = None, message: str = SUCCESS_MESSAGE) -> Dict[str, Any]:
        response = {
            "success": True,
            "message": message
        }
        if data is not None:
            response["data"] = data
        return response

    @staticmethod
    def error(
        code: Union[int, str],
        message: str,
        details: Optional[Any] = None
    ) -> Dict[str, Any]:
        """
        错误响应

        Args:
            code: HTTP状态码或业务错误码（VALIDATION_ERROR、PAYMENT_REQUIRED、POLICY_VIOLATION 等）
            message: 错误消息
            details: 错误详情，如 required_credits、retry_after、violations
        """
        response = {
            "success": False,
            "code": code,
            "message": message
        }
        if details is not None:
            response["details"] = details
        return response
