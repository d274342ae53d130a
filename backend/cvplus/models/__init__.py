"""
数据模型统一导入
"""
from .user import User
from .subscription import Subscription, PaymentRecord, UploadRecord, PolicyViolation
from .cv_job import CVJob
from .embedding import CVEmbedding
from .verification import VerificationAuditLog
from .system_settings import SystemSetting

__all__ = [
    "User",
    "Subscription",
    "PaymentRecord",
    "UploadRecord",
    "PolicyViolation",
    "CVJob",
    "CVEmbedding",
    "VerificationAuditLog",
    "SystemSetting",
]
