from sqlalchemy import Column, Integer, String, Boolean, DateTime, Float, ForeignKey, Text, Index, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base

class Subscription(Base):
    """用户订阅与积分"""
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False, index=True)
    status = Column(String(20), default="free", nullable=False, comment="free, premium")
    plan = Column(String(50), default="free", comment="计划名称，如 free, premium_monthly, lifetime")
    lifetime_access = Column(Boolean, default=False, comment="是否终身访问（等同premium）")
    credits = Column(Integer, default=0, comment="剩余积分，premium用户不扣减")
    current_period_end = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="subscription")

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    @property
    def is_premium(self) -> bool:
        return bool(self.lifetime_access) or self.status == "premium"


class PaymentRecord(Base):
    """付款记录（由管理员录入）"""
    __tablename__ = "payment_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Float, nullable=False)
    currency = Column(String(10), default="USD")
    status = Column(String(20), default="succeeded", comment="succeeded, refunded, failed")
    description = Column(Text, nullable=True)
    credits_granted = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())


class UploadRecord(Base):
    """CV上传记录，用于用量限制、重复检测和账号共享检测"""
    __tablename__ = "upload_records"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    content_hash = Column(String(64), nullable=False, index=True)
    file_name = Column(String(255))
    file_size = Column(Integer)
    file_type = Column(String(20))
    ip_address = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime, default=func.now(), index=True)

    __table_args__ = (
        Index('idx_upload_user_created', 'user_id', 'created_at'),
    )


class PolicyViolation(Base):
    """策略违规记录"""
    __tablename__ = "policy_violations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    violation_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    description = Column(Text)
    evidence = Column(JSON, nullable=True, comment="违规证据")
    created_at = Column(DateTime, default=func.now())
