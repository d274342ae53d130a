from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Float, Boolean
from sqlalchemy.sql import func
from ..core.database import Base

class VerificationAuditLog(Base):
    """LLM输出校验审计日志（prompt/response 已脱敏）"""
    __tablename__ = "verification_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), unique=True, index=True)
    service = Column(String(100), nullable=False, index=True)
    prompt = Column(Text)
    response = Column(Text)
    verified = Column(Boolean, default=False)
    overall_score = Column(Float, default=0)
    confidence = Column(Float, default=0)
    outcome = Column(String(20), comment="approved, rejected, manual_review")
    issues = Column(JSON, default=list)
    processing_time_ms = Column(Integer, default=0)
    attempt = Column(Integer, default=1)
    created_at = Column(DateTime, default=func.now(), index=True)
