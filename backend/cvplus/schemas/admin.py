"""
管理后台相关的Schema定义
"""
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime


class SettingUpdate(BaseModel):
    key: str = Field(..., max_length=255, description="配置键，如 llm.anthropic.api_key")
    value: str
    category: Optional[str] = Field(None, description="llm, video, system；为空时按键名前缀判断")
    description: Optional[str] = None
    is_encrypted: Optional[bool] = None


class SettingsBatchUpdate(BaseModel):
    settings: List[SettingUpdate] = Field(..., min_length=1)


class SubscriptionUpdate(BaseModel):
    status: Optional[str] = Field(None, description="free 或 premium")
    plan: Optional[str] = None
    lifetime_access: Optional[bool] = None
    credits: Optional[int] = Field(None, ge=0)
    current_period_end: Optional[datetime] = None


class PaymentCreate(BaseModel):
    amount: float = Field(..., ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    status: str = Field("succeeded", description="succeeded, pending, failed, refunded")
    description: Optional[str] = None
    credits_granted: int = Field(0, ge=0)


class PaymentResponse(BaseModel):
    id: int
    amount: float
    currency: str
    status: str
    description: Optional[str] = None
    credits_granted: int = 0
    created_at: datetime

    class Config:
        from_attributes = True


class MonitorResult(BaseModel):
    checked: int
    recovered: int
    errors: int
    reasons: Dict[str, int]
    job_ids: List[str]


class VerifyRequest(BaseModel):
    service: str = Field(..., max_length=50, description="产生该输出的服务名，如 rag_chat")
    prompt: str = Field(..., min_length=1)
    response: str = Field(..., min_length=1)
    context: Optional[str] = None
