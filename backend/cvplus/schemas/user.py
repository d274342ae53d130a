from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Dict, Any
from datetime import datetime

# 用户基础模式
class UserBase(BaseModel):
    email: EmailStr
    full_name: Optional[str] = Field(None, max_length=100)

# 用户创建模式 (注册)
class UserCreate(UserBase):
    password: str

# 用户响应模式
class UserResponse(UserBase):
    id: int
    user_type: Optional[str] = None
    is_active: bool
    is_verified: bool
    created_at: datetime

    class Config:
        from_attributes = True

# 登录相关模式
class UserLogin(BaseModel):
    email: EmailStr
    password: str

class Token(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse

# 订阅
class SubscriptionResponse(BaseModel):
    status: str
    plan: Optional[str] = None
    lifetime_access: bool = False
    is_premium: bool = False
    credits: int = 0
    current_period_end: Optional[datetime] = None
    limits: Dict[str, int] = {}
    updated_at: Optional[datetime] = None
