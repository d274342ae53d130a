from sqlalchemy import Column, Integer, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(100))

    # 用户类型: user（普通用户）, admin（管理员）, super_admin（超级管理员）
    user_type = Column(String(50), default="user")

    # 账户状态
    is_active = Column(Boolean, default=True)
    is_verified = Column(Boolean, default=False)
    last_login = Column(DateTime)

    subscription = relationship("Subscription", uselist=False, back_populates="user", cascade="all, delete-orphan")
    cv_jobs = relationship("CVJob", back_populates="user", cascade="all, delete-orphan")

    # 时间戳
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())
