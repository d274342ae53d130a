import uuid
from enum import Enum
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..core.database import Base


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


TERMINAL_STATUSES = {
    ProcessingStatus.COMPLETED,
    ProcessingStatus.FAILED,
    ProcessingStatus.CANCELLED,
    ProcessingStatus.EXPIRED,
}
ACTIVE_STATUSES = {
    ProcessingStatus.PENDING,
    ProcessingStatus.ANALYZING,
    ProcessingStatus.GENERATING,
}


class InputType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    TXT = "txt"
    CSV = "csv"
    URL = "url"


class FeatureType(str, Enum):
    AI_PODCAST = "ai_podcast"
    VIDEO_INTRODUCTION = "video_introduction"
    INTERACTIVE_TIMELINE = "interactive_timeline"
    PORTFOLIO_GALLERY = "portfolio_gallery"
    ATS_OPTIMIZATION = "ats_optimization"
    PERSONALITY_INSIGHTS = "personality_insights"
    PUBLIC_PROFILE = "public_profile"
    QR_CODE = "qr_code"
    SKILLS_VISUALIZATION = "skills_visualization"
    CERTIFICATION_BADGES = "certification_badges"
    LANGUAGE_PROFICIENCY = "language_proficiency"
    ACHIEVEMENTS_ANALYSIS = "achievements_analysis"


class JobPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


def _new_job_id() -> str:
    return str(uuid.uuid4())


class CVJob(Base):
    """CV处理任务"""
    __tablename__ = "cv_jobs"

    id = Column(String(36), primary_key=True, default=_new_job_id)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # 状态
    status = Column(String(20), default=ProcessingStatus.PENDING.value, nullable=False, index=True)
    progress = Column(Integer, default=0, comment="0-100")
    priority = Column(String(10), default=JobPriority.NORMAL.value)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True, comment="code, message, failed_step, retry_count, recoverable, context")
    completed_steps = Column(JSON, default=list, comment="已完成步骤记录")
    warnings = Column(JSON, default=list)

    # 输入
    original_file_name = Column(String(255))
    original_file_size = Column(Integer, default=0)
    input_type = Column(String(10), default=InputType.PDF.value)
    file_hash = Column(String(64), index=True)
    raw_text = Column(Text)
    selected_features = Column(JSON, default=list)
    customizations = Column(JSON, nullable=True, comment="target_role, industry_keywords, video选项等")
    credits_charged = Column(Integer, default=0)

    # 分析结果
    parsed_cv = Column(JSON, nullable=True)
    ats_result = Column(JSON, nullable=True)
    role_analysis = Column(JSON, nullable=True)
    recommendations = Column(JSON, nullable=True)

    # 改进结果
    improved_cv = Column(JSON, nullable=True)
    applied_recommendations = Column(JSON, nullable=True)
    transformation_summary = Column(JSON, nullable=True)
    comparison_report = Column(JSON, nullable=True)
    improvements_applied = Column(Boolean, default=False)

    # 增强功能
    enhanced_features = Column(JSON, nullable=True, comment="feature -> {status, ...}")
    generated_output = Column(JSON, nullable=True)

    # 时间
    processing_started_at = Column(DateTime, nullable=True)
    processing_completed_at = Column(DateTime, nullable=True)
    total_processing_time_ms = Column(Integer, nullable=True)
    estimated_completion_at = Column(DateTime, nullable=True)
    recovered_at = Column(DateTime, nullable=True)
    recovery_reason = Column(String(100), nullable=True)

    user = relationship("User", back_populates="cv_jobs")
    embeddings = relationship("CVEmbedding", back_populates="job", cascade="all, delete-orphan")

    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_cv_jobs_status_started', 'status', 'processing_started_at'),
        Index('idx_cv_jobs_user_created', 'user_id', 'created_at'),
    )
