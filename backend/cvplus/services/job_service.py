"""
CV处理任务服务

任务生命周期（状态流转、进度、失败/取消/超时）和后台处理流水线：
解析 -> ATS分析 -> 岗位识别 -> 改进建议 -> 增强功能。
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional
from sqlalchemy.orm import Session
from ..core.config import settings
from ..core.constants import (
    BASE_PROCESSING_TIME_MS,
    DEFAULT_FEATURE_CREDIT_COST,
    DEFAULT_FEATURE_TIME_MS,
    DEFAULT_MAX_FILE_SIZE,
    MAX_FILE_SIZES,
)
from ..core.database import SessionLocal
from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.structured_logging import log_with_context
from ..models.cv_job import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    CVJob,
    FeatureType,
    InputType,
    ProcessingStatus,
)
from ..models.user import User
from .ats_optimization import ATSOptimizationService
from .cv_parser import CVParser, compute_content_hash
from .feature_generators import FeatureGenerator
from .llm_service import LLMService, LLMError, LLMNetworkError, LLMRateLimitError, LLMServerError
from .recommendation_service import recommendation_service
from .resilience import RESILIENCE_PRESETS, CircuitOpenError, with_full_resilience
from .role_detection import role_detection_service
from .subscription_service import get_or_create_subscription, job_priority

logger = logging.getLogger(__name__)

FEATURE_PROCESSING_TIME_MS = {
    FeatureType.ATS_OPTIMIZATION.value: 30000,
    FeatureType.PERSONALITY_INSIGHTS.value: 45000,
    FeatureType.AI_PODCAST.value: 120000,
    FeatureType.VIDEO_INTRODUCTION.value: 180000,
    FeatureType.INTERACTIVE_TIMELINE.value: 60000,
    FeatureType.PORTFOLIO_GALLERY.value: 90000,
    FeatureType.PUBLIC_PROFILE.value: 15000,
    FeatureType.QR_CODE.value: 5000,
    FeatureType.SKILLS_VISUALIZATION.value: 30000,
    FeatureType.CERTIFICATION_BADGES.value: 15000,
    FeatureType.LANGUAGE_PROFICIENCY.value: 15000,
    FeatureType.ACHIEVEMENTS_ANALYSIS.value: 30000,
}

FEATURE_CREDIT_COST = {
    FeatureType.ATS_OPTIMIZATION.value: 1,
    FeatureType.PERSONALITY_INSIGHTS.value: 1,
    FeatureType.AI_PODCAST.value: 3,
    FeatureType.VIDEO_INTRODUCTION.value: 5,
    FeatureType.INTERACTIVE_TIMELINE.value: 2,
    FeatureType.PORTFOLIO_GALLERY.value: 2,
    FeatureType.PUBLIC_PROFILE.value: 1,
    FeatureType.QR_CODE.value: 0,
    FeatureType.SKILLS_VISUALIZATION.value: 1,
    FeatureType.CERTIFICATION_BADGES.value: 1,
    FeatureType.LANGUAGE_PROFICIENCY.value: 1,
    FeatureType.ACHIEVEMENTS_ANALYSIS.value: 1,
}

ALLOWED_TRANSITIONS = {
    ProcessingStatus.PENDING: {
        ProcessingStatus.ANALYZING, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED, ProcessingStatus.EXPIRED,
    },
    ProcessingStatus.ANALYZING: {
        ProcessingStatus.GENERATING, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED, ProcessingStatus.EXPIRED,
    },
    ProcessingStatus.GENERATING: {
        ProcessingStatus.COMPLETED, ProcessingStatus.FAILED, ProcessingStatus.CANCELLED, ProcessingStatus.EXPIRED,
    },
}

STATUS_DESCRIPTIONS = {
    ProcessingStatus.PENDING: "等待处理",
    ProcessingStatus.ANALYZING: "正在分析CV内容",
    ProcessingStatus.GENERATING: "正在生成改进建议和增强功能",
    ProcessingStatus.COMPLETED: "处理完成",
    ProcessingStatus.FAILED: "处理失败",
    ProcessingStatus.CANCELLED: "已取消",
    ProcessingStatus.EXPIRED: "处理超时已过期",
}

VALID_FEATURES = {f.value for f in FeatureType}
VALID_INPUT_TYPES = {t.value for t in InputType}

# 流水线各阶段完成后的进度
PROGRESS_PARSED = 40
PROGRESS_ATS = 60
PROGRESS_ROLES = 70
PROGRESS_RECOMMENDATIONS = 85
PROGRESS_DONE = 100


def validate_job_input(
    file_size: int,
    input_type: str,
    features: Optional[List[str]] = None,
    progress: Optional[int] = None
) -> List[str]:
    """返回错误信息列表，为空表示通过"""
    errors: List[str] = []
    if input_type not in VALID_INPUT_TYPES:
        errors.append(f"不支持的输入类型: {input_type}")
    else:
        limit = MAX_FILE_SIZES.get(input_type, DEFAULT_MAX_FILE_SIZE)
        if limit and file_size > limit:
            errors.append(f"文件大小超过限制: {file_size} > {limit} 字节")
    if file_size < 0:
        errors.append("文件大小不能为负数")
    if progress is not None and not 0 <= progress <= 100:
        errors.append(f"进度必须在0-100之间: {progress}")
    for feature in features or []:
        if feature not in VALID_FEATURES:
            errors.append(f"未知的功能: {feature}")
    return errors


def calculate_total_processing_time(features: List[str]) -> int:
    return BASE_PROCESSING_TIME_MS + sum(FEATURE_PROCESSING_TIME_MS.get(f, DEFAULT_FEATURE_TIME_MS) for f in features)


def calculate_total_credit_cost(features: List[str]) -> int:
    return sum(FEATURE_CREDIT_COST.get(f, DEFAULT_FEATURE_CREDIT_COST) for f in features)


def status_description(status: str) -> str:
    try:
        return STATUS_DESCRIPTIONS[ProcessingStatus(status)]
    except ValueError:
        return "未知状态"


def has_timed_out(job: CVJob, timeout_seconds: int = settings.job_timeout_seconds, now: Optional[datetime] = None) -> bool:
    """只有活动状态的任务会超时，从开始处理（未开始则从创建）时计时"""
    if ProcessingStatus(job.status) not in ACTIVE_STATUSES:
        return False
    started = job.processing_started_at or job.created_at
    if started is None:
        return False
    return ((now or datetime.utcnow()) - started).total_seconds() > timeout_seconds


class CVJobService:
    """CV任务生命周期管理"""

    def __init__(self, db_session: Session):
        self.db = db_session

    def get_job(self, job_id: str, user: Optional[User] = None) -> CVJob:
        query = self.db.query(CVJob).filter(CVJob.id == job_id)
        if user is not None:
            query = query.filter(CVJob.user_id == user.id)
        job = query.first()
        if job is None:
            raise NotFoundError("CV任务")
        return job

    def list_jobs(self, user: User, skip: int = 0, limit: int = 20, status: Optional[str] = None) -> List[CVJob]:
        query = self.db.query(CVJob).filter(CVJob.user_id == user.id)
        if status:
            query = query.filter(CVJob.status == status)
        return query.order_by(CVJob.created_at.desc()).offset(skip).limit(limit).all()

    def create_job(
        self,
        user: User,
        file_name: str,
        file_size: int,
        input_type: str,
        features: Optional[List[str]] = None,
        raw_text: Optional[str] = None,
        customizations: Optional[Dict[str, Any]] = None,
        credits_charged: int = 0
    ) -> CVJob:
        features = list(dict.fromkeys(features or []))
        errors = validate_job_input(file_size, input_type, features)
        if errors:
            raise ValidationError("任务参数无效", details={"errors": errors})

        subscription = get_or_create_subscription(self.db, user)
        now = datetime.utcnow()
        job = CVJob(
            user_id=user.id,
            status=ProcessingStatus.PENDING.value,
            progress=0,
            priority=job_priority(subscription),
            original_file_name=file_name,
            original_file_size=file_size,
            input_type=input_type,
            raw_text=raw_text,
            file_hash=compute_content_hash(raw_text) if raw_text else None,
            selected_features=features,
            customizations=customizations or {},
            credits_charged=credits_charged,
            completed_steps=[],
            warnings=[],
            estimated_completion_at=now + timedelta(milliseconds=calculate_total_processing_time(features)),
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        logger.info(f"[CV任务] 创建任务 {job.id}: 用户 {user.id}, 功能 {features}, 优先级 {job.priority}")
        return job

    def transition(self, job: CVJob, new_status: ProcessingStatus) -> CVJob:
        current = ProcessingStatus(job.status)
        if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise ConflictError(
                f"任务状态不能从 {current.value} 变更为 {new_status.value}",
                details={"current_status": current.value, "requested_status": new_status.value},
            )

        now = datetime.utcnow()
        job.status = new_status.value
        if new_status == ProcessingStatus.ANALYZING:
            job.processing_started_at = now
        elif new_status == ProcessingStatus.COMPLETED:
            job.progress = PROGRESS_DONE
            job.processing_completed_at = now
            started = job.processing_started_at or job.created_at or now
            job.total_processing_time_ms = int((now - started).total_seconds() * 1000)
        elif new_status in TERMINAL_STATUSES:
            job.processing_completed_at = now
        self.db.commit()
        logger.info(f"[CV任务] {job.id}: {current.value} -> {new_status.value}")
        return job

    def update_progress(self, job: CVJob, progress: int, step: Optional[str] = None) -> CVJob:
        if not 0 <= progress <= 100:
            raise ValidationError(f"进度必须在0-100之间: {progress}")
        job.progress = progress
        if step:
            # JSON列需要重新赋值才能被识别为已修改
            job.completed_steps = list(job.completed_steps or []) + [{
                "step": step,
                "progress": progress,
                "completed_at": datetime.utcnow().isoformat(),
            }]
        self.db.commit()
        return job

    def add_warning(self, job: CVJob, message: str):
        job.warnings = list(job.warnings or []) + [message]
        self.db.commit()

    def fail_job(
        self,
        job: CVJob,
        code: str,
        message: str,
        failed_step: Optional[str] = None,
        recoverable: bool = False,
        context: Optional[Dict[str, Any]] = None
    ) -> CVJob:
        retry_count = (job.error_details or {}).get("retry_count", 0)
        job.error_message = message
        job.error_details = {
            "code": code,
            "message": message,
            "failed_step": failed_step,
            "retry_count": retry_count,
            "recoverable": recoverable,
            "context": context or {},
        }
        if ProcessingStatus(job.status) in TERMINAL_STATUSES:
            self.db.commit()
            return job
        self.transition(job, ProcessingStatus.FAILED)
        log_with_context(
            logger, logging.ERROR, f"[CV任务] {job.id} 失败于 {failed_step}: [{code}] {message}",
            job_id=job.id, user_id=job.user_id, failed_step=failed_step, error_code=code,
        )
        return job

    def cancel_job(self, job: CVJob) -> CVJob:
        if ProcessingStatus(job.status) not in ACTIVE_STATUSES:
            raise ConflictError(f"任务当前状态为 {job.status}，无法取消")
        return self.transition(job, ProcessingStatus.CANCELLED)

    def expire_timed_out_jobs(self, timeout_seconds: int = settings.job_timeout_seconds) -> int:
        now = datetime.utcnow()
        active = [s.value for s in ACTIVE_STATUSES]
        expired = 0
        for job in self.db.query(CVJob).filter(CVJob.status.in_(active)).all():
            if has_timed_out(job, timeout_seconds, now):
                job.error_message = "处理超时"
                self.transition(job, ProcessingStatus.EXPIRED)
                expired += 1
        if expired:
            logger.warning(f"[CV任务] {expired} 个任务超时过期")
        return expired

    def is_cancelled(self, job: CVJob) -> bool:
        self.db.refresh(job)
        return ProcessingStatus(job.status) in TERMINAL_STATUSES


def _error_code(error: Exception) -> str:
    if isinstance(error, LLMError):
        return "LLM_ERROR"
    if isinstance(error, ValueError):
        return "INVALID_INPUT"
    return "PROCESSING_ERROR"


def _recoverable(error: Exception) -> bool:
    return isinstance(error, (LLMNetworkError, LLMRateLimitError, LLMServerError, CircuitOpenError, asyncio.TimeoutError))


async def run_pipeline(db: Session, job: CVJob, llm_service: LLMService):
    service = CVJobService(db)
    customizations = job.customizations or {}
    target_role = customizations.get("target_role")
    keywords = customizations.get("industry_keywords") or []

    service.transition(job, ProcessingStatus.ANALYZING)
    step = "parse"
    try:
        parser = CVParser(llm_service)
        if not job.raw_text:
            raise ValueError("任务没有可解析的文本")
        # 解析是流水线中最重的LLM调用，走provider的限流、熔断和重试
        job.parsed_cv = await with_full_resilience(
            lambda: parser.parse_cv_text(job.raw_text),
            RESILIENCE_PRESETS.get(llm_service.provider, RESILIENCE_PRESETS["anthropic"]),
        )
        service.update_progress(job, PROGRESS_PARSED, step)
        if service.is_cancelled(job):
            return

        step = "ats"
        job.ats_result = await ATSOptimizationService(llm_service).analyze_cv(job.parsed_cv, target_role, keywords)
        service.update_progress(job, PROGRESS_ATS, step)

        step = "roles"
        job.role_analysis = role_detection_service.analyze(job.parsed_cv)
        service.update_progress(job, PROGRESS_ROLES, step)
        if service.is_cancelled(job):
            return

        service.transition(job, ProcessingStatus.GENERATING)
        step = "recommendations"
        job.recommendations = recommendation_service.generate_recommendations(
            job.parsed_cv, job.ats_result, job.role_analysis, target_role, keywords
        )
        service.update_progress(job, PROGRESS_RECOMMENDATIONS, step)

        step = "features"
        await process_features(db, job, llm_service)
        if service.is_cancelled(job):
            return
        service.update_progress(job, PROGRESS_DONE, step)
        service.transition(job, ProcessingStatus.COMPLETED)
    except Exception as e:
        # 流水线边界：任何异常都记为任务失败
        db.rollback()
        logger.error(f"[CV任务] {job.id} 处理异常: {e}", exc_info=True)
        service.fail_job(job, _error_code(e), str(e), failed_step=step, recoverable=_recoverable(e))


async def process_features(db: Session, job: CVJob, llm_service: LLMService):
    """逐个生成增强功能，单个功能失败只记录警告"""
    features = job.selected_features or []
    if not features:
        return
    generator = FeatureGenerator(db, llm_service)
    statuses: Dict[str, Any] = {f: {"status": "pending"} for f in features}
    outputs: Dict[str, Any] = dict(job.generated_output or {})
    job.enhanced_features = dict(statuses)
    db.commit()

    span = PROGRESS_DONE - PROGRESS_RECOMMENDATIONS
    for index, feature in enumerate(features, start=1):
        statuses[feature] = {"status": "processing", "started_at": datetime.utcnow().isoformat()}
        job.enhanced_features = dict(statuses)
        db.commit()
        try:
            outputs[feature] = await generator.generate(feature, job)
            remote_status = outputs[feature].get("status") if isinstance(outputs[feature], dict) else None
            statuses[feature] = {
                "status": "processing" if remote_status == "processing" else "completed",
                "completed_at": datetime.utcnow().isoformat(),
            }
            if feature == FeatureType.VIDEO_INTRODUCTION.value:
                statuses[feature].update({
                    "provider": outputs[feature].get("provider"),
                    "remote_id": outputs[feature].get("remote_id"),
                    "script": outputs[feature].get("script"),
                })
        except Exception as e:
            logger.warning(f"[CV任务] {job.id} 功能 {feature} 生成失败: {e}")
            statuses[feature] = {"status": "failed", "error": str(e), "retryable": True}
            job.warnings = list(job.warnings or []) + [f"{feature}: {e}"]

        job.enhanced_features = dict(statuses)
        job.generated_output = dict(outputs)
        job.progress = min(PROGRESS_DONE - 1, PROGRESS_RECOMMENDATIONS + int(span * index / len(features)))
        db.commit()


async def process_job(job_id: str, llm_service: Optional[LLMService] = None):
    """后台任务入口：独立会话，带整体超时"""
    db = SessionLocal()
    try:
        job = db.query(CVJob).filter(CVJob.id == job_id).first()
        if job is None:
            logger.warning(f"[CV任务] 任务不存在: {job_id}")
            return
        if job.status != ProcessingStatus.PENDING.value:
            logger.info(f"[CV任务] {job_id} 当前状态 {job.status}，跳过处理")
            return

        llm = llm_service or LLMService(db_session=db)
        try:
            await asyncio.wait_for(run_pipeline(db, job, llm), timeout=settings.job_timeout_seconds)
        except asyncio.TimeoutError:
            db.rollback()
            db.refresh(job)
            if ProcessingStatus(job.status) in ACTIVE_STATUSES:
                job.error_message = f"处理超时（{settings.job_timeout_seconds}秒）"
                CVJobService(db).transition(job, ProcessingStatus.EXPIRED)
    finally:
        db.close()
