"""
卡住任务巡检和处理统计
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Any, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from ..core.config import settings
from ..core.constants import STUCK_JOB_BATCH_LIMIT
from ..models.cv_job import CVJob, ProcessingStatus

logger = logging.getLogger(__name__)


def _recover_job(job: CVJob, now: datetime) -> str:
    """根据任务已有的数据决定恢复方式，返回恢复原因"""
    features = job.selected_features or []
    enhanced = job.enhanced_features or {}
    output = job.generated_output or {}

    if features and not enhanced:
        job.enhanced_features = {
            f: {"status": "failed", "error": "功能未初始化", "retryable": True} for f in features
        }
        job.status = ProcessingStatus.FAILED.value
        job.error_message = "增强功能未初始化"
        reason = "missing_features_initialization"
    elif enhanced and not output:
        counts: Dict[str, int] = {}
        for state in enhanced.values():
            status = state.get("status", "unknown") if isinstance(state, dict) else "unknown"
            counts[status] = counts.get(status, 0) + 1
        job.status = ProcessingStatus.FAILED.value
        job.error_message = "部分处理超时"
        job.error_details = {
            "code": "PARTIAL_PROCESSING_TIMEOUT",
            "message": "部分处理超时",
            "failed_step": "features",
            "retry_count": 0,
            "recoverable": True,
            "context": {"feature_counts": counts},
        }
        reason = "partial_processing_timeout"
    elif enhanced and output:
        job.status = ProcessingStatus.COMPLETED.value
        job.progress = 100
        reason = "status_update_missed"
    else:
        job.status = ProcessingStatus.FAILED.value
        job.error_message = "处理超时，状态未知"
        reason = "unknown_state_timeout"

    job.processing_completed_at = now
    job.recovered_at = now
    job.recovery_reason = reason
    return reason


def monitor_stuck_jobs(db: Session, stuck_minutes: Optional[int] = None) -> Dict[str, Any]:
    """巡检长时间停留在generating的任务并恢复"""
    now = datetime.utcnow()
    cutoff = now - timedelta(minutes=stuck_minutes or settings.stuck_job_minutes)
    stuck = (
        db.query(CVJob)
        .filter(
            CVJob.status == ProcessingStatus.GENERATING.value,
            CVJob.processing_started_at < cutoff,
        )
        .order_by(CVJob.processing_started_at)
        .limit(STUCK_JOB_BATCH_LIMIT)
        .all()
    )

    summary: Dict[str, Any] = {"checked": len(stuck), "recovered": 0, "errors": 0, "reasons": {}, "job_ids": []}
    for job in stuck:
        try:
            reason = _recover_job(job, now)
            db.commit()
            summary["recovered"] += 1
            summary["reasons"][reason] = summary["reasons"].get(reason, 0) + 1
            summary["job_ids"].append(job.id)
            logger.info(f"[任务巡检] 恢复任务 {job.id}: {reason} -> {job.status}")
        except Exception as e:
            # 单个任务失败不影响其余任务
            db.rollback()
            summary["errors"] += 1
            logger.error(f"[任务巡检] 恢复任务 {job.id} 失败: {e}", exc_info=True)

    if stuck:
        logger.warning(f"[任务巡检] 发现 {len(stuck)} 个卡住任务，恢复 {summary['recovered']} 个")
    return summary


def get_job_processing_stats(db: Session) -> Dict[str, Any]:
    since = datetime.utcnow() - timedelta(hours=24)

    def count(*criteria) -> int:
        return db.query(func.count(CVJob.id)).filter(*criteria).scalar() or 0

    completed = count(CVJob.status == ProcessingStatus.COMPLETED.value, CVJob.updated_at >= since)
    failed = count(CVJob.status == ProcessingStatus.FAILED.value, CVJob.updated_at >= since)
    finished = completed + failed
    return {
        "last_24h": {
            "completed": completed,
            "failed": failed,
            "success_rate": round(completed / finished * 100, 2) if finished else 0.0,
        },
        "current": {
            "generating": count(CVJob.status == ProcessingStatus.GENERATING.value),
            "analyzing": count(CVJob.status == ProcessingStatus.ANALYZING.value),
            "pending": count(CVJob.status == ProcessingStatus.PENDING.value),
        },
        "timestamp": datetime.utcnow().isoformat(),
    }
