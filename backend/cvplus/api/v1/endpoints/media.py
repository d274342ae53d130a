"""
视频介绍API端点
"""
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from ....core.database import get_db
from ....core.errors import NotFoundError, PaymentRequiredError
from ....core.permissions import get_current_user
from ....core.rate_limit import limiter, get_rate_limit
from ....models.cv_job import FeatureType
from ....models.user import User
from ....schemas.chat import VideoRequest
from ....services.job_service import CVJobService
from ....services.subscription_service import get_or_create_subscription
from ....services.video_providers import SCRIPT_DURATIONS, VideoGenerationService
from .analysis import get_parsed_job

logger = logging.getLogger(__name__)

router = APIRouter()

VIDEO_FEATURE = FeatureType.VIDEO_INTRODUCTION.value


@router.post("/{job_id}/video")
@limiter.limit(get_rate_limit("video"))
async def generate_video(
    request: Request,
    job_id: str,
    body: VideoRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    生成视频介绍（Premium）

    先生成脚本，再按健康度和优先级依次尝试视频服务，返回提交结果和切换记录。
    """
    subscription = get_or_create_subscription(db, current_user)
    if not subscription.is_premium:
        raise PaymentRequiredError("视频介绍需要升级到Premium")

    job = get_parsed_job(job_id, db, current_user)
    service = VideoGenerationService(db_session=db)
    script = await service.generate_script(job.parsed_cv, body.duration, body.style)

    options = body.model_dump(exclude={"duration", "style"}, exclude_none=True)
    options["duration_seconds"] = SCRIPT_DURATIONS[body.duration]["seconds"]

    features = dict(job.enhanced_features or {})
    try:
        result = await service.generate_video(script, options)
    except Exception as e:
        features[VIDEO_FEATURE] = {"status": "failed", "error": str(e), "script": script, "retryable": True}
        job.enhanced_features = features
        db.commit()
        raise

    features[VIDEO_FEATURE] = {
        "status": "completed" if result["status"] == "completed" else "processing",
        "provider": result["provider"],
        "remote_id": result["remote_id"],
        "script": script,
        "started_at": datetime.utcnow().isoformat(),
    }
    outputs = dict(job.generated_output or {})
    outputs[VIDEO_FEATURE] = {**result, "script": script, "duration": body.duration, "style": body.style}
    job.enhanced_features = features
    job.generated_output = outputs
    db.commit()
    return {**result, "script": script}


@router.get("/{job_id}/video/status")
async def get_video_status(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """查询远端视频生成状态并更新任务"""
    job = CVJobService(db).get_job(job_id, current_user)
    entry = (job.enhanced_features or {}).get(VIDEO_FEATURE) or {}
    if not entry.get("provider") or not entry.get("remote_id"):
        raise NotFoundError("视频生成任务")
    if entry.get("status") == "completed" and (job.generated_output or {}).get(VIDEO_FEATURE, {}).get("video_url"):
        return job.generated_output[VIDEO_FEATURE]

    result = await VideoGenerationService(db_session=db).check_status(entry["provider"], entry["remote_id"])

    features = dict(job.enhanced_features)
    features[VIDEO_FEATURE] = {**entry, "status": result["status"]}
    outputs = dict(job.generated_output or {})
    outputs[VIDEO_FEATURE] = {**outputs.get(VIDEO_FEATURE, {}), **result}
    job.enhanced_features = features
    job.generated_output = outputs
    db.commit()
    return outputs[VIDEO_FEATURE]
