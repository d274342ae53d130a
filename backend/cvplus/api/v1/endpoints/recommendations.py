"""
改进建议API端点
"""
import logging
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from ....core.database import get_db
from ....core.errors import ConflictError
from ....core.permissions import get_current_user
from ....core.rate_limit import limiter, get_rate_limit
from ....models.user import User
from ....schemas.recommendation import (
    ApplyImprovementsRequest,
    ApplyImprovementsResponse,
    RecommendationRequest,
    RecommendationsResponse,
)
from ....services.job_service import CVJobService
from ....services.recommendation_service import recommendation_service
from ....services.role_detection import role_detection_service
from .analysis import get_parsed_job

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/{job_id}/recommendations", response_model=RecommendationsResponse)
@limiter.limit(get_rate_limit("recommendations"))
async def get_recommendations(
    request: Request,
    job_id: str,
    body: RecommendationRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    获取详细改进建议

    相同参数的并发请求共享一次计算，结果缓存5分钟；`force_regenerate` 跳过缓存并刷新。
    """
    job = get_parsed_job(job_id, db, current_user)
    role_analysis = job.role_analysis or role_detection_service.analyze(job.parsed_cv)

    result = await recommendation_service.get_recommendations(
        job_id=job.id,
        user_id=current_user.id,
        parsed_cv=job.parsed_cv,
        ats_result=job.ats_result,
        role_analysis=role_analysis,
        target_role=body.target_role,
        industry_keywords=body.industry_keywords,
        force_regenerate=body.force_regenerate,
    )

    job.recommendations = result["recommendations"]
    db.commit()
    return result


@router.post("/{job_id}/apply-improvements", response_model=ApplyImprovementsResponse)
async def apply_improvements(
    job_id: str,
    body: ApplyImprovementsRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """应用选中的建议，生成改进后的CV和对比报告"""
    job = CVJobService(db).get_job(job_id, current_user)
    if not job.parsed_cv or not job.recommendations:
        raise ConflictError("任务还没有可应用的改进建议，请先获取建议")

    result = recommendation_service.apply_recommendations(
        job.parsed_cv, job.recommendations, body.selected_recommendation_ids
    )

    job.improved_cv = result["improved_cv"]
    job.applied_recommendations = [item["id"] for item in result["applied"]]
    job.transformation_summary = result["transformation_summary"]
    job.comparison_report = result["comparison_report"]
    job.improvements_applied = True
    db.commit()
    logger.info(f"[改进建议] 任务 {job.id} 应用 {len(result['applied'])} 条建议，跳过 {len(result['skipped'])} 条")
    return result
