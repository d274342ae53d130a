"""
ATS分析和岗位识别API端点
"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ....core.database import get_db
from ....core.errors import ConflictError
from ....core.permissions import get_current_user
from ....models.cv_job import CVJob
from ....models.user import User
from ....schemas.cv_job import ATSRequest, RoleAnalysisResponse
from ....services.ats_optimization import ATSOptimizationService
from ....services.job_service import CVJobService
from ....services.llm_service import LLMService
from ....services.role_detection import role_detection_service

logger = logging.getLogger(__name__)

router = APIRouter()


def get_parsed_job(job_id: str, db: Session, user: User) -> CVJob:
    job = CVJobService(db).get_job(job_id, user)
    if not job.parsed_cv:
        raise ConflictError("CV尚未解析完成，请稍后再试", details={"status": job.status})
    return job


@router.post("/{job_id}/ats")
async def analyze_ats(
    job_id: str,
    body: ATSRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    按目标岗位/关键词重新进行ATS分析

    返回评分、问题列表、改进建议、关键词分析和优化内容，结果写回任务。
    """
    job = get_parsed_job(job_id, db, current_user)
    service = ATSOptimizationService(LLMService(db_session=db))
    result = await service.analyze_cv(job.parsed_cv, body.target_role, body.target_keywords)

    job.ats_result = result
    db.commit()
    logger.info(f"[ATS] 任务 {job.id} 重新分析: 得分 {result['score']}")
    return result


@router.get("/{job_id}/roles", response_model=RoleAnalysisResponse)
async def get_role_analysis(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """岗位识别结果，任务中没有时即时计算"""
    job = get_parsed_job(job_id, db, current_user)
    if not job.role_analysis:
        job.role_analysis = role_detection_service.analyze(job.parsed_cv)
        db.commit()
    return job.role_analysis
