"""
LLM输出校验API端点（管理员）
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from ....core.database import get_db
from ....core.permissions import require_admin
from ....models.user import User
from ....schemas.admin import VerifyRequest
from ....services.llm_verification import LLMVerificationService

router = APIRouter()


@router.post("/verify")
async def verify_llm_output(
    body: VerifyRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """用校验模型评估一次LLM输出，结果写入审计日志"""
    service = LLMVerificationService(db_session=db)
    return await service.verify_response(body.service, body.prompt, body.response, body.context)


@router.get("/stats")
async def get_verification_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """审计日志统计：总数、通过率、平均分、平均耗时、问题分类"""
    return LLMVerificationService(db_session=db).get_stats()
