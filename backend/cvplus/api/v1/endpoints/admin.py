"""
管理后台API：系统配置、订阅、付款、任务巡检
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from ....core.database import get_db
from ....core.errors import NotFoundError
from ....core.permissions import require_admin
from ....core.responses import APIResponse
from ....models.user import User
from ....schemas.admin import MonitorResult, PaymentCreate, PaymentResponse, SettingsBatchUpdate, SubscriptionUpdate
from ....schemas.user import SubscriptionResponse
from ....services.config_service import config_service
from ....services.job_monitoring import get_job_processing_stats, monitor_stuck_jobs
from ....services.job_service import CVJobService
from ....services.subscription_service import add_payment, subscription_to_dict, update_subscription

logger = logging.getLogger(__name__)

router = APIRouter()

SETTING_CATEGORIES = ("llm", "video", "verification")


def _get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("用户")
    return user


# ========== 系统配置 ==========

@router.get("/settings")
async def get_settings(
    category: Optional[str] = Query(None, description="llm, video, system"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """获取系统配置（敏感项脱敏）"""
    return APIResponse.success(config_service.get_all_settings(db, category))


@router.put("/settings")
async def update_settings(
    body: SettingsBatchUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """
    批量更新系统配置

    键名示例: `llm.anthropic.api_key`, `llm.openai.model_name`, `video.heygen.api_key`。
    密钥类配置自动加密存储。
    """
    updated = []
    for item in body.settings:
        prefix = item.key.split(".", 1)[0]
        category = item.category or (prefix if prefix in SETTING_CATEGORIES else "system")
        config_service.set_setting(
            db,
            item.key,
            item.value,
            category=category,
            description=item.description,
            is_encrypted=item.is_encrypted,
            updated_by=current_user.id,
        )
        updated.append(item.key)
    logger.info(f"管理员 {current_user.id} 更新配置: {updated}")
    return APIResponse.success({"updated": updated}, message=f"已更新 {len(updated)} 项配置")


# ========== 订阅与付款 ==========

@router.put("/users/{user_id}/subscription", response_model=SubscriptionResponse)
async def update_user_subscription(
    user_id: int,
    body: SubscriptionUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    user = _get_user(db, user_id)
    subscription = update_subscription(db, user, **body.model_dump(exclude_unset=True))
    return subscription_to_dict(subscription)


@router.post("/users/{user_id}/payments", response_model=PaymentResponse)
async def create_user_payment(
    user_id: int,
    body: PaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """录入付款记录，成功的付款发放积分"""
    user = _get_user(db, user_id)
    return add_payment(db, user, **body.model_dump())


# ========== 任务巡检 ==========

@router.post("/jobs/monitor", response_model=MonitorResult)
async def run_job_monitor(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """恢复长时间停留在generating的任务"""
    return monitor_stuck_jobs(db)


@router.post("/jobs/expire")
async def expire_jobs(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    """将超时的活动任务标记为expired"""
    expired = CVJobService(db).expire_timed_out_jobs()
    return APIResponse.success({"expired": expired})


@router.get("/jobs/stats")
async def job_stats(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin)
):
    return get_job_processing_stats(db)
