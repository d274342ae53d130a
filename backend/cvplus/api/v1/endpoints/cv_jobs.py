"""
CV任务API端点
"""
import json
import logging
import os
from typing import List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile, status
from sqlalchemy.orm import Session
from ....core.config import settings
from ....core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ALLOWED_FILE_EXTENSIONS, ALLOWED_MIME_TYPES
from ....core.database import get_db
from ....core.errors import CVPlusError, ValidationError
from ....core.permissions import get_current_user
from ....core.rate_limit import limiter, get_rate_limit
from ....models.user import User
from ....schemas.cv_job import CVJobCreated, CVJobDetail, CVJobResponse, CVJobStatus
from ....services.cv_parser import CVParser
from ....services.job_service import (
    CVJobService,
    calculate_total_credit_cost,
    calculate_total_processing_time,
    has_timed_out,
    process_job,
    status_description,
    validate_job_input,
)
from ....services.policy_enforcement import PolicyEnforcementService
from ....services.subscription_service import (
    check_credits,
    check_feature_access,
    deduct_credits,
    get_or_create_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _parse_list_field(value: Optional[str]) -> List[str]:
    """表单中的列表字段支持 JSON 数组或逗号分隔"""
    if not value or not value.strip():
        return []
    value = value.strip()
    if value.startswith("["):
        try:
            items = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError(f"无法解析列表参数: {value}")
        return [str(item).strip() for item in items if str(item).strip()]
    return [item.strip() for item in value.split(",") if item.strip()]


def _input_type_from_filename(file_name: str) -> str:
    ext = os.path.splitext(file_name or "")[1].lower()
    if ext not in ALLOWED_FILE_EXTENSIONS:
        raise ValidationError(
            f"不支持的文件格式: {ext or '无扩展名'}",
            details={"allowed": ALLOWED_FILE_EXTENSIONS},
        )
    return ext.lstrip(".")


def _check_content_type(input_type: str, content_type: Optional[str]):
    """声明的MIME类型必须与扩展名一致；未声明或通用二进制类型时只按扩展名判断"""
    mime = (content_type or "").split(";")[0].strip().lower()
    if not mime or mime == "application/octet-stream":
        return
    if mime not in ALLOWED_MIME_TYPES.get(input_type, []):
        raise ValidationError(
            f"文件类型与扩展名不符: {mime}",
            details={"input_type": input_type, "allowed": ALLOWED_MIME_TYPES.get(input_type, [])},
        )


@router.post("", response_model=CVJobCreated, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("upload_cv"))
async def create_cv_job(
    request: Request,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="CV文件（pdf/docx/txt/csv）"),
    features: Optional[str] = Form(None, description="功能列表，JSON数组或逗号分隔"),
    target_role: Optional[str] = Form(None),
    industry_keywords: Optional[str] = Form(None, description="行业关键词，JSON数组或逗号分隔"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    上传CV并创建处理任务

    **处理流程**:
    1. 校验文件格式和大小，提取文本
    2. 检查功能权限和积分
    3. 上传策略检查（用量、重复、姓名一致性）
    4. 创建任务并扣减积分，后台开始处理

    **错误响应**:
    - `400`: 文件格式/大小/参数无效
    - `402`: 需要Premium或积分不足
    - `403`: 上传被策略拦截
    - `429`: 请求过于频繁
    """
    input_type = _input_type_from_filename(file.filename)
    _check_content_type(input_type, file.content_type)
    feature_list = _parse_list_field(features)
    content = await file.read()
    file_size = len(content)

    if file_size == 0:
        raise ValidationError("上传的文件为空")
    if file_size > settings.upload_max_mb * 1024 * 1024:
        raise ValidationError(f"文件大小超过限制（最大 {settings.upload_max_mb}MB）")
    errors = validate_job_input(file_size, input_type, feature_list)
    if errors:
        raise ValidationError("任务参数无效", details={"errors": errors})

    subscription = get_or_create_subscription(db, current_user)
    check_feature_access(subscription, feature_list)
    cost = calculate_total_credit_cost(feature_list)
    check_credits(subscription, cost)

    parser = CVParser()
    try:
        raw_text = parser.preprocess_text(parser.extract_text(content, input_type))
    except ValueError as e:
        raise ValidationError(str(e))

    client_ip = request.client.host if request.client else None
    policy = PolicyEnforcementService(db).check_upload_policy(
        current_user, raw_text, file.filename, file_size, input_type, client_ip
    )
    if not policy["allowed"]:
        raise CVPlusError(
            "上传未通过策略检查",
            status_code=status.HTTP_403_FORBIDDEN,
            code="POLICY_VIOLATION",
            details={"violations": policy["violations"], "actions": policy["actions"]},
        )

    customizations = {}
    if target_role:
        customizations["target_role"] = target_role.strip()
    keywords = _parse_list_field(industry_keywords)
    if keywords:
        customizations["industry_keywords"] = keywords

    service = CVJobService(db)
    job = service.create_job(
        current_user,
        file_name=file.filename,
        file_size=file_size,
        input_type=input_type,
        features=feature_list,
        raw_text=raw_text,
        customizations=customizations,
    )
    charged = deduct_credits(db, subscription, cost)
    job.credits_charged = charged
    db.commit()
    db.refresh(job)

    background_tasks.add_task(process_job, job.id)
    logger.info(f"[CV任务] 用户 {current_user.id} 上传 {file.filename}，任务 {job.id} 已排队")

    return {
        "job": job,
        "estimated_processing_time_ms": calculate_total_processing_time(feature_list),
        "credits_charged": charged,
        "remaining_credits": subscription.credits or 0,
        "policy_warnings": policy["warnings"],
    }


@router.get("", response_model=List[CVJobResponse])
async def list_cv_jobs(
    skip: int = Query(0, ge=0),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return CVJobService(db).list_jobs(current_user, skip=skip, limit=limit, status=status_filter)


@router.get("/{job_id}", response_model=CVJobDetail)
async def get_cv_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return CVJobService(db).get_job(job_id, current_user)


@router.get("/{job_id}/status", response_model=CVJobStatus)
async def get_cv_job_status(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """轮询任务状态和进度"""
    job = CVJobService(db).get_job(job_id, current_user)
    return {
        "id": job.id,
        "status": job.status,
        "status_description": status_description(job.status),
        "progress": job.progress or 0,
        "completed_steps": job.completed_steps or [],
        "enhanced_features": job.enhanced_features,
        "error_details": job.error_details,
        "estimated_completion_at": job.estimated_completion_at,
        "timed_out": has_timed_out(job),
    }


@router.post("/{job_id}/cancel", response_model=CVJobResponse)
async def cancel_cv_job(
    job_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """取消任务（仅限未完成的任务）"""
    service = CVJobService(db)
    return service.cancel_job(service.get_job(job_id, current_user))
