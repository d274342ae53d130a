from fastapi import APIRouter, Depends, HTTPException, status, Body, Request
from sqlalchemy.orm import Session
from sqlalchemy.sql import func
import logging
from ....core.database import get_db
from ....core.security import verify_password, create_access_token, get_password_hash
from ....core.password_validator import validate_password_strength
from ....core.rate_limit import limiter, get_rate_limit
from ....models.user import User
from ....schemas.user import UserCreate, UserResponse, Token, UserLogin
from ....services.subscription_service import get_or_create_subscription

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(get_rate_limit("register"))
async def register(request: Request, user_data: UserCreate, db: Session = Depends(get_db)):
    """
    用户注册

    **功能说明**:
    - 验证邮箱格式和密码强度
    - 检查邮箱是否已被注册
    - 创建用户和免费订阅（赠送注册积分）

    **错误响应**:
    - `400`: 邮箱已被注册或密码强度不足
    - `422`: 请求参数验证失败
    - `429`: 请求过于频繁（速率限制）
    """
    existing_user = db.query(User).filter(User.email == user_data.email).first()
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="邮箱已被注册"
        )

    is_valid, error_message = validate_password_strength(user_data.password)
    if not is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=error_message
        )

    user = User(
        email=user_data.email,
        full_name=user_data.full_name,
        password_hash=get_password_hash(user_data.password),
        user_type="user",
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    get_or_create_subscription(db, user)
    logger.info(f"新用户注册: {user.email}")
    return user

@router.post("/login", response_model=Token)
@limiter.limit(get_rate_limit("login"))
async def login(
    request: Request,
    body: UserLogin | None = Body(default=None, description="登录信息（JSON格式）"),
    db: Session = Depends(get_db)
):
    """
    用户登录

    支持 JSON 和表单（OAuth2 username/password）两种格式。

    **错误响应**:
    - `401`: 邮箱或密码错误
    - `400`: 账户已被禁用
    - `422`: 缺少邮箱或密码
    - `429`: 请求过于频繁（速率限制）
    """
    email = body.email if body is not None else None
    password = body.password if body is not None else None

    # 表单登录
    if not email or not password:
        content_type = request.headers.get("content-type", "")
        if "form" in content_type:
            form = await request.form()
            email = form.get("username") or form.get("email")
            password = form.get("password")

    if not email or not password:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="缺少邮箱或密码")

    if len(password.encode("utf-8")) > 72:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="密码过长，最大72字符")

    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="邮箱或密码错误",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="账户已被禁用，请联系管理员！"
        )

    user.last_login = func.now()
    db.commit()
    db.refresh(user)

    access_token = create_access_token(data={"sub": user.email})
    return {
        "access_token": access_token,
        "token_type": "bearer",
        "user": user
    }
