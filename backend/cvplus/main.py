from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from redis.exceptions import RedisError
import os
import traceback
from .core.config import settings
from .core.errors import CVPlusError
from .core.responses import APIResponse
from .api.v1.api import api_router
from .core.database import SessionLocal
from .core.security import get_password_hash
from .core.rate_limit import setup_rate_limit
from .core.monitoring import monitoring_middleware, record_error
from .models.user import User
from .services.cache_service import cache_service
from .services.llm_service import LLMError
from .services.subscription_service import get_or_create_subscription

# 配置日志：使用结构化日志或普通日志
from .core.structured_logging import setup_logging, get_logger

USE_STRUCTURED_LOGGING = os.getenv("USE_STRUCTURED_LOGGING", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if settings.debug else "WARNING")
ENABLE_FILE_LOGGING = os.getenv("ENABLE_FILE_LOGGING", "false").lower() == "true"
LOG_DIR = os.getenv("LOG_DIR", "logs")

setup_logging(
    use_structured=USE_STRUCTURED_LOGGING,
    log_level=LOG_LEVEL,
    enable_file_logging=ENABLE_FILE_LOGGING,
    log_dir=LOG_DIR
)

logger = get_logger(__name__)

app = FastAPI(
    title=settings.project_name,
    version=settings.version,
    debug=settings.debug
)

# CORS中间件 - 生产环境限制方法和头部
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"] if not settings.debug else ["*"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"] if not settings.debug else ["*"],
)

# 设置速率限制
setup_rate_limit(app)

# 添加监控中间件
app.middleware("http")(monitoring_middleware)

# 包含API路由
app.include_router(api_router, prefix="/api/v1")

LLM_ERROR_CODES = {
    401: "LLM_AUTH_ERROR",
    429: "LLM_RATE_LIMIT",
    400: "LLM_BAD_REQUEST",
    502: "LLM_SERVER_ERROR",
    503: "LLM_NETWORK_ERROR",
    504: "LLM_NETWORK_ERROR",
}

# 业务错误处理
@app.exception_handler(CVPlusError)
async def cvplus_exception_handler(request: Request, exc: CVPlusError):
    """CVPlusError 统一转换为 APIResponse.error"""
    if exc.status_code >= 500:
        logger.error(f"业务错误: {exc.code} - {exc.message} ({request.url})")
    else:
        logger.info(f"业务错误: {exc.status_code} {exc.code} - {exc.message}")

    message = exc.message
    if not exc.is_operational and not settings.debug:
        message = "服务器内部错误"

    headers = None
    if exc.details and exc.details.get("retry_after"):
        headers = {"Retry-After": str(exc.details["retry_after"])}
    return JSONResponse(
        status_code=exc.status_code,
        content=APIResponse.error(code=exc.code, message=message, details=exc.details),
        headers=headers,
    )

# LLM调用错误处理
@app.exception_handler(LLMError)
async def llm_exception_handler(request: Request, exc: LLMError):
    """LLM服务错误，鉴权类错误不透传给客户端"""
    record_error("llm_error", str(exc))
    logger.warning(f"[LLM] 请求失败: {type(exc).__name__}: {exc}")
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR if exc.status_code in (401, 403) else exc.status_code
    return JSONResponse(
        status_code=status_code,
        content=APIResponse.error(
            code=LLM_ERROR_CODES.get(exc.status_code, "LLM_ERROR"),
            message=str(exc) if settings.debug or status_code != 500 else "AI服务调用失败"
        ),
    )

# 请求验证错误处理
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """处理请求参数验证错误"""
    error_details = []
    for error in exc.errors():
        error_details.append({
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "验证失败"),
            "type": error.get("type", "validation_error")
        })

    logger.warning(f"请求验证失败: {request.url} - {error_details}")

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=APIResponse.error(
            code=422,
            message="请求参数验证失败",
            details={"errors": error_details}
        ),
    )

# HTTP异常处理
@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """处理 HTTP 异常"""
    logger.info(f"HTTP异常: {exc.status_code} - {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content=APIResponse.error(
            code=exc.status_code,
            message=exc.detail
        ),
        headers=getattr(exc, "headers", None),
    )

# 全局异常处理（放在最后，作为兜底）
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """处理未捕获的异常"""
    logger.error(
        f"未处理的异常: {type(exc).__name__}: {str(exc)}\n"
        f"请求路径: {request.url}\n"
        f"堆栈跟踪:\n{traceback.format_exc()}"
    )

    # 在生产环境中，不返回详细的错误信息
    error_message = "服务器内部错误"
    if settings.debug:
        error_message = f"{type(exc).__name__}: {str(exc)}"

    return JSONResponse(
        status_code=500,
        content=APIResponse.error(
            code=500,
            message=error_message
        ),
    )

@app.get("/")
async def root():
    return {
        "message": "CVPlus API",
        "version": settings.version
    }

@app.get("/health")
async def health_check():
    """
    健康检查端点

    检查数据库和Redis连接。Redis未配置不影响健康状态（缓存降级为直接计算）。
    """
    health_status = {
        "status": "healthy",
        "version": settings.version
    }

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        health_status["database"] = "connected"
    except SQLAlchemyError as e:
        health_status["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"
    finally:
        db.close()

    try:
        if cache_service.redis_client:
            await cache_service.redis_client.ping()
            health_status["redis"] = "connected"
        else:
            health_status["redis"] = "not_configured"
    except RedisError as e:
        health_status["redis"] = f"error: {str(e)}"
        health_status["status"] = "degraded"

    status_code = 503 if health_status["status"] == "unhealthy" else 200
    return JSONResponse(content=health_status, status_code=status_code)

@app.on_event("startup")
async def startup_event():
    """应用启动事件"""
    await cache_service.connect()

    # 在开发/调试下创建演示账号
    if settings.debug:
        seed_demo_user()

@app.on_event("shutdown")
async def shutdown_event():
    """应用关闭事件"""
    await cache_service.close()

def seed_demo_user():
    """创建演示账号（免费订阅）"""
    db = SessionLocal()
    try:
        email = "demo@example.com"
        user = db.query(User).filter(User.email == email).first()
        if not user:
            user = User(
                email=email,
                password_hash=get_password_hash("demo1234"),
                full_name="Demo User",
                user_type="user",
                is_active=True,
                is_verified=True,
            )
            db.add(user)
            db.commit()
            db.refresh(user)
        get_or_create_subscription(db, user)
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"创建演示账号失败（数据表可能尚未迁移）: {e}")
    finally:
        db.close()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
