from fastapi import APIRouter
from .endpoints import auth, users, cv_jobs, analysis, recommendations, chat, media, verification, admin, monitoring

api_router = APIRouter()

# ========== 用户侧API ==========
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(cv_jobs.router, prefix="/cv-jobs", tags=["cv-jobs"])
api_router.include_router(analysis.router, prefix="/cv-jobs", tags=["analysis"])
api_router.include_router(recommendations.router, prefix="/cv-jobs", tags=["recommendations"])
api_router.include_router(chat.router, prefix="/cv-jobs", tags=["chat"])
api_router.include_router(media.router, prefix="/cv-jobs", tags=["media"])

# ========== 管理后台API（需要管理员权限） ==========
api_router.include_router(verification.router, prefix="/verification", tags=["verification"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
api_router.include_router(monitoring.router, prefix="/monitoring", tags=["monitoring"])
