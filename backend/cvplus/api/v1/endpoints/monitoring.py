"""
监控和指标端点
"""
from fastapi import APIRouter, Depends
from ....core.monitoring import get_metrics, get_average_response_time, get_error_rate
from ....core.permissions import require_admin
from ....models.user import User
from ....services import resilience
from ....services.video_providers import PROVIDER_CLASSES, provider_health

router = APIRouter()


@router.get("/metrics")
async def get_system_metrics(current_user: User = Depends(require_admin)):
    """
    获取系统指标

    包括API请求统计、错误统计、LLM调用统计、推荐缓存命中率、
    视频服务调用统计、熔断器状态和视频服务健康度。

    **权限要求**: 管理员
    """
    metrics = get_metrics()
    data = metrics["metrics"]

    statistics = {
        "average_response_time": get_average_response_time(),
        "error_rate": get_error_rate(),
    }

    llm_total = data["llm_calls_total"]
    if llm_total > 0:
        llm_success = sum(stats["success"] for stats in data["llm_calls_by_provider"].values())
        statistics["llm_success_rate"] = llm_success / llm_total
    else:
        statistics["llm_success_rate"] = 0.0

    cache = data["recommendation_cache"]
    lookups = cache["hits"] + cache["misses"]
    statistics["recommendation_cache_hit_rate"] = cache["hits"] / lookups if lookups else 0.0

    return {
        "metrics": data,
        "statistics": statistics,
        "circuit_breakers": resilience.get_metrics(),
        "video_provider_health": {cls.name: provider_health(cls.name) for cls in PROVIDER_CLASSES},
        "timestamp": metrics["timestamp"],
    }
