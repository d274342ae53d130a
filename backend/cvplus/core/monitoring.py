"""
监控和指标收集
"""
import time
import logging
from typing import Dict, Any, List
from datetime import datetime
from fastapi import Request

logger = logging.getLogger(__name__)

# 响应时间只保留最近的记录
MAX_TIMING_SAMPLES = 1000


def _empty_metrics() -> Dict[str, Any]:
    return {
        "api_requests_total": 0,
        "api_requests_by_endpoint": {},
        "api_requests_by_status": {},
        "api_response_times": [],
        "errors_total": 0,
        "errors_by_type": {},
        "llm_calls_total": 0,
        "llm_calls_by_provider": {},
        "llm_response_times": [],
        "recommendation_cache": {"hits": 0, "misses": 0},
        "video_calls_by_provider": {},
    }


# 指标存储（进程内）
_metrics = _empty_metrics()


def get_metrics() -> Dict[str, Any]:
    """获取所有指标"""
    return {
        "metrics": _metrics.copy(),
        "timestamp": datetime.utcnow().isoformat()
    }


def reset_metrics():
    """重置指标（用于测试）"""
    global _metrics
    _metrics = _empty_metrics()


def _append_sample(samples: List[float], value: float):
    samples.append(value)
    if len(samples) > MAX_TIMING_SAMPLES:
        del samples[:-MAX_TIMING_SAMPLES]


def _record_provider_call(bucket: Dict[str, Dict[str, int]], provider: str, success: bool):
    stats = bucket.setdefault(provider, {"total": 0, "success": 0, "failed": 0})
    stats["total"] += 1
    stats["success" if success else "failed"] += 1


def record_api_request(endpoint: str, status_code: int, response_time: float):
    """记录API请求指标"""
    _metrics["api_requests_total"] += 1

    by_endpoint = _metrics["api_requests_by_endpoint"]
    by_endpoint[endpoint] = by_endpoint.get(endpoint, 0) + 1

    status_key = f"{status_code // 100}xx"
    by_status = _metrics["api_requests_by_status"]
    by_status[status_key] = by_status.get(status_key, 0) + 1

    _append_sample(_metrics["api_response_times"], response_time)


def record_error(error_type: str, error_message: str = ""):
    """记录错误指标"""
    _metrics["errors_total"] += 1
    by_type = _metrics["errors_by_type"]
    by_type[error_type] = by_type.get(error_type, 0) + 1

    logger.error(f"[监控] 错误记录: {error_type} - {error_message}")


def record_llm_call(provider: str, response_time: float, success: bool = True):
    """记录LLM调用指标"""
    _metrics["llm_calls_total"] += 1
    _record_provider_call(_metrics["llm_calls_by_provider"], provider, success)
    _append_sample(_metrics["llm_response_times"], response_time)


def record_video_call(provider: str, success: bool = True):
    """记录视频生成服务调用"""
    _record_provider_call(_metrics["video_calls_by_provider"], provider, success)


def record_cache_access(hit: bool):
    """记录推荐结果缓存命中情况"""
    _metrics["recommendation_cache"]["hits" if hit else "misses"] += 1


def get_average_response_time() -> float:
    """获取平均响应时间"""
    times = _metrics["api_response_times"]
    if not times:
        return 0.0
    return sum(times) / len(times)


def get_error_rate() -> float:
    """获取错误率"""
    if _metrics["api_requests_total"] == 0:
        return 0.0
    return _metrics["errors_total"] / _metrics["api_requests_total"]


async def monitoring_middleware(request: Request, call_next):
    """监控中间件：记录请求指标"""
    start_time = time.time()
    endpoint = request.url.path

    try:
        response = await call_next(request)
    except Exception as e:
        record_api_request(endpoint, 500, time.time() - start_time)
        record_error("exception", f"{type(e).__name__}: {str(e)}")
        raise

    record_api_request(endpoint, response.status_code, time.time() - start_time)
    if response.status_code >= 400:
        record_error(f"http_{response.status_code}", f"{request.method} {endpoint}")
    return response
