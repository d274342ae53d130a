"""
推荐结果缓存服务
使用Redis存储推荐生成结果，Redis不可用时读取一律未命中、写入为空操作
"""
import hashlib
import json
import logging
import time
from typing import Optional, Dict, Any
import redis.asyncio as aioredis
from redis.asyncio import ConnectionPool
from redis.exceptions import RedisError
from ..core.config import settings
from ..core.constants import REDIS_MAX_CONNECTIONS

logger = logging.getLogger(__name__)

class CacheService:
    """缓存服务类"""

    def __init__(self):
        self.redis_client: Optional[aioredis.Redis] = None
        self.connection_pool: Optional[ConnectionPool] = None
        self.cache_prefix = "cvplus:recs:"
        self.cache_ttl = settings.recommendation_cache_ttl

    async def connect(self):
        """连接Redis（使用连接池）"""
        if self.redis_client is None:
            try:
                self.connection_pool = ConnectionPool.from_url(
                    settings.redis_url,
                    max_connections=REDIS_MAX_CONNECTIONS,
                    encoding="utf-8",
                    decode_responses=True
                )
                self.redis_client = aioredis.Redis(connection_pool=self.connection_pool)
                logger.info("Redis连接池创建成功")
            except (RedisError, ValueError) as e:
                logger.warning(f"Redis连接失败，缓存将不可用: {e}")
                self.redis_client = None
                self.connection_pool = None

    async def close(self):
        """关闭Redis连接和连接池"""
        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None
        if self.connection_pool:
            await self.connection_pool.disconnect()
            self.connection_pool = None

    def build_cache_key(self, request_key: str) -> str:
        """请求键可能很长，使用 sha1 摘要作为缓存键"""
        digest = hashlib.sha1(request_key.encode("utf-8")).hexdigest()
        return f"{self.cache_prefix}{digest}"

    async def get_recommendations(self, request_key: str) -> Optional[Dict[str, Any]]:
        """
        获取缓存的推荐结果
        返回: {"payload": ..., "cached_at": 时间戳}，不存在则返回None
        """
        try:
            await self.connect()
            if self.redis_client is None:
                return None
            cached = await self.redis_client.get(self.build_cache_key(request_key))
            if cached:
                logger.info(f"推荐缓存命中: {request_key}")
                return json.loads(cached)
            return None
        except (RedisError, OSError, ValueError) as e:
            logger.warning(f"获取推荐缓存失败: {e}")
            return None

    async def set_recommendations(self, request_key: str, payload: Dict[str, Any]) -> bool:
        """写入推荐结果缓存"""
        try:
            await self.connect()
            if self.redis_client is None:
                return False
            data = json.dumps({"payload": payload, "cached_at": time.time()}, ensure_ascii=False, default=str)
            await self.redis_client.setex(self.build_cache_key(request_key), self.cache_ttl, data)
            logger.info(f"推荐缓存已设置: {request_key} (TTL: {self.cache_ttl}秒)")
            return True
        except (RedisError, OSError) as e:
            logger.warning(f"设置推荐缓存失败: {e}")
            return False


# 全局缓存服务实例
cache_service = CacheService()
