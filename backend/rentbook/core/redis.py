"""Redis接続

- 非同期: FastAPIのセッション参照
- 同期: 使用量集計 (APIコール数カウンタ)。集計戦略は同期関数のため
"""
import redis.asyncio as aioredis
import redis as sync_redis
from rentbook.core.config import settings

redis_pool = aioredis.ConnectionPool.from_url(
    settings.REDIS_URL,
    max_connections=20,
    decode_responses=True,
)

metering_pool = sync_redis.ConnectionPool.from_url(
    settings.REDIS_URL,
    max_connections=5,
    decode_responses=True,
    socket_timeout=2,
)


async def get_redis() -> aioredis.Redis:
    """FastAPI依存関数: 非同期Redisクライアント取得"""
    return aioredis.Redis(connection_pool=redis_pool)


def get_sync_redis() -> sync_redis.Redis:
    """使用量カウンタ用の同期クライアント"""
    return sync_redis.Redis(connection_pool=metering_pool)


async def close_redis():
    """アプリ終了時にプールを解放"""
    await redis_pool.disconnect()
    metering_pool.disconnect()


async def check_redis_connection() -> bool:
    try:
        r = await get_redis()
        return bool(await r.ping())
    except sync_redis.RedisError:
        return False
