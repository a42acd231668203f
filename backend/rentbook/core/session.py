"""セッション参照 (Cookie session_id → Redis hash session:<id>)

セッションの作成・破棄はログイン側の責務。ここでは account_id を読むだけ。
"""
import time
from typing import Optional
import redis.asyncio as aioredis
from rentbook.core.config import settings

SESSION_PREFIX = "session:"
SESSION_TTL = settings.SESSION_TIMEOUT_MINUTES * 60  # 秒


async def get_session(r: aioredis.Redis, session_id: str) -> Optional[dict]:
    """セッション情報を取得。アクセスごとにTTL更新"""
    if not session_id:
        return None
    key = f"{SESSION_PREFIX}{session_id}"
    data = await r.hgetall(key)
    if not data:
        return None
    # アイドルタイムアウトをリセット
    await r.expire(key, SESSION_TTL)
    await r.hset(key, "last_accessed", str(int(time.time())))
    return data
