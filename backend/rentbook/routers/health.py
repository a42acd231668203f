from fastapi import APIRouter
from rentbook.core.database import check_db_connection
from rentbook.core.redis import check_redis_connection
from rentbook.services.plan_registry import get_all_plan_configs

router = APIRouter()


@router.get("/health")
@router.get("/api/health")
async def health_check():
    """ヘルスチェック (DB・Redis・プラン定義)"""
    db_ok = check_db_connection()
    redis_ok = await check_redis_connection()

    status = "ok" if (db_ok and redis_ok) else "degraded"

    return {
        "status": status,
        "db": "connected" if db_ok else "disconnected",
        "redis": "connected" if redis_ok else "disconnected",
        "plans": len(get_all_plan_configs()),
    }
