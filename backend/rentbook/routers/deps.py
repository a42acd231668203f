"""共通依存関数: 認証済みアカウントID・リソース上限"""
from typing import Callable
import redis
from fastapi import Request, HTTPException, Depends
from sqlalchemy.orm import Session

from rentbook.core.database import get_db
from rentbook.core.redis import get_redis
from rentbook.core.session import get_session
from rentbook.core.logging import get_logger
from rentbook.models.account import Account
from rentbook.schemas.billing import ResourceLimitCheck
from rentbook.services import limits_service
from rentbook.services.usage_strategies import record_api_call

logger = get_logger(__name__)


async def get_current_account_id(
    request: Request,
    db: Session = Depends(get_db),
    r=Depends(get_redis),
) -> int:
    """Cookie → Redis → DB でアカウントIDを取得。未ログインなら401"""
    session_id = request.cookies.get("session_id")
    session_data = await get_session(r, session_id) if session_id else None
    if not session_data:
        raise HTTPException(status_code=401, detail="ログインが必要です")

    account_id = int(session_data.get("account_id", 0))
    account = db.query(Account).filter(Account.id == account_id, Account.is_active == True).first()
    if not account:
        raise HTTPException(status_code=401, detail="ログインが必要です")
    return account.id


async def track_api_call(account_id: int = Depends(get_current_account_id)) -> None:
    """認証済みAPI呼び出しを当月カウンタに加算 (api_calls の使用量)"""
    try:
        record_api_call(account_id)
    except redis.RedisError as e:
        # 計測失敗でリクエスト自体は止めない
        logger.warning(f"APIコール数の記録に失敗: account_id={account_id}, error={e}")


def require_resource(resource_type: str) -> Callable:
    """作成系エンドポイント用: 上限を超えていれば型付きエラー (403など) で拒否する

        @router.post("/properties")
        async def create_property(check=Depends(require_resource("properties"))): ...
    """

    async def _dependency(
        account_id: int = Depends(get_current_account_id),
        db: Session = Depends(get_db),
    ) -> ResourceLimitCheck:
        return limits_service.enforce_resource_limit(db, account_id, resource_type)

    return _dependency
