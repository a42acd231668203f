"""リソース使用量の集計戦略

リソース種別ごとに count / sum / custom のいずれかを登録する。
新しいリソース種別は register_usage_strategy() で追加でき、上限判定側は変更不要。
"""
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from rentbook.core.redis import get_sync_redis
from rentbook.core.logging import get_logger
from rentbook.models.property import Property
from rentbook.models.transaction import Transaction
from rentbook.models.document import Document

logger = get_logger(__name__)

API_CALLS_KEY_PREFIX = "api_calls:"
API_CALLS_KEY_TTL = 40 * 24 * 3600  # 月跨ぎ後も少し残す


class CountStrategy:
    """論理削除されていないレコード数"""

    kind = "count"

    def __init__(self, model):
        self.model = model

    def __call__(self, db: Session, account_id: int) -> float:
        return db.query(func.count(self.model.id)).filter(
            self.model.account_id == account_id,
            self.model.deleted_at.is_(None),
        ).scalar() or 0


class SumStrategy:
    """論理削除されていないレコードの数値フィールド合計 (divisorで単位換算)"""

    kind = "sum"

    def __init__(self, model, field: str, divisor: int = 1):
        self.model = model
        self.field = field
        self.divisor = divisor

    def __call__(self, db: Session, account_id: int) -> float:
        column = getattr(self.model, self.field)
        total = db.query(func.coalesce(func.sum(column), 0)).filter(
            self.model.account_id == account_id,
            self.model.deleted_at.is_(None),
        ).scalar() or 0
        if self.divisor == 1:
            return total
        # 丸めると上限直前の使用量が上限に達したと判定されるため、丸めない
        return float(total) / self.divisor


class CustomStrategy:
    """単純なクエリで表せない使用量 (外部カウンタ等)"""

    kind = "custom"

    def __init__(self, func: Callable[[Session, int], float]):
        self.func = func

    def __call__(self, db: Session, account_id: int) -> float:
        return self.func(db, account_id)


def _api_calls_key(account_id: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{API_CALLS_KEY_PREFIX}{account_id}:{now.strftime('%Y%m')}"


def record_api_call(account_id: int, redis_client=None) -> int:
    """当月のAPI呼び出し回数をインクリメント"""
    r = redis_client or get_sync_redis()
    key = _api_calls_key(account_id)
    count = r.incr(key)
    if count == 1:
        r.expire(key, API_CALLS_KEY_TTL)
    return count


def count_api_calls(db: Session, account_id: int, redis_client=None) -> int:
    r = redis_client or get_sync_redis()
    value = r.get(_api_calls_key(account_id))
    return int(value) if value else 0


def count_team_members(db: Session, account_id: int) -> int:
    # チームメンバー機能はまだ無いのでオーナー1名のみ
    return 1


_STRATEGIES: dict = {
    "properties": CountStrategy(Property),
    "transactions": CountStrategy(Transaction),
    "storage": SumStrategy(Document, "size_bytes", divisor=1024 * 1024),  # MB
    "api_calls": CustomStrategy(count_api_calls),
    "team_members": CustomStrategy(count_team_members),
}


def register_usage_strategy(resource_type: str, strategy) -> None:
    """集計戦略を登録 (既存の種別は上書き)"""
    _STRATEGIES[resource_type] = strategy
    logger.info(f"使用量集計戦略を登録: {resource_type} ({getattr(strategy, 'kind', 'custom')})")


def get_usage_strategy(resource_type: str):
    strategy = _STRATEGIES.get(resource_type)
    if strategy is None:
        raise KeyError(f"使用量集計戦略が未登録です: {resource_type}")
    return strategy


def calculate_resource_usage(db: Session, account_id: int, resource_type: str) -> float:
    return get_usage_strategy(resource_type)(db, account_id)


def get_registered_resource_types() -> list[str]:
    return list(_STRATEGIES)
