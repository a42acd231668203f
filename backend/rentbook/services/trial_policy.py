"""トライアル期間の計算 (純粋関数)

日時はDBに合わせてタイムゾーンなしUTCで扱う。
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from rentbook.core.config import settings
from rentbook.services.plan_registry import get_plan_config


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_trial_enabled() -> bool:
    return settings.TRIAL_ENABLED


def get_trial_duration() -> int:
    return settings.TRIAL_DURATION_DAYS


def get_default_trial_plan() -> str:
    # 未定義プランなら InvalidPlanError
    return get_plan_config(settings.TRIAL_DEFAULT_PLAN).id


def calculate_trial_end_date(start: Optional[datetime] = None) -> datetime:
    start = start or utcnow()
    return start + timedelta(days=get_trial_duration())


def is_trial_expired(trial_ends_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """trial_ends_at が None なら期限切れにはならない"""
    if trial_ends_at is None:
        return False
    return (now or utcnow()) > trial_ends_at


def days_remaining(trial_ends_at: Optional[datetime], now: Optional[datetime] = None) -> int:
    """残り日数 (切り上げ、0未満にはしない)"""
    if trial_ends_at is None:
        return 0
    seconds = (trial_ends_at - (now or utcnow())).total_seconds()
    return max(0, math.ceil(seconds / 86400))
