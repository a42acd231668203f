"""リソース上限の判定と強制

判定は毎回DBから使用量を集計する (キャッシュしない)。
判定と作成の間の競合を防ぐには limited_operation() を使う。
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from rentbook.core.exceptions import (
    SubscriptionNotFoundError,
    TrialExpiredError,
    InactiveSubscriptionError,
    ResourceLimitError,
)
from rentbook.core.logging import get_logger, log_event
from rentbook.models.subscription import Subscription, USABLE_STATUSES
from rentbook.schemas.billing import ResourceLimitCheck, ResourceUsageAnalytics, UpgradeRecommendation
from rentbook.services import trial_policy
from rentbook.services.plan_registry import get_resource_limit, get_next_plan, soft_limit_status
from rentbook.services.usage_strategies import calculate_resource_usage, get_registered_resource_types

logger = get_logger(__name__)

REASON_NO_SUBSCRIPTION = "no subscription"
REASON_TRIAL_EXPIRED = "trial expired"
REASON_INACTIVE = "subscription inactive"
REASON_LIMIT_REACHED = "resource limit reached"


def _denial_reason(status: str, is_at_limit: bool, trial_expired: bool) -> Optional[str]:
    # 期限切れはまだDBに反映されていない場合があるため最優先
    if trial_expired:
        return REASON_TRIAL_EXPIRED
    if status not in USABLE_STATUSES:
        return REASON_INACTIVE
    if is_at_limit:
        return REASON_LIMIT_REACHED
    return None


def _evaluate(
    db: Session,
    sub: Optional[Subscription],
    account_id: int,
    resource_type: str,
    now: Optional[datetime] = None,
) -> ResourceLimitCheck:
    if sub is None:
        # 全アカウントに購読行がある前提。ここに来るのはデータ不整合
        logger.warning(f"上限判定: 購読が見つかりません account_id={account_id}, resource={resource_type}")
        return ResourceLimitCheck(
            allowed=False,
            current_usage=0,
            limit=0,
            remaining=0,
            is_at_limit=True,
            subscription_status=None,
            is_trial_expired=False,
            reason=REASON_NO_SUBSCRIPTION,
        )

    current_usage = calculate_resource_usage(db, account_id, resource_type)
    limit = get_resource_limit(sub.plan, resource_type)
    is_at_limit = current_usage >= limit
    trial_expired = trial_policy.is_trial_expired(sub.trial_ends_at, now)
    reason = _denial_reason(sub.status, is_at_limit, trial_expired)
    allowed = reason is None

    log_event(
        logger, "リソース上限チェック",
        account_id=account_id,
        resource_type=resource_type,
        current_usage=current_usage,
        limit=limit,
        allowed=allowed,
        usage_percentage=round(current_usage / limit * 100) if limit > 0 else 0,
    )

    return ResourceLimitCheck(
        allowed=allowed,
        current_usage=current_usage,
        limit=limit,
        remaining=max(0, limit - current_usage),
        is_at_limit=is_at_limit,
        subscription_status=sub.status,
        is_trial_expired=trial_expired,
        reason=reason,
    )


def check_resource_limit(
    db: Session, account_id: int, resource_type: str, now: Optional[datetime] = None,
) -> ResourceLimitCheck:
    """読み取りのみ。拒否理由は trial expired > subscription inactive > resource limit reached"""
    sub = db.query(Subscription).filter(Subscription.account_id == account_id).first()
    return _evaluate(db, sub, account_id, resource_type, now)


def _raise_for_denial(check: ResourceLimitCheck, sub: Optional[Subscription], account_id: int, resource_type: str):
    if check.allowed:
        return
    if sub is None:
        raise SubscriptionNotFoundError(account_id)
    if check.reason == REASON_TRIAL_EXPIRED:
        raise TrialExpiredError(sub.trial_ends_at)
    if check.reason == REASON_INACTIVE:
        raise InactiveSubscriptionError(sub.status)
    raise ResourceLimitError(resource_type, check.current_usage, check.limit, sub.plan)


def enforce_resource_limit(
    db: Session, account_id: int, resource_type: str, now: Optional[datetime] = None,
) -> ResourceLimitCheck:
    """拒否理由に対応する型付きエラーを送出する (HTTP層はcodeでUIを出し分ける)"""
    sub = db.query(Subscription).filter(Subscription.account_id == account_id).first()
    check = _evaluate(db, sub, account_id, resource_type, now)
    _raise_for_denial(check, sub, account_id, resource_type)
    return check


@contextmanager
def limited_operation(db: Session, account_id: int, resource_type: str) -> Iterator[ResourceLimitCheck]:
    """上限判定と作成を1トランザクションで行う

    購読行を SELECT ... FOR UPDATE でロックしてから使用量を数えるため、
    同一アカウントの並行リクエストは直列化される。ブロック内で追加したレコードは
    ブロック終了時にまとめてcommitされ、例外時はrollbackされる。

        with limited_operation(db, account_id, "properties"):
            db.add(Property(account_id=account_id, name=name))
    """
    try:
        sub = db.query(Subscription).filter(
            Subscription.account_id == account_id
        ).with_for_update().first()
        check = _evaluate(db, sub, account_id, resource_type)
        _raise_for_denial(check, sub, account_id, resource_type)
        yield check
        db.commit()
    except Exception:
        db.rollback()
        raise


# =========================================================
# 使用状況・アップグレード提案 (ソフトリミット)
# =========================================================

def _usage_percentage(check: ResourceLimitCheck) -> float:
    return check.current_usage / check.limit * 100 if check.limit > 0 else 0


def get_resource_usage_analytics(db: Session, account_id: int, resource_type: str) -> ResourceUsageAnalytics:
    check = check_resource_limit(db, account_id, resource_type)
    soft = soft_limit_status(check.current_usage, check.limit)

    recommended_plan = None
    if soft["critical"]:
        sub = db.query(Subscription).filter(Subscription.account_id == account_id).first()
        recommended_plan = get_next_plan(sub.plan if sub else "STARTER")

    return ResourceUsageAnalytics(
        resource_type=resource_type,
        current_usage=check.current_usage,
        limit=check.limit,
        usage_percentage=_usage_percentage(check),
        should_upgrade=soft["warning"],
        recommended_plan=recommended_plan,
    )


def get_upgrade_recommendation(
    db: Session, account_id: int, resource_type: Optional[str] = None,
) -> UpgradeRecommendation:
    sub = db.query(Subscription).filter(Subscription.account_id == account_id).first()
    if not sub:
        return UpgradeRecommendation(
            should_upgrade=False,
            reason="購読が見つかりません",
            recommended_plan=None,
            current_usage=0,
            current_limit=0,
            usage_percentage=0,
        )

    resource_type = resource_type or "properties"
    check = check_resource_limit(db, account_id, resource_type)
    percentage = _usage_percentage(check)
    soft = soft_limit_status(check.current_usage, check.limit)
    usage_text = f"{resource_type}: {check.current_usage} / {check.limit}"

    if soft["warning"]:
        return UpgradeRecommendation(
            should_upgrade=True,
            reason=f"{usage_text} ({round(percentage)}%)",
            recommended_plan=get_next_plan(sub.plan),
            current_usage=check.current_usage,
            current_limit=check.limit,
            usage_percentage=percentage,
        )

    return UpgradeRecommendation(
        should_upgrade=False,
        reason=usage_text,
        recommended_plan=None,
        current_usage=check.current_usage,
        current_limit=check.limit,
        usage_percentage=percentage,
    )


def get_all_resource_usage(db: Session, account_id: int) -> dict[str, ResourceUsageAnalytics]:
    return {
        resource_type: get_resource_usage_analytics(db, account_id, resource_type)
        for resource_type in get_registered_resource_types()
    }
