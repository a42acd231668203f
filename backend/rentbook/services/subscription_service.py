"""購読ライフサイクル管理

Subscription行 (アカウントごとに1行) の作成・状態遷移を担う。
状態遷移はAPI呼び出しかWebhookが起点。例外は読み取り時のトライアル期限切れ検出のみ。
"""
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from rentbook.core.exceptions import (
    SubscriptionNotFoundError,
    InactiveSubscriptionError,
    WebhookProcessingError,
)
from rentbook.core.logging import get_logger, log_event
from rentbook.models.subscription import Subscription
from rentbook.schemas.billing import ProviderSubscriptionSnapshot
from rentbook.services import trial_policy
from rentbook.services.plan_registry import get_plan_config, get_plan_limits

logger = get_logger(__name__)

# Stripeのステータス → 内部ステータス
PROVIDER_STATUS_MAP = {
    "active": "ACTIVE",
    "trialing": "ACTIVE",  # Stripe側トライアル中も決済手段登録済みの有料購読として扱う
    "past_due": "PAST_DUE",
    "canceled": "CANCELED",
    "unpaid": "CANCELED",
    "incomplete": "UNPAID",
    "incomplete_expired": "UNPAID",
}


def get_subscription(db: Session, account_id: int) -> Optional[Subscription]:
    return db.query(Subscription).filter(Subscription.account_id == account_id).first()


def _require_subscription(db: Session, account_id: int) -> Subscription:
    sub = get_subscription(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    return sub


def _apply_plan(sub: Subscription, plan: str) -> None:
    """planと上限スナップショットは必ず同時に書き込む"""
    get_plan_config(plan)
    sub.plan = plan
    sub.resource_limits = get_plan_limits(plan)


def create_subscription(db: Session, account_id: int, commit: bool = True) -> Subscription:
    """アカウント作成時に1回だけ呼ぶ。2回目は一意制約違反 (IntegrityError) になる"""
    trial_enabled = trial_policy.is_trial_enabled()
    plan = trial_policy.get_default_trial_plan()

    sub = Subscription(
        account_id=account_id,
        status="TRIAL" if trial_enabled else "UNPAID",
        trial_ends_at=trial_policy.calculate_trial_end_date() if trial_enabled else None,
        cancel_at_period_end=False,
    )
    _apply_plan(sub, plan)
    db.add(sub)
    if commit:
        db.commit()
        db.refresh(sub)
    else:
        db.flush()

    log_event(
        logger, "購読イベント: subscription_created",
        account_id=account_id, plan=plan, status=sub.status,
        trial_ends_at=sub.trial_ends_at.isoformat() if sub.trial_ends_at else None,
    )
    return sub


def update_subscription_plan(db: Session, account_id: int, plan: str) -> Subscription:
    """プラン変更 (上限も同じ更新で再計算)"""
    sub = _require_subscription(db, account_id)
    _apply_plan(sub, plan)
    db.commit()
    log_event(logger, "購読イベント: subscription_plan_updated", account_id=account_id, plan=plan)
    return sub


def update_subscription_status(db: Session, account_id: int, status: str) -> Subscription:
    sub = _require_subscription(db, account_id)
    old_status = sub.status
    sub.status = status
    db.commit()
    logger.info(f"購読ステータス更新: account_id={account_id}, {old_status} -> {status}")
    return sub


def cancel_subscription(db: Session, account_id: int, cancel_at_period_end: bool = True) -> Subscription:
    """解約。期間終了時解約ならフラグのみ立ててステータスは維持、即時ならCANCELED"""
    sub = _require_subscription(db, account_id)
    if cancel_at_period_end:
        # TRIALをACTIVEに昇格させないようステータスには触れない
        sub.cancel_at_period_end = True
    else:
        sub.status = "CANCELED"
        sub.cancel_at_period_end = False
        sub.provider_subscription_id = None
    db.commit()
    log_event(
        logger, "購読イベント: subscription_canceled",
        account_id=account_id, cancel_at_period_end=cancel_at_period_end,
    )
    return sub


def reactivate_subscription(db: Session, account_id: int) -> Subscription:
    sub = _require_subscription(db, account_id)
    sub.cancel_at_period_end = False
    sub.status = "ACTIVE"
    db.commit()
    log_event(logger, "購読イベント: subscription_reactivated", account_id=account_id)
    return sub


def set_provider_customer_id(db: Session, account_id: int, provider_customer_id: str) -> Subscription:
    sub = _require_subscription(db, account_id)
    sub.provider_customer_id = provider_customer_id
    db.commit()
    log_event(
        logger, "購読イベント: stripe_customer_linked",
        account_id=account_id, provider_customer_id=provider_customer_id,
    )
    return sub


# =========================================================
# Stripe照合
# =========================================================

def map_provider_status(provider_status: str) -> str:
    """未知のステータスはACTIVE扱いにせず処理失敗にする"""
    status = PROVIDER_STATUS_MAP.get(provider_status)
    if status is None:
        raise WebhookProcessingError(
            "subscription_update", f"未対応のStripeステータス: {provider_status}",
        )
    return status


def _is_stale_event(sub: Subscription, event_created: Optional[datetime]) -> bool:
    """適用済みイベントより古いイベントか (同時刻は再適用して良い)"""
    if event_created is None or sub.provider_event_at is None:
        return False
    return event_created < sub.provider_event_at


def _record_event(sub: Subscription, event_id: Optional[str], event_created: Optional[datetime]) -> None:
    if event_created is None:
        return
    sub.provider_event_id = event_id
    sub.provider_event_at = event_created


def update_subscription_from_provider(
    db: Session,
    account_id: int,
    snapshot: ProviderSubscriptionSnapshot,
    event_id: Optional[str] = None,
    event_created: Optional[datetime] = None,
) -> Subscription:
    """Stripeのスナップショットでローカル状態を上書きする (同じ入力なら何度呼んでも同じ結果)"""
    status = map_provider_status(snapshot.provider_status)
    sub = _require_subscription(db, account_id)

    if _is_stale_event(sub, event_created):
        logger.warning(
            f"古いStripeイベントをスキップ: account_id={account_id}, event_id={event_id}, "
            f"event_at={event_created}, applied_at={sub.provider_event_at}"
        )
        return sub

    _apply_plan(sub, snapshot.plan)
    sub.status = status
    if status == "CANCELED":
        sub.provider_subscription_id = None
        sub.cancel_at_period_end = False
    else:
        sub.provider_subscription_id = snapshot.provider_subscription_id
        sub.cancel_at_period_end = snapshot.cancel_at_period_end
    if snapshot.provider_customer_id:
        sub.provider_customer_id = snapshot.provider_customer_id
    if snapshot.billing_period:
        sub.billing_period = snapshot.billing_period
    sub.current_period_start = snapshot.current_period_start
    sub.current_period_end = snapshot.current_period_end
    # 有料期間が始まったらトライアル情報は不要
    sub.trial_ends_at = None
    _record_event(sub, event_id, event_created)
    db.commit()

    log_event(
        logger, "Stripeから購読を同期",
        account_id=account_id, plan=snapshot.plan, status=status,
        provider_status=snapshot.provider_status,
        provider_subscription_id=snapshot.provider_subscription_id,
    )
    return sub


def mark_canceled_from_provider(
    db: Session,
    account_id: int,
    event_id: Optional[str] = None,
    event_created: Optional[datetime] = None,
) -> Subscription:
    """Stripe側で購読が削除された"""
    sub = _require_subscription(db, account_id)
    if _is_stale_event(sub, event_created):
        logger.warning(f"古いStripeイベントをスキップ: account_id={account_id}, event_id={event_id}")
        return sub

    sub.status = "CANCELED"
    sub.provider_subscription_id = None
    sub.cancel_at_period_end = False
    _record_event(sub, event_id, event_created)
    db.commit()
    logger.info(f"購読終了 (Stripe): account_id={account_id}")
    return sub


def mark_past_due_from_provider(
    db: Session,
    account_id: int,
    event_id: Optional[str] = None,
    event_created: Optional[datetime] = None,
) -> Subscription:
    """決済失敗 → PAST_DUE (解約済みは復活させない)"""
    sub = _require_subscription(db, account_id)
    if _is_stale_event(sub, event_created):
        logger.warning(f"古いStripeイベントをスキップ: account_id={account_id}, event_id={event_id}")
        return sub
    if sub.status == "CANCELED":
        logger.info(f"決済失敗通知を無視 (解約済み): account_id={account_id}")
        return sub

    sub.status = "PAST_DUE"
    _record_event(sub, event_id, event_created)
    db.commit()
    logger.warning(f"決済失敗: account_id={account_id} -> PAST_DUE")
    return sub


# =========================================================
# 読み取り (トライアル期限切れの遅延反映を含む)
# =========================================================

def evaluate_trial_expiry(sub: Subscription, now: Optional[datetime] = None) -> Optional[str]:
    """トライアル期限切れなら移行先ステータスを返す。変更不要ならNone"""
    if sub.status == "TRIAL" and trial_policy.is_trial_expired(sub.trial_ends_at, now):
        return "UNPAID"
    return None


def get_subscription_status(db: Session, account_id: int, now: Optional[datetime] = None) -> Optional[Subscription]:
    """購読を取得する。書き込みを伴う読み取り:

    TRIALのまま期限を過ぎていれば、その場でUNPAIDに更新してから返す。
    スケジューラを持たないため、期限切れはこの読み取りで検出する。
    """
    sub = get_subscription(db, account_id)
    if not sub:
        logger.warning(f"購読が見つかりません: account_id={account_id}")
        return None

    new_status = evaluate_trial_expiry(sub, now)
    if new_status:
        log_event(
            logger, "トライアル期限切れ: ステータスを更新",
            account_id=account_id,
            trial_ends_at=sub.trial_ends_at.isoformat() if sub.trial_ends_at else None,
            new_status=new_status,
        )
        sub.status = new_status
        db.commit()
    return sub


def is_subscription_active(sub: Subscription, now: Optional[datetime] = None) -> bool:
    if sub.status == "TRIAL":
        return not trial_policy.is_trial_expired(sub.trial_ends_at, now)
    return sub.status == "ACTIVE"


def require_active_subscription(db: Session, account_id: int) -> Subscription:
    sub = get_subscription_status(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    if not is_subscription_active(sub):
        raise InactiveSubscriptionError(sub.status)
    return sub
