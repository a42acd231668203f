"""Stripe Webhook の検証と振り分け

- 署名検証はペイロードの解析より先に行う
- イベント種別ごとのハンドラを静的テーブルで引く。未登録の種別は何もせず成功扱い
- ハンドラの例外はイベント単位で捕捉し {received: False, error} を返す
- 同じイベントが再送されても結果が変わらないよう、各ハンドラは同じ値を上書きするだけにする
"""
import json
from datetime import datetime, timezone
from typing import Callable, Optional

import stripe
from sqlalchemy.orm import Session

from rentbook.core.config import settings
from rentbook.core.exceptions import WebhookSignatureError, WebhookProcessingError
from rentbook.core.logging import get_logger, log_event
from rentbook.schemas.billing import ProviderSubscriptionSnapshot, WebhookResult
from rentbook.services import stripe_service, subscription_service
from rentbook.services.plan_registry import get_plan_for_price_id

logger = get_logger(__name__)

PRICE_INTERVAL_TO_PERIOD = {"month": "monthly", "year": "yearly"}


def verify_signature(payload: bytes, sig_header: Optional[str]) -> dict:
    """署名を検証してからイベントJSONを解析する"""
    if not sig_header:
        raise WebhookSignatureError("Stripe-Signatureヘッダーがありません")
    try:
        stripe_service.verify_webhook_signature(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET, settings.STRIPE_WEBHOOK_TOLERANCE,
        )
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.error(f"Stripe webhook署名検証失敗: {e}")
        raise WebhookSignatureError() from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise WebhookSignatureError("Webhookペイロードが不正です") from e
    if not isinstance(event, dict) or "type" not in event:
        raise WebhookSignatureError("Webhookペイロードが不正です")
    return event


# =========================================================
# ペイロード解析ヘルパー
# =========================================================

def _timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), timezone.utc).replace(tzinfo=None)


def _event_context(event: dict) -> tuple[Optional[str], Optional[datetime]]:
    return event.get("id"), _timestamp(event.get("created"))


def _account_id_from_metadata(metadata: Optional[dict], event_type: str) -> int:
    raw = (metadata or {}).get("account_id")
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise WebhookProcessingError(event_type, f"metadataにaccount_idがありません ({raw!r})")


def _first_item(obj: dict) -> dict:
    items = (obj.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _id_of(value) -> Optional[str]:
    """展開済みオブジェクトでもID文字列でもIDを返す"""
    if isinstance(value, dict):
        return value.get("id")
    return value


def snapshot_from_subscription(obj: dict, event_type: str) -> tuple[int, ProviderSubscriptionSnapshot]:
    """Stripe Subscription → (account_id, スナップショット)"""
    metadata = obj.get("metadata") or {}
    account_id = _account_id_from_metadata(metadata, event_type)

    item = _first_item(obj)
    price = item.get("price") or {}
    # Billing Portalでのプラン変更はmetadataに反映されないため価格からの逆引きを優先
    plan = get_plan_for_price_id(price.get("id")) or metadata.get("plan")
    if not plan:
        raise WebhookProcessingError(event_type, "metadataにplanがありません")
    interval = (price.get("recurring") or {}).get("interval")
    billing_period = PRICE_INTERVAL_TO_PERIOD.get(interval) or metadata.get("billing_period")

    # 新しいAPIバージョンでは期間情報がitem側にある
    period_start = obj.get("current_period_start") or item.get("current_period_start")
    period_end = obj.get("current_period_end") or item.get("current_period_end")

    snapshot = ProviderSubscriptionSnapshot(
        provider_subscription_id=obj["id"],
        provider_customer_id=_id_of(obj.get("customer")),
        provider_status=obj.get("status", ""),
        plan=plan,
        billing_period=billing_period,
        current_period_start=_timestamp(period_start),
        current_period_end=_timestamp(period_end),
        cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
    )
    return account_id, snapshot


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    if invoice.get("subscription"):
        return _id_of(invoice["subscription"])
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _id_of(details.get("subscription"))


def _invoice_subscription_metadata(invoice: dict) -> Optional[dict]:
    details = (invoice.get("parent") or {}).get("subscription_details") or invoice.get("subscription_details") or {}
    return details.get("metadata") or None


# =========================================================
# イベントハンドラ
# =========================================================

def _sync_from_subscription(db: Session, event: dict, obj: dict):
    event_id, event_created = _event_context(event)
    account_id, snapshot = snapshot_from_subscription(obj, event["type"])
    subscription_service.update_subscription_from_provider(
        db, account_id, snapshot, event_id=event_id, event_created=event_created,
    )


def handle_checkout_completed(db: Session, event: dict):
    """checkout.session.completed: Checkout完了 → 購読を同期"""
    session = event["data"]["object"]
    provider_sub_id = _id_of(session.get("subscription"))
    if session.get("mode") != "subscription" or not provider_sub_id:
        logger.info(f"checkout.session.completed: 購読なしのセッション session={session.get('id')}")
        return

    stripe_sub = stripe_service.retrieve_subscription(provider_sub_id)
    # アカウントはセッションのmetadataで特定する (購読側に無ければ補う)
    metadata = dict(stripe_sub.get("metadata") or {})
    session_metadata = session.get("metadata") or {}
    for key in ("account_id", "plan", "billing_period"):
        if session_metadata.get(key) and not metadata.get(key):
            metadata[key] = session_metadata[key]
    stripe_sub["metadata"] = metadata
    if not stripe_sub.get("customer"):
        stripe_sub["customer"] = session.get("customer")

    _sync_from_subscription(db, event, stripe_sub)


def handle_subscription_upsert(db: Session, event: dict):
    """customer.subscription.created / updated"""
    _sync_from_subscription(db, event, event["data"]["object"])


def handle_subscription_deleted(db: Session, event: dict):
    """customer.subscription.deleted → CANCELED"""
    obj = event["data"]["object"]
    event_id, event_created = _event_context(event)
    account_id = _account_id_from_metadata(obj.get("metadata"), event["type"])
    subscription_service.mark_canceled_from_provider(
        db, account_id, event_id=event_id, event_created=event_created,
    )


def handle_payment_succeeded(db: Session, event: dict):
    """invoice.payment_succeeded: 最新の購読状態を取得して同期 (PAST_DUE → ACTIVE の復帰を含む)"""
    invoice = event["data"]["object"]
    provider_sub_id = _invoice_subscription_id(invoice)
    if not provider_sub_id:
        logger.info(f"invoice.payment_succeeded: 購読IDなし invoice={invoice.get('id')}")
        return
    _sync_from_subscription(db, event, stripe_service.retrieve_subscription(provider_sub_id))


def handle_payment_failed(db: Session, event: dict):
    """invoice.payment_failed → PAST_DUE"""
    invoice = event["data"]["object"]
    provider_sub_id = _invoice_subscription_id(invoice)
    if not provider_sub_id:
        logger.info(f"invoice.payment_failed: 購読IDなし invoice={invoice.get('id')}")
        return

    metadata = _invoice_subscription_metadata(invoice)
    if not metadata:
        metadata = stripe_service.retrieve_subscription(provider_sub_id).get("metadata")
    event_id, event_created = _event_context(event)
    account_id = _account_id_from_metadata(metadata, event["type"])
    subscription_service.mark_past_due_from_provider(
        db, account_id, event_id=event_id, event_created=event_created,
    )


WEBHOOK_HANDLERS: dict[str, Callable[[Session, dict], None]] = {
    "checkout.session.completed": handle_checkout_completed,
    "customer.subscription.created": handle_subscription_upsert,
    "customer.subscription.updated": handle_subscription_upsert,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "invoice.payment_failed": handle_payment_failed,
}


def get_handler(event_type: str) -> Optional[Callable[[Session, dict], None]]:
    return WEBHOOK_HANDLERS.get(event_type)


def is_webhook_event_supported(event_type: str) -> bool:
    return event_type in WEBHOOK_HANDLERS


def get_supported_webhook_events() -> list[str]:
    return list(WEBHOOK_HANDLERS)


def process_event(db: Session, event: dict) -> WebhookResult:
    """検証済みイベントを1件処理する。ハンドラの例外はここで止める"""
    event_type = event.get("type", "")
    handler = get_handler(event_type)
    if handler is None:
        logger.info(f"未処理のStripeイベント: {event_type}")
        return WebhookResult(received=True, event_type=event_type, handled=False)

    log_event(logger, f"Webhookイベント: {event_type}", event_id=event.get("id"), event_type=event_type)
    try:
        handler(db, event)
    except Exception as e:
        db.rollback()
        logger.error(f"Stripe webhook処理エラー: {event_type} - {e}", exc_info=True)
        return WebhookResult(received=False, error=str(e), event_type=event_type)
    return WebhookResult(received=True, event_type=event_type)


def handle_webhook(db: Session, payload: bytes, sig_header: Optional[str]) -> WebhookResult:
    """署名検証 → 振り分け。署名エラーのみ WebhookSignatureError として送出する"""
    event = verify_signature(payload, sig_header)
    return process_event(db, event)
