"""Stripe API操作サービス

Stripe SDKの呼び出しはこのモジュールに閉じ込める (テストではここを差し替える)。
"""
import stripe
from rentbook.core.config import settings
from rentbook.core.logging import get_logger

logger = get_logger(__name__)


def _init_stripe():
    stripe.api_key = settings.STRIPE_SECRET_KEY


def create_customer(email: str, name: str, metadata: dict = None) -> str:
    """Stripe Customer 作成"""
    _init_stripe()
    customer = stripe.Customer.create(
        email=email,
        name=name,
        metadata=metadata or {},
    )
    return customer.id


def create_checkout_session(
    price_id: str,
    customer_id: str,
    success_url: str,
    cancel_url: str,
    metadata: dict,
    subscription_metadata: dict,
):
    """Checkout Session を作成 (購読側にもmetadataを複製する)"""
    _init_stripe()
    session = stripe.checkout.Session.create(
        mode="subscription",
        customer=customer_id,
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        subscription_data={"metadata": subscription_metadata},
    )
    return session


def create_billing_portal_session(customer_id: str, return_url: str):
    """Billing Portal Session を作成"""
    _init_stripe()
    return stripe.billing_portal.Session.create(
        customer=customer_id,
        return_url=return_url,
    )


def cancel_subscription(subscription_id: str, at_period_end: bool = True):
    """購読をキャンセル"""
    _init_stripe()
    if at_period_end:
        stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
    else:
        stripe.Subscription.cancel(subscription_id)


def retrieve_subscription(subscription_id: str) -> dict:
    """Stripe Subscription を取得"""
    _init_stripe()
    return stripe.Subscription.retrieve(subscription_id).to_dict()


def verify_webhook_signature(payload: bytes, sig_header: str, secret: str, tolerance: int) -> None:
    """Stripe-Signature ヘッダーを検証 (不一致なら stripe.SignatureVerificationError)"""
    stripe.WebhookSignature.verify_header(
        payload.decode("utf-8"), sig_header, secret, tolerance,
    )
