"""Stripe Checkout / Billing Portal セッション発行

Stripe由来の例外はここで型付きエラーに包み直し、呼び出し側に生の例外を見せない。
"""
import stripe
from sqlalchemy.orm import Session

from rentbook.core.exceptions import (
    SubscriptionNotFoundError,
    ProviderCustomerNotFoundError,
    CheckoutSessionError,
    PortalSessionError,
)
from rentbook.core.logging import get_logger, log_event
from rentbook.models.account import Account
from rentbook.services import stripe_service, subscription_service
from rentbook.services.plan_registry import BILLING_PERIODS, get_plan_config, get_price_id

logger = get_logger(__name__)


def create_provider_customer(db: Session, account_id: int) -> str:
    """Stripe Customerを作成して紐付ける (作成済みなら既存IDを返す)

    Checkoutの前段で明示的に呼ぶ。Checkout内で暗黙に作成すると、
    失敗のたびに孤立したCustomerが残るため。
    """
    sub = subscription_service.get_subscription(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    if sub.provider_customer_id:
        return sub.provider_customer_id

    account = db.query(Account).filter(Account.id == account_id).first()
    if not account:
        raise SubscriptionNotFoundError(account_id)

    try:
        customer_id = stripe_service.create_customer(
            email=account.email,
            name=account.name,
            metadata={"account_id": str(account_id)},
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe Customer作成失敗: account_id={account_id}, error={e}")
        raise CheckoutSessionError(f"Stripe Customerの作成に失敗しました ({e})") from e

    subscription_service.set_provider_customer_id(db, account_id, customer_id)
    logger.info(f"Stripe Customer作成: account_id={account_id}, customer={customer_id}")
    return customer_id


def create_checkout_session(
    db: Session,
    account_id: int,
    plan: str,
    billing_period: str,
    success_url: str,
    cancel_url: str,
) -> str:
    """Checkout Session を作成しURLを返す

    account_id / plan / billing_period をセッションと購読の両方のmetadataに入れる。
    Webhook側はこのmetadataだけでアカウントを特定する。
    """
    sub = subscription_service.get_subscription(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    if not sub.provider_customer_id:
        raise CheckoutSessionError("Stripe Customerが未作成です")

    get_plan_config(plan)
    if billing_period not in BILLING_PERIODS:
        raise CheckoutSessionError(f"不正な請求周期です: {billing_period}")
    price_id = get_price_id(plan, billing_period)
    if not price_id:
        raise CheckoutSessionError(f"Price IDが未設定です: {plan}/{billing_period}")

    metadata = {
        "account_id": str(account_id),
        "plan": plan,
        "billing_period": billing_period,
    }
    try:
        session = stripe_service.create_checkout_session(
            price_id=price_id,
            customer_id=sub.provider_customer_id,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_metadata=dict(metadata),
        )
    except stripe.StripeError as e:
        logger.error(f"Stripe Checkout Session作成失敗: account_id={account_id}, plan={plan}, error={e}")
        raise CheckoutSessionError(str(e)) from e

    log_event(
        logger, "Checkout Session作成",
        account_id=account_id, plan=plan, billing_period=billing_period, session_id=session.id,
    )
    return session.url


def create_portal_session(db: Session, account_id: int, return_url: str) -> str:
    """Billing Portal Session を作成しURLを返す"""
    sub = subscription_service.get_subscription(db, account_id)
    if not sub or not sub.provider_customer_id:
        raise ProviderCustomerNotFoundError(account_id)

    try:
        session = stripe_service.create_billing_portal_session(sub.provider_customer_id, return_url)
    except stripe.StripeError as e:
        logger.error(f"Stripe Billing Portal作成失敗: account_id={account_id}, error={e}")
        raise PortalSessionError(str(e)) from e

    log_event(logger, "Billing Portal Session作成", account_id=account_id, session_id=session.id)
    return session.url


def _cancel_at_provider(account_id: int, provider_subscription_id: str, at_period_end: bool):
    try:
        stripe_service.cancel_subscription(provider_subscription_id, at_period_end=at_period_end)
    except stripe.StripeError as e:
        logger.error(f"Stripe購読解約失敗: account_id={account_id}, subscription={provider_subscription_id}, error={e}")
        raise PortalSessionError(str(e)) from e


def schedule_cancellation(db: Session, account_id: int):
    """期間終了時に解約 (期間中は引き続き利用可)"""
    sub = subscription_service.get_subscription(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    if sub.provider_subscription_id:
        _cancel_at_provider(account_id, sub.provider_subscription_id, at_period_end=True)
    return subscription_service.cancel_subscription(db, account_id, cancel_at_period_end=True)


def cancel_subscription_now(db: Session, account_id: int):
    """即時解約。Stripe購読がなければローカルのみ"""
    sub = subscription_service.get_subscription(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    if sub.provider_subscription_id:
        _cancel_at_provider(account_id, sub.provider_subscription_id, at_period_end=False)
    else:
        logger.info(f"Stripe購読なし: ローカルのみ解約 account_id={account_id}")
    return subscription_service.cancel_subscription(db, account_id, cancel_at_period_end=False)
