"""課金ルーター: Customer作成, Checkout, Billing Portal, 解約, 購読・使用状況の参照"""
import urllib.parse
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from rentbook.core.config import settings
from rentbook.core.database import get_db
from rentbook.core.exceptions import SubscriptionNotFoundError
from rentbook.core.rate_limit import limiter, BILLING_SESSION_RATE_LIMIT
from rentbook.models.subscription import Subscription
from rentbook.schemas.billing import (
    CheckoutRequest, PortalRequest, CancelRequest,
    SessionUrlResponse, CustomerResponse, SubscriptionInfo,
)
from rentbook.services import billing_service, limits_service, subscription_service, trial_policy
from rentbook.services.plan_registry import get_enabled_features
from rentbook.routers.deps import get_current_account_id, track_api_call

router = APIRouter(prefix="/api/billing", tags=["billing"], dependencies=[Depends(track_api_call)])


def _validate_redirect_url(url: Optional[str], default: str) -> str:
    """リダイレクトURLの安全性を検証 (同一オリジンのみ許可)"""
    if not url:
        return default
    # 相対URLはサイト基準で解決し、スキームとホストが一致するものだけ通す
    joined = urllib.parse.urljoin(settings.SITE_URL, url)
    parsed = urllib.parse.urlparse(joined)
    site_parsed = urllib.parse.urlparse(settings.SITE_URL)
    if (parsed.scheme, parsed.netloc) != (site_parsed.scheme, site_parsed.netloc):
        raise HTTPException(status_code=400, detail="不正なリダイレクトURLです")
    return joined


def _subscription_info(sub: Subscription) -> SubscriptionInfo:
    return SubscriptionInfo(
        status=sub.status,
        plan=sub.plan,
        billing_period=sub.billing_period,
        resource_limits=sub.resource_limits,
        trial_ends_at=sub.trial_ends_at,
        trial_days_remaining=trial_policy.days_remaining(sub.trial_ends_at) if sub.status == "TRIAL" else None,
        current_period_start=sub.current_period_start,
        current_period_end=sub.current_period_end,
        cancel_at_period_end=bool(sub.cancel_at_period_end),
        enabled_features=get_enabled_features(sub.plan),
    )


@router.post("/customer", response_model=CustomerResponse)
@limiter.limit(BILLING_SESSION_RATE_LIMIT)
async def create_customer(
    request: Request,
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """Stripe Customer作成 (Checkoutの前に1回)"""
    customer_id = billing_service.create_provider_customer(db, account_id)
    return CustomerResponse(provider_customer_id=customer_id)


@router.post("/checkout", response_model=SessionUrlResponse)
@limiter.limit(BILLING_SESSION_RATE_LIMIT)
async def create_checkout(
    request: Request,
    req: CheckoutRequest,
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """購読開始 (Stripe Checkout Session作成)"""
    success_url = _validate_redirect_url(
        req.success_url, f"{settings.SITE_URL}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
    )
    cancel_url = _validate_redirect_url(req.cancel_url, f"{settings.SITE_URL}/billing")

    url = billing_service.create_checkout_session(
        db, account_id, req.plan, req.billing_period, success_url, cancel_url,
    )
    return SessionUrlResponse(session_url=url)


@router.post("/portal", response_model=SessionUrlResponse)
@limiter.limit(BILLING_SESSION_RATE_LIMIT)
async def create_portal(
    request: Request,
    req: PortalRequest,
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """Stripe Billing Portal Session作成"""
    return_url = _validate_redirect_url(req.return_url, f"{settings.SITE_URL}/billing")
    url = billing_service.create_portal_session(db, account_id, return_url)
    return SessionUrlResponse(session_url=url)


@router.post("/cancel", response_model=SubscriptionInfo)
async def cancel(
    req: Optional[CancelRequest] = None,
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """解約 (デフォルトは期間終了時)"""
    if req is None or req.cancel_at_period_end:
        sub = billing_service.schedule_cancellation(db, account_id)
    else:
        sub = billing_service.cancel_subscription_now(db, account_id)
    return _subscription_info(sub)


@router.post("/cancel-now", response_model=SubscriptionInfo)
async def cancel_now(
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """即時解約"""
    sub = billing_service.cancel_subscription_now(db, account_id)
    return _subscription_info(sub)


@router.get("/subscription", response_model=SubscriptionInfo)
async def get_subscription(
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """現在の購読情報 (トライアル期限切れはここで反映される)"""
    sub = subscription_service.get_subscription_status(db, account_id)
    if not sub:
        raise SubscriptionNotFoundError(account_id)
    return _subscription_info(sub)


@router.get("/usage")
async def get_usage(
    account_id: int = Depends(get_current_account_id),
    db: Session = Depends(get_db),
):
    """リソース種別ごとの使用状況とアップグレード提案"""
    usage = limits_service.get_all_resource_usage(db, account_id)
    recommendation = limits_service.get_upgrade_recommendation(db, account_id)
    return {
        "usage": {k: v.model_dump() for k, v in usage.items()},
        "recommendation": recommendation.model_dump(),
    }
