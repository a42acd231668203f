from pydantic import BaseModel, Field
from typing import Literal, Optional
from datetime import datetime


class ProviderSubscriptionSnapshot(BaseModel):
    """Stripe Subscription の照合用スナップショット"""

    provider_subscription_id: str
    provider_customer_id: Optional[str] = None
    provider_status: str
    plan: str
    billing_period: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False

    model_config = {"frozen": True}


class CheckoutRequest(BaseModel):
    plan: str
    billing_period: Literal["monthly", "yearly"] = "monthly"
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


class SessionUrlResponse(BaseModel):
    session_url: str


class CustomerResponse(BaseModel):
    provider_customer_id: str


class CancelRequest(BaseModel):
    cancel_at_period_end: bool = True


class SubscriptionInfo(BaseModel):
    status: str
    plan: str
    billing_period: Optional[str] = None
    resource_limits: Optional[dict[str, int]] = None
    trial_ends_at: Optional[datetime] = None
    trial_days_remaining: Optional[int] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    enabled_features: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ResourceLimitCheck(BaseModel):
    """上限判定結果 (リクエストごとに毎回計算し、キャッシュしない)"""

    allowed: bool
    current_usage: float
    limit: int
    remaining: float
    is_at_limit: bool
    subscription_status: Optional[str] = None
    is_trial_expired: bool
    reason: Optional[str] = None


class ResourceUsageAnalytics(BaseModel):
    resource_type: str
    current_usage: float
    limit: int
    usage_percentage: float
    should_upgrade: bool
    recommended_plan: Optional[str] = None


class UpgradeRecommendation(BaseModel):
    should_upgrade: bool
    reason: str
    recommended_plan: Optional[str] = None
    current_usage: float
    current_limit: int
    usage_percentage: float


class WebhookResult(BaseModel):
    received: bool
    error: Optional[str] = None
    event_type: Optional[str] = None
    handled: bool = True
