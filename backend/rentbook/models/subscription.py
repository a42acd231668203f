from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Enum as SAEnum, ForeignKey, func
from rentbook.core.database import Base

SUBSCRIPTION_STATUSES = ("TRIAL", "ACTIVE", "PAST_DUE", "CANCELED", "UNPAID")
SUBSCRIPTION_PLANS = ("STARTER", "PRO", "BUSINESS")

# 利用を許可するステータス (TRIALは期限内に限る)
USABLE_STATUSES = ("ACTIVE", "TRIAL")


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True, index=True,
    )
    provider_customer_id = Column(String(255), nullable=True, unique=True, comment="Stripe Customer ID")
    provider_subscription_id = Column(
        String(255), nullable=True, unique=True, comment="Stripe Subscription ID (有料購読中のみ)",
    )
    status = Column(
        SAEnum(*SUBSCRIPTION_STATUSES, name="subscription_status"),
        nullable=False,
        default="TRIAL",
    )
    plan = Column(SAEnum(*SUBSCRIPTION_PLANS, name="subscription_plan"), nullable=False)
    resource_limits = Column(JSON, nullable=True, comment="planと同時に書き込む上限スナップショット")
    billing_period = Column(String(10), nullable=True, comment="monthly / yearly")
    trial_ends_at = Column(DateTime, nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, nullable=False, default=False)
    provider_event_id = Column(String(255), nullable=True, comment="最後に適用したStripeイベントID")
    provider_event_at = Column(DateTime, nullable=True, comment="最後に適用したStripeイベントの発生日時")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())
