"""テスト共通フィクスチャ

rentbook をimportする前に環境変数を設定する (設定・エンジン・プラン定義はimport時に確定するため)。
"""
import json
import os

from factories import WEBHOOK_SECRET

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["STRIPE_STARTER_MONTHLY_PRICE_ID"] = "price_starter_monthly"
os.environ["STRIPE_STARTER_YEARLY_PRICE_ID"] = "price_starter_yearly"
os.environ["STRIPE_PRO_MONTHLY_PRICE_ID"] = "price_pro_monthly"
os.environ["STRIPE_PRO_YEARLY_PRICE_ID"] = "price_pro_yearly"
os.environ["STRIPE_BUSINESS_MONTHLY_PRICE_ID"] = "price_business_monthly"
os.environ["STRIPE_BUSINESS_YEARLY_PRICE_ID"] = "price_business_yearly"
os.environ["SITE_URL"] = "http://testserver"
os.environ["TRIAL_ENABLED"] = "true"
os.environ["TRIAL_DURATION_DAYS"] = "14"
os.environ["TRIAL_DEFAULT_PLAN"] = "BUSINESS"

import fakeredis
import pytest
from types import SimpleNamespace

from rentbook.core.database import Base, engine, SessionLocal
from rentbook.services import account_service, stripe_service, usage_strategies


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def account(db):
    """トライアル中のアカウント (BUSINESS, 14日)"""
    return account_service.create_account(db, "owner@example.com", "Owner")


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def fake_redis(redis_server, monkeypatch):
    """使用量集計 (api_calls) が参照する同期Redisを差し替える"""
    client = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
    monkeypatch.setattr(usage_strategies, "get_sync_redis", lambda: client)
    return client


class FakeStripe:
    """stripe_service の差し替え。呼び出しを記録し、固定値を返す"""

    def __init__(self):
        self.calls = []
        self.subscriptions = {}
        self.error = None

    def _record(self, method, /, **kwargs):
        self.calls.append((method, kwargs))
        if self.error is not None:
            raise self.error

    def called(self, name):
        return [kwargs for call, kwargs in self.calls if call == name]

    def create_customer(self, email, name, metadata=None):
        self._record("create_customer", email=email, name=name, metadata=metadata)
        return "cus_test_123"

    def create_checkout_session(self, **kwargs):
        self._record("create_checkout_session", **kwargs)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")

    def create_billing_portal_session(self, customer_id, return_url):
        self._record("create_billing_portal_session", customer_id=customer_id, return_url=return_url)
        return SimpleNamespace(id="bps_test_123", url="https://billing.stripe.com/p/session/bps_test_123")

    def cancel_subscription(self, subscription_id, at_period_end=True):
        self._record("cancel_subscription", subscription_id=subscription_id, at_period_end=at_period_end)

    def retrieve_subscription(self, subscription_id):
        self._record("retrieve_subscription", subscription_id=subscription_id)
        return json.loads(json.dumps(self.subscriptions[subscription_id]))


@pytest.fixture
def fake_stripe(monkeypatch):
    fake = FakeStripe()
    for name in (
        "create_customer",
        "create_checkout_session",
        "create_billing_portal_session",
        "cancel_subscription",
        "retrieve_subscription",
    ):
        monkeypatch.setattr(stripe_service, name, getattr(fake, name))
    return fake


@pytest.fixture
def client(db, account, redis_server, fake_redis, monkeypatch):
    """ログイン済みのTestClient (セッションはfakeredis上に作成)"""
    from fastapi.testclient import TestClient
    from rentbook.core.database import get_db
    from rentbook.core.rate_limit import limiter
    from rentbook.core.redis import get_redis
    from rentbook.main import app

    def _get_db():
        yield db

    async def _get_redis():
        return fakeredis.FakeAsyncRedis(server=redis_server, decode_responses=True)

    sync_redis = fakeredis.FakeRedis(server=redis_server, decode_responses=True)
    sync_redis.hset("session:test-session", mapping={"account_id": str(account.id), "email": account.email})

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_redis] = _get_redis
    monkeypatch.setattr(limiter, "enabled", False)
    with TestClient(app, cookies={"session_id": "test-session"}) as test_client:
        yield test_client
    app.dependency_overrides.clear()
