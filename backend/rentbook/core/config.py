from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """アプリケーション設定"""

    # データベース
    DATABASE_URL: str = "mysql+pymysql://rentbook:rentbook@db:3306/rentbook?charset=utf8mb4"

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"

    # Stripe
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PUBLISHABLE_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_WEBHOOK_TOLERANCE: int = 300  # 秒

    # Stripe Price ID (プラン × 請求周期)
    STRIPE_STARTER_MONTHLY_PRICE_ID: str = ""
    STRIPE_STARTER_YEARLY_PRICE_ID: str = ""
    STRIPE_PRO_MONTHLY_PRICE_ID: str = ""
    STRIPE_PRO_YEARLY_PRICE_ID: str = ""
    STRIPE_BUSINESS_MONTHLY_PRICE_ID: str = ""
    STRIPE_BUSINESS_YEARLY_PRICE_ID: str = ""

    # トライアル
    TRIAL_ENABLED: bool = True
    TRIAL_DURATION_DAYS: int = 14
    TRIAL_DEFAULT_PLAN: str = "BUSINESS"

    # サービス設定
    SITE_URL: str = "http://localhost:8000"
    SITE_NAME: str = "Rentbook"
    ALLOWED_ORIGINS: str = "http://localhost:8000,http://localhost:3000"

    # セッション
    SESSION_TIMEOUT_MINUTES: int = 60

    # 環境
    ENV: str = "development"
    DEBUG: bool = True

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
