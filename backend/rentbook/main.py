from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from rentbook.core.config import settings
from rentbook.core.exceptions import SubscriptionError, handle_subscription_error
from rentbook.core.logging import setup_logging, get_logger
from rentbook.core.rate_limit import limiter, rate_limit_exceeded_handler
from rentbook.core.redis import close_redis
from rentbook.routers import health, billing, plans, webhooks_stripe
from rentbook.services.plan_registry import PLAN_CONFIGS, validate_plan_registry
from rentbook.services.usage_strategies import get_registered_resource_types

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """アプリケーションライフサイクル管理"""
    setup_logging(debug=settings.DEBUG)
    # 追加登録された集計戦略も含めて、全プランに上限があるか確認
    validate_plan_registry(PLAN_CONFIGS, get_registered_resource_types())
    logger.info("アプリケーション起動")
    yield
    await close_redis()
    logger.info("アプリケーション終了")


app = FastAPI(
    title=settings.SITE_NAME,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.DEBUG else None,
    redoc_url="/api/redoc" if settings.DEBUG else None,
)

# レート制限設定
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# --- バリデーションエラー日本語化 ---
_FIELD_JA = {
    "plan": "プラン",
    "billing_period": "請求周期",
    "success_url": "成功時URL",
    "cancel_url": "キャンセル時URL",
    "return_url": "戻り先URL",
    "cancel_at_period_end": "期間終了時解約",
}


def _translate_error(err: dict) -> str:
    t = err.get("type", "")
    loc = err.get("loc", [])
    field = str(loc[-1]) if loc else ""
    fj = _FIELD_JA.get(field, field)

    if t == "missing":
        return f"{fj}は必須です"
    if t == "literal_error":
        return f"{fj}は{err.get('ctx', {}).get('expected', '')}のいずれかを指定してください"
    if t == "string_type":
        return f"{fj}は文字列で入力してください"
    if t == "bool_parsing":
        return f"{fj}は真偽値で入力してください"
    return f"{fj}: 入力値が不正です"


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = [_translate_error(e) for e in exc.errors()]
    return JSONResponse(status_code=422, content={"detail": "、".join(messages)})


def _error_response(exc: Exception) -> JSONResponse:
    error = handle_subscription_error(exc)
    return JSONResponse(
        status_code=error["status_code"],
        content={
            "success": False,
            "error": error["message"],
            "code": error["code"],
            "metadata": error["metadata"],
        },
    )


@app.exception_handler(SubscriptionError)
async def subscription_error_handler(request: Request, exc: SubscriptionError):
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message} ({request.url.path})")
    else:
        logger.info(f"{exc.code}: {exc.message} ({request.url.path})")
    return _error_response(exc)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error(f"未処理の例外: {request.url.path} - {exc}", exc_info=exc)
    return _error_response(exc)


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ルーター登録
app.include_router(health.router)
app.include_router(billing.router)
app.include_router(plans.router)
app.include_router(webhooks_stripe.router)
