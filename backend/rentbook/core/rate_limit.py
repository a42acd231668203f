"""レート制限設定（slowapi使用）"""
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse


def get_client_ip(request: Request) -> str:
    """
    クライアントIPアドレスを取得
    プロキシ経由の場合はX-Forwarded-Forヘッダーを参照
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


# Limiterインスタンス（アプリケーション全体で共有）
limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],
    storage_uri="memory://",
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """レート制限超過時のエラーハンドラ (課金系エラーと同じ形で返す)"""
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "リクエスト回数が上限を超えました。しばらく待ってから再度お試しください。",
            "code": "RATE_LIMITED",
            "metadata": {"retry_after": exc.detail},
        },
    )


# 決済セッション発行: Stripe API呼び出しを伴うため厳しめ
BILLING_SESSION_RATE_LIMIT = "10/minute"
