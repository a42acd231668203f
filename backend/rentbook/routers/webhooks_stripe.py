"""Stripe Webhook ルーター"""
from fastapi import APIRouter, Request, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from rentbook.core.database import get_db
from rentbook.core.logging import get_logger
from rentbook.services import webhook_service

router = APIRouter(tags=["webhooks"])
logger = get_logger(__name__)

WEBHOOK_FAILED_MESSAGE = "Webhookイベントの処理に失敗しました"


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Stripe Webhook エンドポイント (署名検証必須)

    署名不正は WebhookSignatureError (400) として例外ハンドラに任せる。
    処理失敗時は500を返してStripeに再送させる。
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    result = webhook_service.handle_webhook(db, payload, sig_header)
    if not result.received:
        # 例外の詳細はログのみ (DBエラー等をStripe側に返さない)
        logger.error(f"Stripe webhook失敗応答: event_type={result.event_type}, error={result.error}")
        return JSONResponse(status_code=500, content={"received": False, "error": WEBHOOK_FAILED_MESSAGE})
    return {"received": True}
