"""課金・購読エラー体系

全エラーは安定した `code`、HTTP `status_code`、構造化 `metadata` を持つ。
HTTP層は `code` ごとにUI状態 (アップグレード誘導 / 決済再開誘導 / 再試行) を出し分ける。
"""
from datetime import datetime
from typing import Any, Optional


class SubscriptionError(Exception):
    """購読関連エラーの基底クラス"""

    code = "SUBSCRIPTION_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        metadata: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.metadata = metadata or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "metadata": self.metadata,
        }


class SubscriptionNotFoundError(SubscriptionError):
    code = "SUBSCRIPTION_NOT_FOUND"
    status_code = 404

    def __init__(self, account_id: int):
        super().__init__(
            "このアカウントの購読情報が見つかりません。",
            metadata={"account_id": account_id},
        )


class TrialExpiredError(SubscriptionError):
    code = "TRIAL_EXPIRED"
    status_code = 403

    def __init__(self, trial_end_date: datetime):
        super().__init__(
            "無料トライアル期間が終了しました。引き続きご利用いただくにはプランをお申し込みください。",
            metadata={"trial_end_date": trial_end_date.isoformat()},
        )


class ResourceLimitError(SubscriptionError):
    code = "RESOURCE_LIMIT_EXCEEDED"
    status_code = 403

    def __init__(self, resource_type: str, current_count: float, limit: int, plan: str):
        super().__init__(
            f"{resource_type} の上限 ({limit}) に達しました。追加するにはプランをアップグレードしてください。",
            metadata={
                "resource_type": resource_type,
                "current_count": current_count,
                "limit": limit,
                "plan": plan,
            },
        )


class InactiveSubscriptionError(SubscriptionError):
    code = "SUBSCRIPTION_INACTIVE"
    status_code = 403

    def __init__(self, status: str):
        super().__init__(
            "購読が有効ではありません。お支払い方法を更新してください。",
            metadata={"status": status},
        )


class InvalidPlanError(SubscriptionError):
    code = "INVALID_PLAN"
    status_code = 400

    def __init__(self, plan: str):
        super().__init__(f"不正なプランです: {plan}", metadata={"plan": plan})


class ProviderCustomerNotFoundError(SubscriptionError):
    code = "STRIPE_CUSTOMER_NOT_FOUND"
    status_code = 404

    def __init__(self, account_id: int):
        super().__init__(
            "決済情報 (Stripe Customer) が見つかりません。",
            metadata={"account_id": account_id},
        )


class WebhookSignatureError(SubscriptionError):
    code = "WEBHOOK_SIGNATURE_INVALID"
    status_code = 400

    def __init__(self, message: str = "Webhook署名が不正です"):
        super().__init__(message)


class WebhookProcessingError(SubscriptionError):
    code = "WEBHOOK_PROCESSING_FAILED"
    status_code = 500

    def __init__(self, event_type: str, cause: Optional[str] = None):
        super().__init__(
            f"Webhookイベントの処理に失敗しました: {event_type}",
            metadata={"event_type": event_type, "original_error": cause or "Unknown error"},
        )


class CheckoutSessionError(SubscriptionError):
    code = "CHECKOUT_SESSION_FAILED"
    status_code = 500

    def __init__(self, reason: str):
        super().__init__(f"決済ページの作成に失敗しました: {reason}", metadata={"reason": reason})


class PortalSessionError(SubscriptionError):
    code = "PORTAL_SESSION_FAILED"
    status_code = 500

    def __init__(self, reason: str):
        super().__init__(f"決済ポータルの作成に失敗しました: {reason}", metadata={"reason": reason})


class PlanRegistryError(RuntimeError):
    """プラン定義の設定不備 (起動時検証で検出)"""


def handle_subscription_error(exc: Exception) -> dict[str, Any]:
    """例外をHTTPレスポンス用の辞書に変換。想定外の例外は内部情報を出さない"""
    if isinstance(exc, SubscriptionError):
        return {
            "message": exc.message,
            "code": exc.code,
            "status_code": exc.status_code,
            "metadata": exc.metadata,
        }
    return {
        "message": "予期しないエラーが発生しました",
        "code": "INTERNAL_ERROR",
        "status_code": 500,
        "metadata": None,
    }
