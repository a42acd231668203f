# 全モデルをインポート (Alembic autogenerate用)
from rentbook.models.account import Account
from rentbook.models.subscription import Subscription
from rentbook.models.property import Property
from rentbook.models.transaction import Transaction
from rentbook.models.document import Document

__all__ = [
    "Account",
    "Subscription",
    "Property",
    "Transaction",
    "Document",
]
