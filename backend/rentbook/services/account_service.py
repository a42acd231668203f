"""アカウント作成 (購読行も同一トランザクションで作成する)"""
from sqlalchemy.orm import Session

from rentbook.models.account import Account
from rentbook.services import subscription_service
from rentbook.core.logging import get_logger

logger = get_logger(__name__)


def create_account(db: Session, email: str, name: str) -> Account:
    account = Account(email=email, name=name)
    try:
        db.add(account)
        db.flush()
        subscription_service.create_subscription(db, account.id, commit=False)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(account)
    logger.info(f"アカウント作成: account_id={account.id}")
    return account
