from sqlalchemy import Column, Integer, String, Numeric, Date, DateTime, ForeignKey, func
from rentbook.core.database import Base


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="SET NULL"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(String(100), nullable=True)
    occurred_on = Column(Date, nullable=True)
    deleted_at = Column(DateTime, nullable=True, comment="論理削除日時")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
