from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, func
from rentbook.core.database import Base


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, comment="物件名")
    address = Column(String(500), nullable=True)
    deleted_at = Column(DateTime, nullable=True, comment="論理削除日時")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
