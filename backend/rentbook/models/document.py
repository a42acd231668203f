from sqlalchemy import Column, Integer, BigInteger, String, DateTime, ForeignKey, func
from rentbook.core.database import Base


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="SET NULL"), nullable=True, index=True)
    filename = Column(String(255), nullable=False)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    deleted_at = Column(DateTime, nullable=True, comment="論理削除日時")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
