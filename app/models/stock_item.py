from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text
from sqlalchemy.orm import relationship

from app.core.database import Base


class StockItem(Base):
    __tablename__ = "stock_items"

    id = Column(Integer, primary_key=True, index=True)
    rule_id = Column(Integer, ForeignKey("autosell_rules.id", ondelete="CASCADE"), index=True, nullable=False)

    content = Column(Text, nullable=False)  # 발송할 카드번호/코드 등

    # used=True 가 되면 이후 변경 금지
    used = Column(Boolean, nullable=False, default=False, index=True)
    used_order_id = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    used_at = Column(DateTime, nullable=True)

    rule = relationship("AutoSellRule", back_populates="stock_items")
