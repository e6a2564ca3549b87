# backend/app/models/autosell_rule.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime

from app.core.database import Base


class AutoSellRule(Base):
    __tablename__ = "autosell_rules"

    id = Column(Integer, primary_key=True, index=True)

    name = Column(String(255), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)

    # 필터 - NULL 이면 제한 없음
    account_id = Column(String(64), nullable=True, index=True)
    item_id = Column(String(64), nullable=True, index=True)
    sku_text = Column(String(255), nullable=True)

    # 'fixed' / 'stock' / 'api'
    delivery_type = Column(String(20), nullable=False)

    # type=fixed 일 때 발송 내용
    delivery_content = Column(Text, nullable=True)

    # type=api 일 때 설정 (url, method, headers, body, response_field, response_template)
    api_config = Column(JSON, nullable=True)

    # 'paid' (결제 후) / 'confirmed' (수령 대기)
    trigger_on = Column(String(20), nullable=False, default="paid")

    # 연결된 워크플로 (있으면 직접 발송 대신 워크플로 실행)
    workflow_id = Column(Integer, nullable=True)

    delay_seconds = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    stock_items = relationship(
        "StockItem",
        back_populates="rule",
        cascade="all, delete-orphan",
        order_by="StockItem.id",
    )
