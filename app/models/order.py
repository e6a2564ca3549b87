# backend/app/models/order.py

from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime

from app.core.database import Base


# 상세 조회 전 임시 상태 텍스트
PLACEHOLDER_STATUS_TEXT = "获取中..."


class Order(Base):
    __tablename__ = "orders"

    # 플랫폼(闲鱼) 주문 ID - 전역 유일, 재사용 안 됨
    order_id = Column(String(64), primary_key=True)

    account_id = Column(String(64), nullable=False, index=True)

    # 상품 정보 (상세 조회 후 채워짐)
    item_id = Column(String(64), nullable=True, index=True)
    item_title = Column(String(500), nullable=True)
    item_pic_url = Column(String(1000), nullable=True)
    price = Column(String(50), nullable=True)

    buyer_user_id = Column(String(64), nullable=True)
    buyer_nickname = Column(String(255), nullable=True)

    # 0 = 알 수 없음 (placeholder)
    status = Column(Integer, nullable=False, default=0)
    status_text = Column(String(255), nullable=False, default=PLACEHOLDER_STATUS_TEXT)

    # 규격 (예: "100次"), 자유 텍스트
    sku_text = Column(Text, nullable=True)

    # 채팅(会话) ID
    chat_id = Column(String(64), nullable=True)

    # 플랫폼이 내려주는 표시용 시간 문자열
    order_time = Column(String(50), nullable=True)
    pay_time = Column(String(50), nullable=True)
    ship_time = Column(String(50), nullable=True)
    complete_time = Column(String(50), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )
