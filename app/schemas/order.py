from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from app.schemas.autosell import TriggerOn


class OrderDetailData(BaseModel):
    """Parsed order detail, ready to be merged into the Order record."""

    order_id: str
    account_id: str
    item_id: Optional[str] = None
    item_title: Optional[str] = None
    item_pic_url: Optional[str] = None
    price: Optional[str] = None
    buyer_user_id: Optional[str] = None
    buyer_nickname: Optional[str] = None
    status: int = 0
    status_text: str
    sku_text: Optional[str] = None
    order_time: Optional[str] = None
    pay_time: Optional[str] = None
    ship_time: Optional[str] = None
    complete_time: Optional[str] = None

    # 이번 갱신으로 발동된 트리거 (없으면 None)
    fired_trigger: Optional[TriggerOn] = None


class OrderRead(BaseModel):
    order_id: str
    account_id: str
    item_id: Optional[str] = None
    item_title: Optional[str] = None
    item_pic_url: Optional[str] = None
    price: Optional[str] = None
    buyer_user_id: Optional[str] = None
    buyer_nickname: Optional[str] = None
    status: int
    status_text: str
    sku_text: Optional[str] = None
    chat_id: Optional[str] = None
    order_time: Optional[str] = None
    pay_time: Optional[str] = None
    ship_time: Optional[str] = None
    complete_time: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderList(BaseModel):
    orders: List[OrderRead]
    total: int
    limit: int
    offset: int
