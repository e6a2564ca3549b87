# app/services/order_parsing.py
"""
주문 상세 응답 파싱

闲鱼 상세 API 의 상태 코드는 믿을 수 없어서 상태 텍스트도 같이 본다.
규격(sku) 텍스트는 응답마다 위치가 달라서 추출 전략을 우선순위대로 시도한다.
"""
import logging
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Protocol, Sequence

from app.schemas.order import OrderDetailData
from app.services.template import UNDEFINED, get_by_path

logger = logging.getLogger(__name__)


class OrderStatus(IntEnum):
    UNKNOWN = 0
    PENDING_PAYMENT = 1
    PENDING_SHIPMENT = 2
    PENDING_RECEIPT = 3
    COMPLETED = 4
    CLOSED = 5


ORDER_STATUS_TEXT = {
    OrderStatus.PENDING_PAYMENT: "待付款",
    OrderStatus.PENDING_SHIPMENT: "待发货",
    OrderStatus.PENDING_RECEIPT: "待收货",
    OrderStatus.COMPLETED: "交易成功",
    OrderStatus.CLOSED: "交易关闭",
}
UNKNOWN_STATUS_TEXT = "未知状态"

PENDING_SHIPMENT_HINTS = ("待发货", "请尽快发货", "买家已付款")
PENDING_RECEIPT_HINTS = ("待收货",)


def is_pending_shipment(status: Optional[int], status_text: Optional[str]) -> bool:
    text = status_text or ""
    return status == OrderStatus.PENDING_SHIPMENT or any(h in text for h in PENDING_SHIPMENT_HINTS)


def is_pending_receipt(status: Optional[int], status_text: Optional[str]) -> bool:
    text = status_text or ""
    return status == OrderStatus.PENDING_RECEIPT or any(h in text for h in PENDING_RECEIPT_HINTS)


def trigger_for_status(status: Optional[int], status_text: Optional[str]) -> Optional[str]:
    """'paid' for pending shipment, 'confirmed' for pending receipt, else None."""
    if is_pending_shipment(status, status_text):
        return "paid"
    if is_pending_receipt(status, status_text):
        return "confirmed"
    return None


# ---------------------------------------------------------
# Sku extraction
# ---------------------------------------------------------
@dataclass(frozen=True)
class DetailSections:
    item_info: Dict[str, Any] = field(default_factory=dict)
    order_info_list: List[Dict[str, Any]] = field(default_factory=list)
    item_title: Optional[str] = None


class SkuExtractor(Protocol):
    name: str

    def try_extract(self, sections: DetailSections) -> Optional[str]: ...


def normalize_sku(raw: Optional[str]) -> Optional[str]:
    # "规格:100次" -> "100次"
    if not raw:
        return None
    text = raw.strip()
    if ":" in text:
        text = text.split(":")[-1].strip()
    return text or None


class ExplicitSkuField:
    name = "explicit_field"
    keys = ("skuInfo", "skuText", "sku", "skuName")

    def try_extract(self, sections: DetailSections) -> Optional[str]:
        for key in self.keys:
            value = sections.item_info.get(key)
            if isinstance(value, str) and value.strip():
                return normalize_sku(value)
        return None


class OrderInfoRowSku:
    name = "order_info_row"
    titles = ("规格", "商品规格", "SKU")

    def try_extract(self, sections: DetailSections) -> Optional[str]:
        for row in sections.order_info_list:
            title = row.get("title") or ""
            if not isinstance(title, str):
                continue
            if title in self.titles or "规格" in title or "SKU" in title.upper():
                value = row.get("value")
                return normalize_sku(value if isinstance(value, str) else None)
        return None


class ItemKeySku:
    name = "item_key_hint"
    hints = ("sku", "spec", "规格")

    def try_extract(self, sections: DetailSections) -> Optional[str]:
        for key, value in sections.item_info.items():
            if not isinstance(value, str) or not value.strip():
                continue
            lowered = key.lower()
            if any(h in lowered for h in self.hints):
                return value.strip()
        return None


class TitleQuantitySku:
    name = "title_quantity"
    pattern = re.compile(r"(\d+[次个张份枚条支瓶盒包袋套件台部只GBMBmlgkg元]+)")

    def try_extract(self, sections: DetailSections) -> Optional[str]:
        if not sections.item_title:
            return None
        match = self.pattern.search(sections.item_title)
        return match.group(1) if match else None


DEFAULT_SKU_EXTRACTORS: Sequence[SkuExtractor] = (
    ExplicitSkuField(),
    OrderInfoRowSku(),
    ItemKeySku(),
    TitleQuantitySku(),
)


def extract_sku(
    sections: DetailSections,
    extractors: Sequence[SkuExtractor] = DEFAULT_SKU_EXTRACTORS,
) -> Optional[str]:
    for extractor in extractors:
        sku = extractor.try_extract(sections)
        if sku:
            logger.debug("규격 추출 성공 (%s): %s", extractor.name, sku)
            return sku
    return None


# ---------------------------------------------------------
# Detail payload
# ---------------------------------------------------------
def _find_order_info_vo(data: Dict[str, Any]) -> Dict[str, Any]:
    for component in data.get("components") or []:
        if isinstance(component, dict) and component.get("render") == "orderInfoVO":
            return component.get("data") or {}
    return {}


def _row_value(rows: List[Dict[str, Any]], title: str) -> Optional[str]:
    for row in rows:
        if row.get("title") == title:
            value = row.get("value")
            return str(value) if value is not None else None
    return None


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return OrderStatus.UNKNOWN


def _opt_str(value: Any) -> Optional[str]:
    if value is None or value is UNDEFINED or value == "":
        return None
    return str(value)


def split_sections(data: Dict[str, Any]) -> DetailSections:
    order_info_vo = _find_order_info_vo(data)
    item_info = order_info_vo.get("itemInfo")
    rows = order_info_vo.get("orderInfoList")
    return DetailSections(
        item_info=item_info if isinstance(item_info, dict) else {},
        order_info_list=[r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else [],
        item_title=_opt_str((item_info or {}).get("title")) if isinstance(item_info, dict) else None,
    )


def parse_order_detail(order_id: str, account_id: str, data: Dict[str, Any]) -> OrderDetailData:
    order_info_vo = _find_order_info_vo(data)
    sections = split_sections(data)
    item_info = sections.item_info
    rows = sections.order_info_list

    status = _to_int(data.get("status"))
    status_text = (
        _opt_str(get_by_path(data, "utArgs.orderMainTitle"))
        or ORDER_STATUS_TEXT.get(status)
        or UNKNOWN_STATUS_TEXT
    )

    price = item_info.get("price")
    if price in (None, ""):
        price = get_by_path(order_info_vo, "priceInfo.amount.value")

    sku_text = extract_sku(sections)
    if sku_text:
        logger.info("주문 상세: %s, 상태=%s, 상품=%s, 규격=%s", order_id, status_text, sections.item_title, sku_text)
    else:
        logger.warning("주문 상세: %s, 상태=%s, 상품=%s, 규격 정보 없음", order_id, status_text, sections.item_title)
        if item_info:
            logger.debug("itemInfo 필드: %s", ", ".join(item_info.keys()))

    return OrderDetailData(
        order_id=order_id,
        account_id=account_id,
        item_id=_opt_str(data.get("itemId")),
        item_title=sections.item_title,
        item_pic_url=_opt_str(item_info.get("itemMainPictCdnUrl")),
        price=_opt_str(price),
        buyer_user_id=_opt_str(data.get("peerUserId")),
        buyer_nickname=_row_value(rows, "买家昵称"),
        status=status,
        status_text=status_text,
        sku_text=sku_text,
        order_time=_row_value(rows, "下单时间"),
        pay_time=_row_value(rows, "付款时间"),
        ship_time=_row_value(rows, "发货时间"),
        complete_time=_row_value(rows, "成交时间"),
    )
