# app/services/stock_ledger.py
"""
재고(카드번호/코드) 관리
- consume_stock: 미사용 재고 1개를 주문에 원자적으로 할당
- get_stock_stats: total / used / available
- add_stock_items: 재고 일괄 등록
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import and_, case, exists, func, or_, select, update
from sqlalchemy.orm import Session, aliased

from app.models.delivery_log import DeliveryLog
from app.models.stock_item import StockItem
from app.schemas.autosell import StockStats

logger = logging.getLogger(__name__)

# 후보 재고를 다른 트랜잭션에 뺏겼을 때 재시도 횟수
MAX_CLAIM_ATTEMPTS = 3


def _claim_statement(rule_id: int, order_id: str):
    pool = aliased(StockItem)
    held = aliased(StockItem)

    candidate = (
        select(pool.id)
        .where(pool.rule_id == rule_id, pool.used.is_(False))
        .order_by(pool.id)
        .limit(1)
        .scalar_subquery()
    )

    # 한 문장 안에서: 후보 선택 + 미사용 재확인 + 발송기록/중복할당 없음 확인
    return (
        update(StockItem)
        .where(
            StockItem.id == candidate,
            StockItem.used.is_(False),
            ~exists().where(DeliveryLog.order_id == order_id),
            ~exists().where(and_(held.rule_id == rule_id, held.used_order_id == order_id)),
        )
        .values(used=True, used_order_id=order_id, used_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )


def claim_blocked(db: Session, rule_id: int, order_id: str) -> bool:
    """True if the order already has a delivery log or already holds a unit of the rule."""
    return bool(
        db.scalar(
            select(
                or_(
                    exists().where(DeliveryLog.order_id == order_id),
                    exists().where(
                        and_(StockItem.rule_id == rule_id, StockItem.used_order_id == order_id)
                    ),
                )
            )
        )
    )


def consume_stock(db: Session, rule_id: int, order_id: str) -> Optional[StockItem]:
    """
    Claim one unused unit of the rule for the order.

    Flushes but does not commit; the caller commits together with the
    delivery log row. Returns None when the rule has no stock left, or
    when the order already holds a unit / has a delivery log.
    """
    for attempt in range(1, MAX_CLAIM_ATTEMPTS + 1):
        result = db.execute(_claim_statement(rule_id, order_id))
        if result.rowcount == 1:
            item = (
                db.query(StockItem)
                .filter(StockItem.rule_id == rule_id, StockItem.used_order_id == order_id)
                .populate_existing()
                .first()
            )
            logger.info("재고 할당: rule=%s, order=%s, stock_id=%s", rule_id, order_id, item.id)
            return item

        if claim_blocked(db, rule_id, order_id):
            logger.info("재고 할당 건너뜀: order=%s 이미 처리됨", order_id)
            return None

        if get_stock_stats(db, rule_id).available <= 0:
            return None

        logger.debug("재고 후보 경합, 재시도 %s/%s: rule=%s", attempt, MAX_CLAIM_ATTEMPTS, rule_id)

    return None


def get_stock_stats(db: Session, rule_id: int) -> StockStats:
    total, used = db.execute(
        select(
            func.count(StockItem.id),
            func.coalesce(func.sum(case((StockItem.used.is_(True), 1), else_=0)), 0),
        ).where(StockItem.rule_id == rule_id)
    ).one()
    total = int(total or 0)
    used = int(used or 0)
    return StockStats(total=total, used=used, available=total - used)


def add_stock_items(db: Session, rule_id: int, contents: Iterable[str]) -> int:
    added = 0
    for raw in contents:
        content = (raw or "").strip()
        if not content:
            continue
        db.add(StockItem(rule_id=rule_id, content=content))
        added += 1
    db.commit()
    logger.info("재고 등록: rule=%s, added=%s", rule_id, added)
    return added
