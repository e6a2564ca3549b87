# app/services/delivery_log.py
import logging
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from app.models.delivery_log import DeliveryLog

logger = logging.getLogger(__name__)


def add_delivery_log(
    db: Session,
    *,
    rule_id: Optional[int],
    order_id: str,
    account_id: str,
    delivery_type: str,
    content: str = "",
    status: str,
    error_message: Optional[str] = None,
    commit: bool = True,
) -> DeliveryLog:
    """
    발송 기록 추가 (append-only, 수정/삭제 없음)
    - commit=False 면 호출자가 같은 트랜잭션에서 커밋 (재고 차감과 함께)
    """
    entry = DeliveryLog(
        rule_id=rule_id,
        order_id=order_id,
        account_id=account_id,
        delivery_type=delivery_type,
        content=content or "",
        status=status,
        error_message=error_message,
    )
    db.add(entry)
    if commit:
        db.commit()
        db.refresh(entry)
    else:
        db.flush()
    return entry


def has_delivered(db: Session, order_id: str) -> bool:
    # 성공/실패 상관없이 기록이 하나라도 있으면 이미 처리된 주문
    return bool(db.scalar(select(exists().where(DeliveryLog.order_id == order_id))))


def list_delivery_logs(
    db: Session,
    order_id: Optional[str] = None,
    account_id: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[DeliveryLog]:
    query = db.query(DeliveryLog)
    if order_id:
        query = query.filter(DeliveryLog.order_id == order_id)
    if account_id:
        query = query.filter(DeliveryLog.account_id == account_id)
    return (
        query.order_by(DeliveryLog.created_at.desc(), DeliveryLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
