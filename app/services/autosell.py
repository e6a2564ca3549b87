# app/services/autosell.py
"""
자동 발송 진입점
- process_auto_sell: 중복 체크 → 규칙 매칭 → 발송 실행 → 기록
- get_rule_stock_status: 규칙별 재고 현황
"""
import asyncio
import logging
import re
import weakref
from typing import Dict, Optional

import httpx
from sqlalchemy.orm import Session

from app.schemas.autosell import AutoSellContext, DeliveryOutcome, DeliveryResult, StockStats
from app.services.delivery_executor import ERR_ALREADY_DELIVERED, execute_delivery
from app.services.delivery_log import add_delivery_log, has_delivered
from app.services.rule_matcher import describe_candidates, get_enabled_auto_sell_rules, match_rule
from app.services.stock_ledger import get_stock_stats

logger = logging.getLogger(__name__)

ERR_NO_RULE = "no matching rule"
# 매칭 규칙이 없을 때 발송 기록에 남기는 유형
NO_RULE_DELIVERY_TYPE = "none"

SKU_NUMBER_RE = re.compile(r"(\d+)")

# 같은 주문에 대한 동시 발송을 프로세스 안에서 직렬화
_order_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def _order_lock(order_id: str) -> asyncio.Lock:
    lock = _order_locks.get(order_id)
    if lock is None:
        lock = asyncio.Lock()
        _order_locks[order_id] = lock
    return lock


def build_template_context(
    account_id: str,
    order_id: str,
    item_id: Optional[str],
    extra: AutoSellContext,
) -> Dict[str, str]:
    sku_text = (extra.sku_text or "").strip()
    # "100次" -> "100"
    sku_number = SKU_NUMBER_RE.search(sku_text)

    return {
        "orderId": order_id,
        "accountId": account_id,
        "itemId": item_id or "",
        "buyerUserId": extra.buyer_user_id or "",
        "chatId": extra.chat_id or "",
        "skuText": sku_text,
        "skuNumber": sku_number.group(1) if sku_number else "",
    }


async def process_auto_sell(
    db: Session,
    account_id: str,
    order_id: str,
    item_id: Optional[str] = None,
    trigger_on: str = "paid",
    extra_context: Optional[AutoSellContext] = None,
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    async with _order_lock(order_id):
        try:
            return await _process_auto_sell(
                db, account_id, order_id, item_id, trigger_on,
                extra_context or AutoSellContext(), http_client,
            )
        except Exception as e:
            db.rollback()
            logger.exception("주문 %s 자동 발송 중 예외", order_id)
            return DeliveryResult(
                success=False,
                outcome=DeliveryOutcome.INTERNAL_ERROR,
                error=f"{e.__class__.__name__}: {e}",
            )


async def _process_auto_sell(
    db: Session,
    account_id: str,
    order_id: str,
    item_id: Optional[str],
    trigger_on: str,
    extra: AutoSellContext,
    http_client: Optional[httpx.AsyncClient],
) -> DeliveryResult:
    if has_delivered(db, order_id):
        logger.info("주문 %s 이미 발송됨, 건너뜀", order_id)
        return DeliveryResult(
            success=False,
            outcome=DeliveryOutcome.ALREADY_DELIVERED,
            error=ERR_ALREADY_DELIVERED,
        )

    rules = get_enabled_auto_sell_rules(db, account_id, item_id)
    sku_text = (extra.sku_text or "").strip()

    logger.info(
        "[자동발송] 주문 %s, item=%s, sku='%s', trigger=%s, 후보 규칙 %s개",
        order_id, item_id, sku_text, trigger_on, len(rules),
    )

    rule = match_rule(rules, trigger_on, sku_text)
    if rule is None:
        logger.warning(
            "[자동발송] 주문 %s 매칭 규칙 없음. 후보: %s", order_id, describe_candidates(rules)
        )
        return record_no_match(db, account_id, order_id)

    logger.info("[자동발송] 주문 %s 규칙 매칭: '%s' (ID: %s)", order_id, rule.name, rule.id)

    context = build_template_context(account_id, order_id, item_id, extra)
    result = await execute_delivery(
        db, rule, order_id, account_id, context, http_client=http_client
    )

    if result.success:
        logger.info("주문 %s 자동 발송 성공: %s", order_id, result.rule_name)
    elif result.outcome == DeliveryOutcome.ALREADY_DELIVERED:
        logger.info("주문 %s 다른 경로에서 이미 발송됨", order_id)
    else:
        logger.error("주문 %s 자동 발송 실패: %s", order_id, result.error)

    return result


def record_no_match(db: Session, account_id: str, order_id: str) -> DeliveryResult:
    """
    매칭 실패도 발송 시도로 기록 (rule_id 없음, status=failed)
    이후 같은 주문은 has_delivered 로 걸러진다
    """
    add_delivery_log(
        db,
        rule_id=None,
        order_id=order_id,
        account_id=account_id,
        delivery_type=NO_RULE_DELIVERY_TYPE,
        status="failed",
        error_message=ERR_NO_RULE,
    )
    return DeliveryResult(success=False, outcome=DeliveryOutcome.NO_RULE, error=ERR_NO_RULE)


def get_rule_stock_status(db: Session, rule_id: int) -> StockStats:
    return get_stock_stats(db, rule_id)
