# app/services/rule_matcher.py
import logging
from typing import List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.autosell_rule import AutoSellRule

logger = logging.getLogger(__name__)


def get_enabled_auto_sell_rules(
    db: Session,
    account_id: str,
    item_id: Optional[str] = None,
) -> List[AutoSellRule]:
    """
    활성 규칙 목록 (카탈로그 순서 = id 순)
    - account_id / item_id 필터가 NULL 인 규칙은 전체 허용
    - item_id 를 모르면 상품 제한 없는 규칙만
    """
    query = db.query(AutoSellRule).filter(
        AutoSellRule.enabled.is_(True),
        or_(AutoSellRule.account_id.is_(None), AutoSellRule.account_id == account_id),
    )
    if item_id:
        query = query.filter(or_(AutoSellRule.item_id.is_(None), AutoSellRule.item_id == item_id))
    else:
        query = query.filter(AutoSellRule.item_id.is_(None))
    return query.order_by(AutoSellRule.id.asc()).all()


def match_rule(
    rules: Sequence[AutoSellRule],
    trigger_on: str,
    sku_text: Optional[str],
) -> Optional[AutoSellRule]:
    """First rule in catalog order whose trigger and sku filter both match."""
    order_sku = (sku_text or "").strip()

    for rule in rules:
        if rule.trigger_on != trigger_on:
            logger.debug("규칙 '%s' 트리거 불일치: %s != %s", rule.name, rule.trigger_on, trigger_on)
            continue

        rule_sku = (rule.sku_text or "").strip()
        if rule_sku:
            # 완전 일치만 허용 (대소문자 구분)
            if rule_sku != order_sku:
                logger.debug("규칙 '%s' 규격 불일치: '%s' != '%s'", rule.name, rule_sku, order_sku)
                continue
            logger.info("규칙 '%s' 규격 일치: '%s'", rule.name, rule_sku)
        else:
            logger.debug("규칙 '%s' 규격 제한 없음", rule.name)

        return rule

    return None


def describe_candidates(rules: Sequence[AutoSellRule]) -> str:
    return ", ".join(
        f"\"{r.name}\"(sku:{r.sku_text or 'any'}, trigger:{r.trigger_on})" for r in rules
    ) or "(none)"
