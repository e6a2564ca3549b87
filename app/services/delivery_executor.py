# app/services/delivery_executor.py
"""
발송 실행기
- fixed: 규칙에 적힌 고정 내용
- stock: 재고 1개 차감 (발송 기록과 같은 트랜잭션)
- api:   외부 API 호출 후 응답에서 내용 추출
모든 실행은 성공/실패 상관없이 DeliveryLog 한 줄을 남긴다.
"""
import json
import logging
from typing import Any, Mapping, Optional

import httpx
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.models.autosell_rule import AutoSellRule
from app.schemas.autosell import ApiConfig, DeliveryOutcome, DeliveryResult
from app.services.delivery_log import add_delivery_log
from app.services.stock_ledger import claim_blocked, consume_stock
from app.services.template import UNDEFINED, find_unresolved, get_by_path, render, substitute, to_text

logger = logging.getLogger(__name__)

settings = get_settings()

BODY_METHODS = ("POST", "PUT", "PATCH")

ERR_NO_CONTENT = "no content configured"
ERR_NO_API_CONFIG = "no API configured"
ERR_INSUFFICIENT_STOCK = "insufficient stock"
ERR_ALREADY_DELIVERED = "already delivered"


class DeliveryError(Exception):
    outcome = DeliveryOutcome.INTERNAL_ERROR


class DeliveryConfigError(DeliveryError):
    """Rule is missing content / API configuration"""
    outcome = DeliveryOutcome.CONFIG_ERROR


class StockExhaustedError(DeliveryError):
    outcome = DeliveryOutcome.OUT_OF_STOCK


class ApiDeliveryError(DeliveryError):
    """Remote API call failed (network, non-2xx, missing field)"""
    outcome = DeliveryOutcome.API_ERROR


class AlreadyDeliveredError(DeliveryError):
    outcome = DeliveryOutcome.ALREADY_DELIVERED


def _stringify_response(data: Any) -> str:
    if isinstance(data, str):
        return data
    return json.dumps(data, ensure_ascii=False)


async def fetch_from_api(
    config: ApiConfig,
    context: Mapping[str, str],
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    API 로 발송 내용 가져오기
    - url / body 의 {{orderId}} 등을 context 로 치환
    - response_template > response_field > 원본 응답 순
    """
    url = substitute(config.url, context)
    body = substitute(config.body, context) if config.body else None

    # 설정된 헤더가 기본값을 덮어씀
    headers = {
        "Content-Type": "application/json",
        **(config.headers or {}),
    }
    content = body if config.method in BODY_METHODS else None

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.api_delivery_timeout) as own_client:
                resp = await own_client.request(config.method, url, headers=headers, content=content)
        else:
            resp = await client.request(config.method, url, headers=headers, content=content)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise ApiDeliveryError(f"API request error: {e.__class__.__name__}: {e}") from e

    if not resp.is_success:
        raise ApiDeliveryError(f"API request failed: {resp.status_code} {resp.reason_phrase}")

    try:
        data = resp.json()
    except ValueError:
        data = resp.text

    # 템플릿 렌더링 우선 (다중 필드)
    if config.response_template:
        rendered = render(config.response_template, data)
        unresolved = find_unresolved(rendered)
        if unresolved:
            logger.warning("템플릿에 치환되지 않은 변수: %s -> %s", unresolved, rendered)
        return rendered

    # 단일 필드 추출 (예전 설정 호환)
    if config.response_field:
        value = get_by_path(data, config.response_field)
        if value is UNDEFINED:
            raise ApiDeliveryError(f"field not found in response: {config.response_field}")
        return to_text(value)

    return _stringify_response(data)


async def _produce_content(
    db: Session,
    rule: AutoSellRule,
    order_id: str,
    context: Mapping[str, str],
    http_client: Optional[httpx.AsyncClient],
) -> str:
    if rule.delivery_type == "fixed":
        if not rule.delivery_content:
            raise DeliveryConfigError(ERR_NO_CONTENT)
        return rule.delivery_content

    if rule.delivery_type == "stock":
        stock = consume_stock(db, rule.id, order_id)
        if stock is None:
            # 재고가 남아있는데 못 가져왔다면 이미 처리된 주문
            if claim_blocked(db, rule.id, order_id):
                raise AlreadyDeliveredError(ERR_ALREADY_DELIVERED)
            raise StockExhaustedError(ERR_INSUFFICIENT_STOCK)
        return stock.content

    if rule.delivery_type == "api":
        if not rule.api_config:
            raise DeliveryConfigError(ERR_NO_API_CONFIG)
        try:
            config = ApiConfig.model_validate(rule.api_config)
        except ValidationError as e:
            raise DeliveryConfigError(f"invalid API config: {e.error_count()} error(s)") from e
        return await fetch_from_api(config, context, http_client)

    raise DeliveryConfigError(f"unknown delivery type: {rule.delivery_type}")


async def execute_delivery(
    db: Session,
    rule: AutoSellRule,
    order_id: str,
    account_id: str,
    context: Mapping[str, str],
    *,
    http_client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    rule_id, rule_name, delivery_type = rule.id, rule.name, rule.delivery_type

    try:
        content = await _produce_content(db, rule, order_id, context, http_client)
    except AlreadyDeliveredError as e:
        logger.info("주문 %s 이미 발송됨, 재고 차감 안 함", order_id)
        return DeliveryResult(success=False, outcome=e.outcome, error=str(e), rule_name=rule_name)
    except DeliveryError as e:
        result = DeliveryResult(success=False, outcome=e.outcome, error=str(e), rule_name=rule_name)
    else:
        result = DeliveryResult(
            success=True,
            outcome=DeliveryOutcome.DELIVERED,
            content=content,
            rule_name=rule_name,
        )

    add_delivery_log(
        db,
        rule_id=rule_id,
        order_id=order_id,
        account_id=account_id,
        delivery_type=delivery_type,
        content=result.content or "",
        status="success" if result.success else "failed",
        error_message=result.error,
    )
    return result
