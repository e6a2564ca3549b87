# app/services/order_tracker.py
"""
주문 상태 추적

1. 새 메시지에 주문 ID 가 있으면 placeholder 레코드만 만든다 (동기)
2. 상세 조회는 백그라운드 작업으로 돌린다
3. 상세 조회 결과로 상태가 "대기 발송" / "수령 대기" 로 *진입*했을 때만 자동 발송
"""
import asyncio
import logging
from typing import Any, Callable, Coroutine, List, Optional, Set, Tuple

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.models.order import Order, PLACEHOLDER_STATUS_TEXT
from app.schemas.autosell import AutoSellContext, DeliveryOutcome, DeliveryResult
from app.schemas.order import OrderDetailData
from app.services.autosell import process_auto_sell, record_no_match
from app.services.delivery_executor import ERR_ALREADY_DELIVERED
from app.services.delivery_log import has_delivered
from app.services.marketplace_client import ClientRegistry, MarketplaceClient, MarketplaceClientError
from app.services.order_parsing import parse_order_detail, trigger_for_status
from app.services.rule_matcher import describe_candidates, get_enabled_auto_sell_rules, match_rule
from app.services.workflow import WorkflowContext, WorkflowRunner, is_already_running

logger = logging.getLogger(__name__)

settings = get_settings()

ORDER_DETAIL_FIELDS = (
    "account_id", "item_id", "item_title", "item_pic_url", "price",
    "buyer_user_id", "buyer_nickname", "status", "status_text", "sku_text",
    "order_time", "pay_time", "ship_time", "complete_time",
)

# create_task 결과를 잡아두지 않으면 GC 될 수 있음
_background_tasks: Set[asyncio.Task] = set()


# ---------------------------------------------------------
# Order persistence
# ---------------------------------------------------------
def get_order_by_id(db: Session, order_id: str) -> Optional[Order]:
    return db.query(Order).filter(Order.order_id == order_id).first()


def upsert_order(db: Session, order_id: str, **fields: Any) -> Order:
    """
    값이 있는 필드만 덮어쓴다.
    나중 데이터가 빈 칸을 채울 수는 있어도, 채워진 값을 None 으로 되돌리지는 않음
    """
    order = get_order_by_id(db, order_id)
    if order is None:
        order = Order(order_id=order_id)
        db.add(order)

    for name, value in fields.items():
        if value is None:
            continue
        setattr(order, name, value)

    db.commit()
    db.refresh(order)
    return order


def list_orders(
    db: Session,
    account_id: Optional[str] = None,
    status: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Order], int]:
    query = db.query(Order)
    if account_id:
        query = query.filter(Order.account_id == account_id)
    if status is not None:
        query = query.filter(Order.status == status)
    total = query.count()
    orders = query.order_by(Order.created_at.desc()).offset(offset).limit(limit).all()
    return orders, total


# ---------------------------------------------------------
# Event ingestion
# ---------------------------------------------------------
def record_order_event(
    db: Session,
    account_id: str,
    order_id: str,
    chat_id: Optional[str] = None,
) -> Order:
    logger.info("[주문] 주문 메시지 수신: order=%s, account=%s, chat=%s", order_id, account_id, chat_id or "-")

    existing = get_order_by_id(db, order_id)
    if existing is None:
        order = upsert_order(
            db,
            order_id,
            account_id=account_id,
            status=0,
            status_text=PLACEHOLDER_STATUS_TEXT,
            chat_id=chat_id,
        )
        logger.info("[주문] 새 주문 레코드 생성: %s", order_id)
        return order

    logger.debug("[주문] 이미 존재하는 주문: %s, 현재 상태=%s", order_id, existing.status_text)
    if chat_id and not existing.chat_id:
        existing = upsert_order(db, order_id, chat_id=chat_id)
        logger.info("[주문] 채팅 ID 보충: %s", order_id)
    return existing


async def refresh_order_detail(
    db: Session,
    client: MarketplaceClient,
    order_id: str,
    *,
    workflow_runner: Optional[WorkflowRunner] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[OrderDetailData]:
    """
    상세 조회 → 파싱 → 저장 → 상태 진입 시 자동 발송
    실패/빈 응답이면 None (재시도 안 함)
    """
    try:
        try:
            detail = await asyncio.wait_for(
                client.fetch_order_detail(order_id),
                timeout=settings.detail_fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("주문 상세 조회 타임아웃 (%ss): %s", settings.detail_fetch_timeout, order_id)
            return None
        except MarketplaceClientError as e:
            logger.warning("주문 상세 조회 실패 (세션): %s - %s", order_id, e)
            return None

        data = detail.get("data") if isinstance(detail, dict) else None
        if not data:
            logger.warning("주문 상세 응답이 비어있음: %s", order_id)
            return None

        parsed = parse_order_detail(order_id, client.account_id, data)

        old = get_order_by_id(db, order_id)
        old_trigger = trigger_for_status(old.status, old.status_text) if old else None

        logger.info(
            "[주문 상세] order=%s, status=%s, text=%s, 이전 상태=%s",
            order_id, parsed.status, parsed.status_text, old.status if old else "-",
        )

        upsert_order(db, order_id, **parsed.model_dump(include=set(ORDER_DETAIL_FIELDS)))

        new_trigger = trigger_for_status(parsed.status, parsed.status_text)
        if new_trigger and new_trigger != old_trigger:
            logger.info("[상태 변경] 주문 %s -> %s 진입, 자동 발송 시작", order_id, new_trigger)
            parsed.fired_trigger = new_trigger
            await trigger_auto_sell(
                db,
                client.account_id,
                order_id,
                parsed.item_id,
                parsed.buyer_user_id,
                new_trigger,
                workflow_runner=workflow_runner,
                http_client=http_client,
            )
        else:
            logger.debug(
                "[주문 상태] %s 변경 없음 또는 발송 대상 아님: status=%s, text=%s",
                order_id, parsed.status, parsed.status_text,
            )

        return parsed
    except Exception as e:
        logger.error("주문 상세 처리 실패: %s - %s", order_id, e, exc_info=True)
        db.rollback()
        return None


async def trigger_auto_sell(
    db: Session,
    account_id: str,
    order_id: str,
    item_id: Optional[str],
    buyer_user_id: Optional[str],
    trigger_on: str,
    *,
    workflow_runner: Optional[WorkflowRunner] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> DeliveryResult:
    try:
        if has_delivered(db, order_id):
            logger.info("[자동발송 트리거] 주문 %s 이미 발송됨", order_id)
            return DeliveryResult(
                success=False,
                outcome=DeliveryOutcome.ALREADY_DELIVERED,
                error=ERR_ALREADY_DELIVERED,
            )

        order = get_order_by_id(db, order_id)
        chat_id = order.chat_id if order else None
        sku_text = order.sku_text if order else None

        logger.info(
            "[자동발송 트리거] 주문 %s, item=%s, sku='%s', trigger=%s",
            order_id, item_id, sku_text or "-", trigger_on,
        )

        rules = get_enabled_auto_sell_rules(db, account_id, item_id)
        rule = match_rule(rules, trigger_on, sku_text)
        if rule is None:
            logger.warning(
                "[자동발송 트리거] 주문 %s 매칭 규칙 없음. 후보: %s",
                order_id, describe_candidates(rules),
            )
            return record_no_match(db, account_id, order_id)

        if rule.workflow_id and workflow_runner is not None:
            return await _start_workflow(
                workflow_runner, rule.workflow_id, rule.id, rule.name,
                WorkflowContext(
                    order_id=order_id,
                    account_id=account_id,
                    rule_id=rule.id,
                    item_id=item_id,
                    buyer_user_id=buyer_user_id,
                    chat_id=chat_id,
                    sku_text=sku_text,
                ),
            )
        if rule.workflow_id:
            logger.warning("규칙 '%s' 에 워크플로가 연결돼 있지만 실행기가 없음, 직접 발송", rule.name)

        extra = AutoSellContext(
            order_id=order_id,
            account_id=account_id,
            item_id=item_id,
            buyer_user_id=buyer_user_id,
            chat_id=chat_id,
            sku_text=sku_text,
        )

        if rule.delay_seconds and rule.delay_seconds > 0:
            # 호출자(HTTP 요청 등)를 붙잡지 않도록 지연 발송은 백그라운드로
            logger.info("주문 %s 발송 %s초 지연 예약", order_id, rule.delay_seconds)
            spawn_background(
                _deliver_after_delay(
                    db.get_bind(), rule.delay_seconds,
                    account_id, order_id, item_id, trigger_on, extra, http_client,
                ),
                name=f"delayed-delivery-{order_id}",
            )
            return DeliveryResult(success=True, outcome=DeliveryOutcome.SCHEDULED, rule_name=rule.name)

        return await process_auto_sell(
            db, account_id, order_id, item_id, trigger_on, extra, http_client=http_client
        )
    except Exception as e:
        logger.error("[자동발송 트리거] 예외: %s - %s", order_id, e, exc_info=True)
        return DeliveryResult(success=False, outcome=DeliveryOutcome.INTERNAL_ERROR, error=str(e))


async def _deliver_after_delay(
    bind: Engine,
    delay_seconds: int,
    account_id: str,
    order_id: str,
    item_id: Optional[str],
    trigger_on: str,
    extra: AutoSellContext,
    http_client: Optional[httpx.AsyncClient],
) -> DeliveryResult:
    await asyncio.sleep(delay_seconds)
    # 원래 요청의 세션은 이미 닫혔을 수 있으니 새 세션
    db = Session(bind=bind, autoflush=False)
    try:
        return await process_auto_sell(
            db, account_id, order_id, item_id, trigger_on, extra, http_client=http_client
        )
    finally:
        db.close()


async def _start_workflow(
    runner: WorkflowRunner,
    workflow_id: int,
    rule_id: int,
    rule_name: str,
    context: WorkflowContext,
) -> DeliveryResult:
    result = await runner.start_workflow_execution(workflow_id, context)
    if result.success:
        logger.info("[자동발송 트리거] 워크플로 시작: order=%s, rule=%s", context.order_id, rule_name)
        return DeliveryResult(success=True, outcome=DeliveryOutcome.WORKFLOW_STARTED, rule_name=rule_name)

    if is_already_running(result):
        logger.info("[자동발송 트리거] 워크플로 이미 실행 중: %s", context.order_id)
    else:
        logger.warning("[자동발송 트리거] 워크플로 시작 실패: %s - %s", context.order_id, result.error)
    return DeliveryResult(
        success=False,
        outcome=DeliveryOutcome.WORKFLOW_FAILED,
        error=result.error,
        rule_name=rule_name,
    )


# ---------------------------------------------------------
# Background dispatch
# ---------------------------------------------------------
def _on_background_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("백그라운드 작업 실패 (%s): %s", task.get_name(), exc, exc_info=exc)


def spawn_background(coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
    """Run `coro` detached; failures are logged, never propagated."""
    task = asyncio.create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_on_background_done)
    return task


async def fetch_order_detail_async(
    registry: ClientRegistry,
    account_id: str,
    order_id: str,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    workflow_runner: Optional[WorkflowRunner] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[OrderDetailData]:
    logger.info("[주문 상세] 조회 시작: order=%s, account=%s", order_id, account_id)
    client = registry.get_client(account_id)
    if client is None:
        logger.warning("[주문 상세] 계정 %s 클라이언트가 없거나 연결 안 됨", account_id)
        return None

    db = session_factory()
    try:
        detail = await refresh_order_detail(
            db, client, order_id,
            workflow_runner=workflow_runner,
            http_client=http_client,
        )
    finally:
        db.close()

    if detail:
        logger.info("[주문 상세] 조회 성공: %s", order_id)
    else:
        logger.warning("[주문 상세] 조회 실패 또는 비어있음: %s", order_id)
    return detail


def handle_order_message(
    registry: ClientRegistry,
    account_id: str,
    order_id: str,
    chat_id: Optional[str] = None,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    workflow_runner: Optional[WorkflowRunner] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Optional[asyncio.Task]:
    """
    세션 레이어의 "새 메시지" 콜백에서 호출 (이벤트 루프 안에서)
    placeholder 기록은 바로, 상세 조회는 백그라운드로
    """
    db = session_factory()
    try:
        record_order_event(db, account_id, order_id, chat_id)
    except Exception as e:
        logger.error("[주문] placeholder 기록 실패: %s - %s", order_id, e, exc_info=True)
        db.rollback()
        return None
    finally:
        db.close()

    return spawn_background(
        fetch_order_detail_async(
            registry, account_id, order_id,
            session_factory=session_factory,
            workflow_runner=workflow_runner,
            http_client=http_client,
        ),
        name=f"order-detail-{order_id}",
    )
