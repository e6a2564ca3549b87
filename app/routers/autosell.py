from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.models.autosell_rule import AutoSellRule
from app.schemas.autosell import (
    AutoSellContext,
    AutoSellRuleCreate,
    AutoSellRuleRead,
    AutoSellRuleUpdate,
    DeliveryLogRead,
    DeliveryResult,
    ManualDeliveryRequest,
    StockImport,
    StockImportResult,
    StockStats,
)
from app.services.autosell import get_rule_stock_status, process_auto_sell
from app.services.delivery_log import list_delivery_logs
from app.services.stock_ledger import add_stock_items

router = APIRouter(prefix="/autosell", tags=["autosell"])


def _get_rule_or_404(rule_id: int, db: Session) -> AutoSellRule:
    rule = db.query(AutoSellRule).filter(AutoSellRule.id == rule_id).first()
    if not rule:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Rule not found",
        )
    return rule


def _attach_stock(rule: AutoSellRule, db: Session) -> AutoSellRuleRead:
    """
    Helper function to attach stock stats when converting
    a SQLAlchemy AutoSellRule object to AutoSellRuleRead.
    """
    data = AutoSellRuleRead.model_validate(rule)
    if rule.delivery_type == "stock":
        data.stock = get_rule_stock_status(db, rule.id)
    return data


@router.get("/rules", response_model=List[AutoSellRuleRead])
def list_rules(
    account_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    query = db.query(AutoSellRule)
    if account_id:
        query = query.filter(AutoSellRule.account_id == account_id)
    # Catalog order (id asc) is the matching order
    rules = query.order_by(AutoSellRule.id.asc()).all()
    return [_attach_stock(r, db) for r in rules]


@router.post("/rules", response_model=AutoSellRuleRead, status_code=status.HTTP_201_CREATED)
def create_rule(
    rule_in: AutoSellRuleCreate,
    db: Session = Depends(get_db),
):
    rule = AutoSellRule(**rule_in.model_dump())
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return _attach_stock(rule, db)


@router.get("/rules/{rule_id}", response_model=AutoSellRuleRead)
def get_rule(
    rule_id: int,
    db: Session = Depends(get_db),
):
    rule = _get_rule_or_404(rule_id, db)
    return _attach_stock(rule, db)


@router.put("/rules/{rule_id}", response_model=AutoSellRuleRead)
def update_rule(
    rule_id: int,
    rule_in: AutoSellRuleUpdate,
    db: Session = Depends(get_db),
):
    rule = _get_rule_or_404(rule_id, db)

    # exclude_unset=True: Do not touch fields that were not sent
    data = rule_in.model_dump(exclude_unset=True)
    for field, value in data.items():
        setattr(rule, field, value)

    if rule.delivery_type == "api" and not rule.api_config:
        raise HTTPException(status_code=400, detail="api_config is required for delivery_type=api")

    db.add(rule)
    db.commit()
    db.refresh(rule)
    return _attach_stock(rule, db)


@router.get("/rules/{rule_id}/stock", response_model=StockStats)
def rule_stock_status(
    rule_id: int,
    db: Session = Depends(get_db),
):
    _get_rule_or_404(rule_id, db)
    return get_rule_stock_status(db, rule_id)


@router.post("/rules/{rule_id}/stock", response_model=StockImportResult)
def import_stock(
    rule_id: int,
    stock_in: StockImport,
    db: Session = Depends(get_db),
):
    rule = _get_rule_or_404(rule_id, db)
    if rule.delivery_type != "stock":
        raise HTTPException(status_code=400, detail="Rule is not a stock rule")

    added = add_stock_items(db, rule_id, stock_in.items)
    return StockImportResult(added=added, stock=get_rule_stock_status(db, rule_id))


@router.post("/deliver", response_model=DeliveryResult)
async def manual_deliver(
    req: ManualDeliveryRequest,
    db: Session = Depends(get_db),
):
    # Failures come back as DeliveryResult, not as HTTP errors
    return await process_auto_sell(
        db,
        req.account_id,
        req.order_id,
        req.item_id,
        req.trigger_on,
        AutoSellContext(
            order_id=req.order_id,
            account_id=req.account_id,
            item_id=req.item_id,
            buyer_user_id=req.buyer_user_id,
            chat_id=req.chat_id,
            sku_text=req.sku_text,
        ),
    )


@router.get("/logs", response_model=List[DeliveryLogRead])
def delivery_logs(
    order_id: Optional[str] = None,
    account_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return list_delivery_logs(db, order_id=order_id, account_id=account_id, limit=limit, offset=offset)
