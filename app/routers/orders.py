from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.schemas.order import OrderDetailData, OrderList, OrderRead
from app.services.order_tracker import get_order_by_id, list_orders, refresh_order_detail

router = APIRouter(prefix="/orders", tags=["orders"])

settings = get_settings()


@router.get("/", response_model=OrderList)
def get_orders(
    account_id: Optional[str] = None,
    status_code: Optional[int] = Query(default=None, alias="status"),
    limit: int = Query(default=settings.default_page_size, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    orders, total = list_orders(db, account_id=account_id, status=status_code, limit=limit, offset=offset)
    return OrderList(
        orders=[OrderRead.model_validate(o) for o in orders],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
):
    order = get_order_by_id(db, order_id)
    if not order:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Order not found",
        )
    return order


@router.post("/{order_id}/refresh", response_model=OrderDetailData)
async def refresh_order(
    order_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    order = get_order_by_id(db, order_id)
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")

    client = request.app.state.client_registry.get_client(order.account_id)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Account {order.account_id} is not connected",
        )

    detail = await refresh_order_detail(
        db, client, order_id,
        workflow_runner=getattr(request.app.state, "workflow_runner", None),
    )
    if detail is None:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Order detail fetch failed")
    return detail
