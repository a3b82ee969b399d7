from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas import OrderStatusOut, OrderStatusUpdate
from app.services.ordering_service import update_order_status

router = APIRouter(prefix='/orders', tags=['orders'])


@router.patch('/{order_id}/status', response_model=OrderStatusOut)
def change_order_status(
    order_id: str,
    body: OrderStatusUpdate,
    db: Session = Depends(get_db),
):
    try:
        order = update_order_status(db, order_id=order_id, status=body.status, actor_id=body.actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    db.commit()
    return OrderStatusOut(
        id=order.id,
        order_number=order.order_number,
        status=order.status,
        fulfilled_at=order.fulfilled_at,
        fulfilled_by=order.fulfilled_by,
    )
