import hmac
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session
from typing import List, Optional
from storefront.api.deps import OrderId, get_db, get_lifecycle, get_now
from storefront.core.auth import create_access_token, require_admin
from storefront.core.config import settings
from storefront.schemas import (AdminCancel, AdminLogin, AdminOrderRead, AdminOrderResult, OrderStats,
                                ReviewToggle, StatusUpdate, TokenResponse)
from storefront.services.lifecycle import LifecycleResult, OrderLifecycle
from storefront.services.stats import order_statistics

logger = logging.getLogger(__name__)

router = APIRouter()

def _result(result: LifecycleResult) -> AdminOrderResult:
    return AdminOrderResult(order=AdminOrderRead.model_validate(result.order),
                            notifications_sent=result.notifications_sent)

@router.post("/login", response_model=TokenResponse)
def login(payload: AdminLogin):
    user_ok = hmac.compare_digest(payload.username.encode(), settings.ADMIN_USERNAME.encode())
    pass_ok = hmac.compare_digest(payload.password.encode(), settings.ADMIN_PASSWORD.encode())
    if not (user_ok and pass_ok):
        logger.warning("Failed admin login for %r", payload.username)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = create_access_token(payload.username, "admin")
    return TokenResponse(access_token=token, expires_in=settings.ACCESS_TOKEN_EXPIRES_SECONDS)

@router.get("/orders", response_model=List[AdminOrderRead], dependencies=[Depends(require_admin)])
def list_orders(status: Optional[str] = None, reviewed: Optional[bool] = None, q: Optional[str] = None,
                limit: int = Query(50, ge=1, le=200), offset: int = Query(0, ge=0),
                engine: OrderLifecycle = Depends(get_lifecycle)):
    return engine.orders.list(status=status, reviewed=reviewed, q=q, limit=limit, offset=offset)

@router.get("/orders/stats", response_model=OrderStats, dependencies=[Depends(require_admin)])
def stats(db: Session = Depends(get_db), now=Depends(get_now)):
    return order_statistics(db, now)

@router.get("/orders/{order_id}", response_model=AdminOrderRead, dependencies=[Depends(require_admin)])
def get_order(order_id: OrderId, engine: OrderLifecycle = Depends(get_lifecycle)):
    return engine.orders.get(order_id)

@router.post("/orders/{order_id}/review", response_model=AdminOrderResult, dependencies=[Depends(require_admin)])
def toggle_review(order_id: OrderId, payload: ReviewToggle, engine: OrderLifecycle = Depends(get_lifecycle)):
    return _result(engine.set_reviewed(order_id, payload.reviewed))

@router.post("/orders/{order_id}/status", response_model=AdminOrderResult, dependencies=[Depends(require_admin)])
def update_status(order_id: OrderId, payload: StatusUpdate, engine: OrderLifecycle = Depends(get_lifecycle)):
    return _result(engine.set_status(order_id, payload.status))

@router.post("/orders/{order_id}/complete", response_model=AdminOrderResult, dependencies=[Depends(require_admin)])
def complete_order(order_id: OrderId, engine: OrderLifecycle = Depends(get_lifecycle)):
    return _result(engine.complete(order_id))

@router.post("/orders/{order_id}/cancel", response_model=AdminOrderResult, dependencies=[Depends(require_admin)])
def cancel_order(order_id: OrderId, payload: Optional[AdminCancel] = None, engine: OrderLifecycle = Depends(get_lifecycle)):
    return _result(engine.admin_cancel(order_id, reason=payload.reason if payload else None))

@router.delete("/orders/{order_id}", status_code=204, dependencies=[Depends(require_admin)])
def delete_order(order_id: OrderId, engine: OrderLifecycle = Depends(get_lifecycle)):
    engine.delete(order_id)
    return Response(status_code=204)
