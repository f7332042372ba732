import html
from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse
from typing import List
from storefront.api.deps import OrderId, get_lifecycle
from storefront.core.auth import get_customer_identity
from storefront.errors import OrderError
from storefront.schemas import MAX_INT, ActiveOrderResponse, OrderCreate, OrderRead, OrderResult
from storefront.services.identity import CustomerIdentity
from storefront.services.lifecycle import OrderLifecycle

router = APIRouter()

@router.post("/orders", response_model=OrderResult, status_code=201)
def place_order(payload: OrderCreate, identity: CustomerIdentity = Depends(get_customer_identity),
                engine: OrderLifecycle = Depends(get_lifecycle)):
    result = engine.place_order(identity, payload)
    return OrderResult(order=OrderRead.model_validate(result.order), notifications_sent=result.notifications_sent)

@router.get("/orders/active", response_model=ActiveOrderResponse)
def active_order(identity: CustomerIdentity = Depends(get_customer_identity),
                 engine: OrderLifecycle = Depends(get_lifecycle)):
    active = engine.active_order(identity)
    if active.order is None:
        return ActiveOrderResponse(has_order=False)
    return ActiveOrderResponse(
        has_order=True,
        order=OrderRead.model_validate(active.order),
        can_cancel=active.can_cancel,
        cancel_deadline=active.cancel_deadline,
        seconds_remaining=active.seconds_remaining,
    )

@router.get("/orders", response_model=List[OrderRead])
def my_orders(identity: CustomerIdentity = Depends(get_customer_identity),
              engine: OrderLifecycle = Depends(get_lifecycle)):
    return engine.customer_orders(identity)

@router.get("/orders/{order_id}", response_model=OrderRead)
def get_my_order(order_id: OrderId, identity: CustomerIdentity = Depends(get_customer_identity),
                 engine: OrderLifecycle = Depends(get_lifecycle)):
    return engine.get_owned(order_id, identity)

@router.post("/orders/{order_id}/cancel", response_model=OrderResult)
def cancel_order(order_id: OrderId, identity: CustomerIdentity = Depends(get_customer_identity),
                 engine: OrderLifecycle = Depends(get_lifecycle)):
    result = engine.cancel_order(order_id, identity)
    return OrderResult(order=OrderRead.model_validate(result.order), notifications_sent=result.notifications_sent)

REVIEW_PAGE = """<!doctype html>
<html><head><meta charset="utf-8"><title>{title}</title></head>
<body><h1>{title}</h1><p>{message}</p></body></html>"""

@router.get("/review-order", response_class=HTMLResponse)
def review_order(order: int = Query(..., gt=0, le=MAX_INT), token: str = Query(...), engine: OrderLifecycle = Depends(get_lifecycle)):
    """Target of the link in the admin "new order" email."""
    try:
        result = engine.review_from_link(order, token)
    except OrderError as exc:
        return HTMLResponse(REVIEW_PAGE.format(title="Review failed", message=html.escape(exc.message)),
                            status_code=exc.status_code)
    o = result.order
    return HTMLResponse(REVIEW_PAGE.format(
        title="Order reviewed",
        message=html.escape(f"Order {o.order_number} for {o.customer_name} is marked as {o.status}."),
    ))
