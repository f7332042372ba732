"""Order status transition table and the guards built on top of it.

Both the lifecycle engine and the repository consult this module, so there is
exactly one place that decides whether a status change is legal.
"""
from datetime import datetime, timedelta
from typing import Optional
from storefront.db.models import Order, OrderStatus
from storefront.errors import TransitionDenied

S = OrderStatus

# pending <- reviewed is the admin "unmark review" step.
TRANSITIONS = {
    S.PENDING: {S.REVIEWED, S.PROCESSING, S.CANCELLED},
    S.REVIEWED: {S.PENDING, S.PROCESSING, S.COMPLETED, S.CANCELLED},
    S.PROCESSING: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

def terminal_denial(order: Order) -> Optional[TransitionDenied]:
    if order.status == S.CANCELLED:
        return TransitionDenied(TransitionDenied.ALREADY_CANCELLED, "Order has already been cancelled",
                                order_number=order.order_number, current_status=order.status)
    if order.status == S.COMPLETED:
        return TransitionDenied(TransitionDenied.ALREADY_COMPLETED, "Order has already been completed",
                                order_number=order.order_number, current_status=order.status)
    return None

def assert_transition(order: Order, target: str):
    """Raise TransitionDenied unless ``order.status -> target`` is in the table."""
    denial = terminal_denial(order)
    if denial:
        raise denial
    if target not in TRANSITIONS.get(order.status, ()):
        if target == S.COMPLETED:
            raise TransitionDenied(TransitionDenied.NOT_REVIEWED,
                                   "Only reviewed or processing orders can be completed",
                                   order_number=order.order_number, current_status=order.status)
        raise TransitionDenied(TransitionDenied.NOT_ALLOWED,
                               f"Cannot move order from {order.status} to {target}",
                               order_number=order.order_number, current_status=order.status)

def elapsed_hours(order: Order, now: datetime) -> float:
    return round((now - order.created_at).total_seconds() / 3600, 2)

def cancellation_deadline(order: Order, window: timedelta) -> datetime:
    return order.created_at + window

def customer_cancel_denial(order: Order, now: datetime, window: timedelta) -> Optional[TransitionDenied]:
    """Why a customer may not cancel ``order`` right now, or None if they may."""
    denial = terminal_denial(order)
    if denial:
        return denial
    if order.reviewed or order.status != S.PENDING:
        return TransitionDenied(TransitionDenied.ALREADY_REVIEWED,
                                "Order has already been reviewed and can no longer be cancelled",
                                order_number=order.order_number, current_status=order.status)
    if now - order.created_at >= window:
        window_hours = round(window.total_seconds() / 3600, 2)
        return TransitionDenied(TransitionDenied.WINDOW_EXPIRED,
                                f"Cancellation period expired. Orders can only be cancelled within "
                                f"{window_hours:g} hour(s) of placement.",
                                order_number=order.order_number,
                                time_elapsed_hours=elapsed_hours(order, now),
                                window_hours=window_hours)
    return None

def can_customer_cancel(order: Order, now: datetime, window: timedelta) -> bool:
    return customer_cancel_denial(order, now, window) is None
