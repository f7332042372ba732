"""Order lifecycle engine.

Placement, customer cancellation and the admin review/processing/completion
steps all run through here. Status writes go through
``OrderRepository.update_status``, which checks the transition table again
before writing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from storefront.core.auth import verify_review_token
from storefront.core.config import Settings, settings as default_settings
from storefront.db.models import Order, OrderItem, OrderStatus, now_utc
from storefront.errors import (ConflictError, NotFoundError, NotOwnedError, OrderValidationError,
                               UpstreamUnavailable)
from storefront.schemas import OrderCreate, OrderLine
from storefront.services import notifications
from storefront.services.catalog import CatalogRepository
from storefront.services.identity import CustomerIdentity
from storefront.services.repository import OrderRepository, audit_entry
from storefront.services.transitions import cancellation_deadline, customer_cancel_denial, terminal_denial

logger = logging.getLogger(__name__)

S = OrderStatus

@dataclass
class LifecycleResult:
    order: Order
    notifications_sent: bool = False

@dataclass
class ActiveOrder:
    order: Optional[Order]
    can_cancel: bool = False
    cancel_deadline: Optional[datetime] = None
    seconds_remaining: int = 0

class OrderLifecycle:
    def __init__(self, orders: OrderRepository, catalog: CatalogRepository, notifier,
                 settings: Settings = default_settings, clock: Callable[[], datetime] = now_utc):
        self.orders = orders
        self.catalog = catalog
        self.notifier = notifier
        self.settings = settings
        self.clock = clock

    @property
    def cancellation_window(self) -> timedelta:
        return timedelta(minutes=self.settings.CANCELLATION_WINDOW_MINUTES)

    # --- placement ---

    def price_lines(self, lines: List[OrderLine]) -> List[OrderItem]:
        """Turn requested lines into priced order items, or reject the whole set."""
        if not lines:
            raise OrderValidationError("Order must contain at least one item", reason="empty_order")
        variants = self.catalog.get_variants(line.variant_id for line in lines)
        problems = []
        items = []
        for line in lines:
            v = variants.get(line.variant_id)
            problem = None
            cap = None
            if v is None:
                problem = "variant_not_found"
            elif v.is_whole_bottle:
                problem = "whole_bottle"
            elif v.fragrance.hidden or v.price_cents is None:
                problem = "unavailable"
            elif not v.in_stock:
                problem = "out_of_stock"
            else:
                cap = v.max_quantity or self.settings.MAX_ITEM_QUANTITY
                if not 1 <= line.quantity <= cap:
                    problem = "quantity_out_of_range"
            if problem:
                entry = {"variant_id": line.variant_id, "reason": problem}
                if cap is not None:
                    entry["max_quantity"] = cap
                problems.append(entry)
                continue
            items.append(OrderItem(
                fragrance_id=v.fragrance_id,
                variant_id=v.id,
                fragrance_name=v.fragrance.name,
                fragrance_brand=v.fragrance.brand,
                variant_size=v.label,
                quantity=line.quantity,
                unit_price_cents=v.price_cents,
                total_price_cents=v.price_cents * line.quantity,
                is_whole_bottle=False,
            ))
        if problems:
            raise OrderValidationError("One or more items cannot be ordered", reason="invalid_items", items=problems)
        return items

    def _active_conflict(self, existing: Optional[Order]) -> ConflictError:
        return ConflictError(
            "You already have an active order. Please wait for it to complete or cancel it before placing a new one.",
            reason="active_order_exists",
            order_id=existing.id if existing else None,
            order_number=existing.order_number if existing else None,
        )

    def place_order(self, identity: CustomerIdentity, payload: OrderCreate) -> LifecycleResult:
        existing = self.orders.find_active_for_customer(identity)
        if existing:
            raise self._active_conflict(existing)

        email = payload.customer_email or identity.email
        if not identity.is_guest and not email:
            raise OrderValidationError("An email address is required", reason="email_required")

        items = self.price_lines(payload.items)
        total = sum(it.total_price_cents for it in items)
        now = self.clock()
        actor = "guest" if identity.is_guest else "customer"
        order = Order(
            user_id=identity.user_id,
            customer_ip=identity.ip,
            customer_key=identity.key,
            customer_first_name=payload.customer_first_name,
            customer_last_name=payload.customer_last_name,
            customer_phone=payload.customer_phone,
            customer_email=email,
            delivery_address=payload.delivery_address,
            delivery_city=payload.delivery_city,
            delivery_region=payload.delivery_region,
            delivery_type=payload.delivery_type,
            notes=payload.notes,
            status=S.PENDING,
            reviewed=False,
            total_amount=total,
            review_deadline=now + self.cancellation_window,
            audit_log=[audit_entry("created", actor, now, total_amount=total)],
            created_at=now,
            updated_at=now,
        )
        try:
            order = self.orders.create(order, items)
        except ConflictError:
            # Lost a race with a concurrent placement; the unique index caught it.
            raise self._active_conflict(self.orders.find_active_for_customer(identity))

        if identity.is_guest:
            try:
                self.orders.point_session(identity, order)
            except UpstreamUnavailable:
                logger.error("Could not record session for order %s; the unique index still applies",
                             order.order_number)

        logger.info("Placed order %s for %s (%d items, total %d)",
                    order.order_number, identity.key, len(items), total)
        sent = self.notifier.notify(notifications.CREATED, order)
        return LifecycleResult(order, sent)

    # --- customer side ---

    def get_owned(self, order_id: int, identity: CustomerIdentity) -> Order:
        order = self.orders.find_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found or does not belong to you", order_id=order_id)
        if not identity.owns(order):
            logger.info("%s tried to access order %s", identity.key, order.order_number)
            raise NotOwnedError("Order not found or does not belong to you", order_id=order_id)
        return order

    def active_order(self, identity: CustomerIdentity) -> ActiveOrder:
        order = self.orders.find_active_for_customer(identity)
        if order is None:
            return ActiveOrder(None)
        now = self.clock()
        can_cancel = customer_cancel_denial(order, now, self.cancellation_window) is None
        deadline = cancellation_deadline(order, self.cancellation_window)
        remaining = int((deadline - now).total_seconds()) if can_cancel else 0
        return ActiveOrder(order, can_cancel, deadline, max(remaining, 0))

    def customer_orders(self, identity: CustomerIdentity) -> List[Order]:
        return self.orders.list_for_customer(identity)

    def cancel_order(self, order_id: int, identity: CustomerIdentity) -> LifecycleResult:
        order = self.get_owned(order_id, identity)
        now = self.clock()
        denial = customer_cancel_denial(order, now, self.cancellation_window)
        if denial:
            logger.info("Denied cancellation of %s: %s", order.order_number, denial.reason)
            raise denial
        actor = "guest" if identity.is_guest else "customer"
        order = self.orders.update_status(order.id, S.CANCELLED, audit_note={
            "reason": "customer_request", "actor": actor,
        })
        sent = self.notifier.notify(notifications.CANCELLED, order)
        return LifecycleResult(order, sent)

    # --- admin side ---

    def set_reviewed(self, order_id: int, reviewed: bool, actor: str = "admin") -> LifecycleResult:
        order = self.orders.get(order_id)
        denial = terminal_denial(order)
        if denial:
            raise denial
        if reviewed:
            if order.status != S.PENDING:
                return LifecycleResult(order)
            order = self.orders.update_status(order.id, S.REVIEWED, audit_note={"actor": actor})
            sent = self.notifier.notify(notifications.REVIEWED, order)
            return LifecycleResult(order, sent)
        if order.status == S.PENDING:
            return LifecycleResult(order)
        # processing -> pending is not in the table; update_status reports it
        order = self.orders.update_status(order.id, S.PENDING, audit_note={"actor": actor, "reason": "review_unmarked"})
        return LifecycleResult(order)

    def start_processing(self, order_id: int) -> LifecycleResult:
        order = self.orders.get(order_id)
        if order.status == S.PROCESSING:
            return LifecycleResult(order)
        was_reviewed = order.reviewed
        order = self.orders.update_status(order.id, S.PROCESSING, audit_note={"actor": "admin"})
        sent = False
        if not was_reviewed:
            sent = self.notifier.notify(notifications.REVIEWED, order)
        return LifecycleResult(order, sent)

    def complete(self, order_id: int) -> LifecycleResult:
        order = self.orders.get(order_id)
        order = self.orders.update_status(order.id, S.COMPLETED, audit_note={"actor": "admin"})
        return LifecycleResult(order)

    def admin_cancel(self, order_id: int, reason: Optional[str] = None) -> LifecycleResult:
        """Cancel from any active state.

        Reviewed or processing orders are unmarked and cancelled in the same
        write. The cancellation window only limits customers.
        """
        order = self.orders.get(order_id)
        denial = terminal_denial(order)
        if denial:
            raise denial
        note = {"actor": "admin", "reason": reason or "admin_request"}
        if order.reviewed or order.status != S.PENDING:
            note["unmarked_review"] = True
        order = self.orders.update_status(order.id, S.CANCELLED, audit_note=note, clear_review=True)
        sent = self.notifier.notify(notifications.CANCELLED, order)
        return LifecycleResult(order, sent)

    def set_status(self, order_id: int, target: str) -> LifecycleResult:
        """Admin status change by name, dispatched to the matching transition."""
        if target == S.PENDING:
            return self.set_reviewed(order_id, False)
        if target == S.REVIEWED:
            return self.set_reviewed(order_id, True)
        if target == S.PROCESSING:
            return self.start_processing(order_id)
        if target == S.COMPLETED:
            return self.complete(order_id)
        if target == S.CANCELLED:
            return self.admin_cancel(order_id)
        raise OrderValidationError(f"Unknown status {target!r}", reason="invalid_status", valid=list(S.ALL))

    def review_from_link(self, order_id: int, token: str) -> LifecycleResult:
        if not verify_review_token(token, order_id, config=self.settings):
            raise OrderValidationError("Review link is invalid or has expired", reason="invalid_review_token")
        return self.set_reviewed(order_id, True, actor="review_link")

    def delete(self, order_id: int):
        self.orders.delete(order_id)
