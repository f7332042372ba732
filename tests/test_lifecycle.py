from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from storefront.db.models import CustomerSession, Order, OrderItem, OrderStatus
from storefront.errors import (ConflictError, NotFoundError, OrderError, OrderValidationError, TransitionDenied,
                               UpstreamUnavailable)
from storefront.schemas import OrderCreate
from storefront.services.identity import CustomerIdentity
from storefront.services.repository import OrderRepository

from conftest import START, order_payload

def place(lifecycle, identity, items=None, **overrides):
    return lifecycle.place_order(identity, OrderCreate(**order_payload(items, **overrides)))

def test_place_order_computes_totals_and_deadline(lifecycle, guest, outbox):
    result = place(lifecycle, guest, items=[{"variant_id": 7, "quantity": 2}, {"variant_id": 8, "quantity": 1}])
    order = result.order

    assert order.order_number == "ORD000001"
    assert order.status == OrderStatus.PENDING
    assert order.reviewed is False
    assert [it.total_price_cents for it in order.items] == [10000, 9000]
    assert order.total_amount == sum(it.total_price_cents for it in order.items) == 19000
    assert order.created_at == START
    assert order.review_deadline == START + timedelta(hours=1)
    assert order.customer_key == "ip:10.0.0.1"
    assert order.items[0].fragrance_name == "Oud Royal"
    assert order.items[0].variant_size == "5ml"
    assert result.notifications_sent is True
    assert len(outbox) == 2

def test_immediate_cancel_within_window(lifecycle, guest, clock, outbox):
    order = place(lifecycle, guest, items=[{"variant_id": 7, "quantity": 2}]).order
    assert order.total_amount == 10000

    clock.advance(minutes=10)
    result = lifecycle.cancel_order(order.id, guest)

    assert result.order.status == OrderStatus.CANCELLED
    assert result.order.cancelled_at == START + timedelta(minutes=10)
    assert result.notifications_sent is True
    note = result.order.audit_log[-1]
    assert note["to"] == "cancelled" and note["reason"] == "customer_request" and note["actor"] == "guest"
    assert any("Cancelled" in s for s in outbox.subjects())

def test_cancel_after_review_is_denied(lifecycle, guest):
    order = place(lifecycle, guest).order
    lifecycle.set_reviewed(order.id, True)

    with pytest.raises(TransitionDenied) as exc:
        lifecycle.cancel_order(order.id, guest)
    assert exc.value.reason == "already_reviewed"

def test_cancel_after_window_reports_elapsed_hours(lifecycle, guest, clock):
    order = place(lifecycle, guest).order
    clock.advance(minutes=90)

    with pytest.raises(TransitionDenied) as exc:
        lifecycle.cancel_order(order.id, guest)
    assert exc.value.reason == "window_expired"
    assert exc.value.extra["time_elapsed_hours"] == 1.5
    assert exc.value.extra["window_hours"] == 1

def test_window_boundary_is_exclusive(lifecycle, guest, clock):
    order = place(lifecycle, guest).order
    clock.advance(hours=1)
    with pytest.raises(TransitionDenied) as exc:
        lifecycle.cancel_order(order.id, guest)
    assert exc.value.reason == "window_expired"

def test_second_order_for_same_guest_conflicts(lifecycle, guest):
    first = place(lifecycle, guest).order
    with pytest.raises(ConflictError) as exc:
        place(lifecycle, guest, items=[{"variant_id": 8, "quantity": 1}])
    assert exc.value.extra["order_number"] == first.order_number

def test_new_order_allowed_after_cancel(lifecycle, guest, db):
    first = place(lifecycle, guest).order
    lifecycle.cancel_order(first.id, guest)
    second = place(lifecycle, guest).order

    assert second.id != first.id
    session = db.query(CustomerSession).filter_by(customer_ip="10.0.0.1").one()
    assert session.active_order_id == second.id

@pytest.mark.parametrize("line, reason", [
    ({"variant_id": 9, "quantity": 1}, "whole_bottle"),
    ({"variant_id": 10, "quantity": 1}, "out_of_stock"),
    ({"variant_id": 11, "quantity": 1}, "unavailable"),
    ({"variant_id": 999, "quantity": 1}, "variant_not_found"),
    ({"variant_id": 7, "quantity": 51}, "quantity_out_of_range"),
    ({"variant_id": 8, "quantity": 4}, "quantity_out_of_range"),
])
def test_unorderable_lines_reject_whole_order(lifecycle, guest, db, outbox, line, reason):
    with pytest.raises(OrderValidationError) as exc:
        place(lifecycle, guest, items=[{"variant_id": 7, "quantity": 1}, line])

    assert exc.value.extra["items"][0]["reason"] == reason
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert outbox == []

def test_empty_order_rejected(lifecycle, guest):
    with pytest.raises(OrderValidationError) as exc:
        place(lifecycle, guest, items=[])
    assert exc.value.reason == "empty_order"

def test_cancel_twice_is_denied_and_notifies_once(lifecycle, guest, outbox):
    order = place(lifecycle, guest).order
    lifecycle.cancel_order(order.id, guest)
    sent_after_first = len(outbox)

    for _ in range(2):
        with pytest.raises(TransitionDenied) as exc:
            lifecycle.cancel_order(order.id, guest)
        assert exc.value.reason == "already_cancelled"
    assert len(outbox) == sent_after_first

def test_terminal_orders_accept_no_transitions(lifecycle, guest):
    order = place(lifecycle, guest).order
    lifecycle.set_status(order.id, "reviewed")
    lifecycle.complete(order.id)

    for target in OrderStatus.ALL:
        with pytest.raises(TransitionDenied) as exc:
            lifecycle.set_status(order.id, target)
        assert exc.value.reason == "already_completed"

def test_complete_requires_review(lifecycle, guest):
    order = place(lifecycle, guest).order
    with pytest.raises(TransitionDenied) as exc:
        lifecycle.complete(order.id)
    assert exc.value.reason == "not_reviewed"

def test_processing_locks_customer_cancellation(lifecycle, guest, outbox):
    order = place(lifecycle, guest).order
    result = lifecycle.set_status(order.id, "processing")

    assert result.order.status == OrderStatus.PROCESSING
    assert result.order.reviewed is True
    assert result.notifications_sent is True
    with pytest.raises(TransitionDenied) as exc:
        lifecycle.cancel_order(order.id, guest)
    assert exc.value.reason == "already_reviewed"

    with pytest.raises(TransitionDenied) as exc:
        lifecycle.set_reviewed(order.id, False)
    assert exc.value.reason == "transition_not_allowed"

def test_unmark_review_restores_customer_cancel(lifecycle, guest):
    order = place(lifecycle, guest).order
    lifecycle.set_reviewed(order.id, True)
    unmarked = lifecycle.set_reviewed(order.id, False).order

    assert unmarked.status == OrderStatus.PENDING
    assert unmarked.reviewed is False
    assert lifecycle.cancel_order(order.id, guest).order.status == OrderStatus.CANCELLED

def test_marking_reviewed_twice_is_a_no_op(lifecycle, guest, outbox):
    order = place(lifecycle, guest).order
    first = lifecycle.set_reviewed(order.id, True)
    second = lifecycle.set_reviewed(order.id, True)

    assert first.notifications_sent is True
    assert second.notifications_sent is False
    assert outbox.subjects().count(f"Order Reviewed - {order.order_number}") == 1

def test_admin_cancel_unmarks_reviewed_order(lifecycle, guest, clock):
    order = place(lifecycle, guest).order
    lifecycle.set_reviewed(order.id, True)
    clock.advance(hours=5)

    result = lifecycle.admin_cancel(order.id, reason="customer called")
    assert result.order.status == OrderStatus.CANCELLED
    assert result.order.reviewed is False
    note = result.order.audit_log[-1]
    assert note["unmarked_review"] is True
    assert note["reason"] == "customer called"

def test_cancel_by_non_owner_looks_like_not_found(lifecycle, guest):
    order = place(lifecycle, guest).order
    with pytest.raises(NotFoundError) as exc:
        lifecycle.cancel_order(order.id, CustomerIdentity.guest("10.0.0.2"))
    assert exc.value.status_code == 404

def test_active_order_reports_cancel_window(lifecycle, guest, clock):
    assert lifecycle.active_order(guest).order is None

    order = place(lifecycle, guest).order
    clock.advance(minutes=15)
    active = lifecycle.active_order(guest)
    assert active.order.id == order.id
    assert active.can_cancel is True
    assert active.seconds_remaining == 45 * 60

    clock.advance(minutes=50)
    active = lifecycle.active_order(guest)
    assert active.can_cancel is False
    assert active.seconds_remaining == 0

def test_configurable_window(lifecycle, guest, clock):
    lifecycle.settings = lifecycle.settings.model_copy(update={"CANCELLATION_WINDOW_MINUTES": 12 * 60})
    order = place(lifecycle, guest).order
    assert order.review_deadline == START + timedelta(hours=12)

    clock.advance(hours=11)
    assert lifecycle.cancel_order(order.id, guest).order.status == OrderStatus.CANCELLED

def test_authenticated_customer_orders(lifecycle):
    user = CustomerIdentity.authenticated("42", "Layla@Example.com")
    order = place(lifecycle, user, customer_email=None).order

    assert order.user_id == "42"
    assert order.customer_email == "Layla@Example.com"
    assert order.customer_key == "user:42"
    # same account on another device, matched by email
    other_device = CustomerIdentity.authenticated("42-legacy", "layla@example.com")
    assert lifecycle.get_owned(order.id, other_device).id == order.id
    with pytest.raises(ConflictError):
        place(lifecycle, other_device)

def test_authenticated_customer_needs_email(lifecycle):
    user = CustomerIdentity.authenticated("77")
    with pytest.raises(OrderValidationError) as exc:
        place(lifecycle, user, customer_email=None)
    assert exc.value.reason == "email_required"

def test_notification_failure_does_not_block(lifecycle, guest, db):
    def broken_mailer(to, subject, body):
        raise ConnectionRefusedError("smtp down")

    lifecycle.notifier.mailer = broken_mailer
    result = place(lifecycle, guest)

    assert result.notifications_sent is False
    assert db.query(Order).count() == 1

def test_delete_only_terminal_orders(lifecycle, guest, db):
    order = place(lifecycle, guest).order
    with pytest.raises(ConflictError) as exc:
        lifecycle.delete(order.id)
    assert exc.value.reason == "order_active"

    lifecycle.cancel_order(order.id, guest)
    lifecycle.delete(order.id)
    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    with pytest.raises(NotFoundError):
        lifecycle.delete(order.id)

def test_repository_rejects_disallowed_status_writes(lifecycle, guest):
    order = place(lifecycle, guest).order
    with pytest.raises(TransitionDenied) as exc:
        lifecycle.orders.update_status(order.id, OrderStatus.COMPLETED)
    assert exc.value.reason == "not_reviewed"

def test_unique_index_backstops_concurrent_placement(db, clock, catalog_items, guest):
    repo = OrderRepository(db, clock)

    def header():
        return Order(customer_ip=guest.ip, customer_key=guest.key, customer_first_name="A",
                     customer_phone="123", delivery_city="Muscat", delivery_region="Muscat",
                     total_amount=0, review_deadline=START, audit_log=[], created_at=START, updated_at=START)

    repo.create(header(), [])
    with pytest.raises(ConflictError):
        repo.create(header(), [])
    assert db.query(Order).count() == 1

def test_failed_item_insert_leaves_nothing_behind(db, clock, catalog_items, guest):
    repo = OrderRepository(db, clock)
    order = Order(customer_ip=guest.ip, customer_key=guest.key, customer_first_name="A",
                  customer_phone="123", delivery_city="Muscat", delivery_region="Muscat",
                  total_amount=5000, review_deadline=START, audit_log=[], created_at=START, updated_at=START)
    bad_item = OrderItem(fragrance_id=1, variant_id=7, fragrance_name=None, variant_size="5ml",
                         quantity=1, unit_price_cents=5000, total_price_cents=5000)

    with pytest.raises(OrderError) as exc:
        repo.create(order, [bad_item])
    assert exc.value.reason == "order_create_failed"
    assert db.query(Order).count() == 0

def lost_connection(*args, **kwargs):
    raise OperationalError("COMMIT", {}, ConnectionResetError("server closed the connection"))

def test_store_outage_during_placement_persists_nothing(lifecycle, guest, db, outbox, monkeypatch):
    monkeypatch.setattr(db, "commit", lost_connection)
    with pytest.raises(UpstreamUnavailable) as exc:
        place(lifecycle, guest)
    assert exc.value.status_code == 503
    monkeypatch.undo()

    assert db.query(Order).count() == 0
    assert db.query(OrderItem).count() == 0
    assert outbox == []

def test_store_outage_during_variant_lookup(lifecycle, guest, db, monkeypatch):
    monkeypatch.setattr(lifecycle.orders, "find_active_for_customer", lambda identity: None)
    monkeypatch.setattr(db, "execute", lost_connection)
    with pytest.raises(UpstreamUnavailable):
        place(lifecycle, guest)

def test_store_outage_during_status_write(lifecycle, guest, db, monkeypatch):
    order = place(lifecycle, guest).order
    monkeypatch.setattr(db, "commit", lost_connection)
    with pytest.raises(UpstreamUnavailable):
        lifecycle.cancel_order(order.id, guest)
    monkeypatch.undo()

    db.expire_all()
    assert db.get(Order, order.id).status == OrderStatus.PENDING
