"""Persistence of orders, order items and guest customer sessions.

``OrderRepository.update_status`` is the only code path that writes
``Order.status``; it re-checks the transition table before writing.
"""
import logging
from contextlib import contextmanager
from typing import Callable, List, Optional
from sqlalchemy import select, or_, func
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from storefront.db.models import Order, OrderItem, OrderStatus, CustomerSession, now_utc
from storefront.errors import ConflictError, NotFoundError, OrderError, UpstreamUnavailable
from storefront.services.identity import CustomerIdentity
from storefront.services.transitions import assert_transition

logger = logging.getLogger(__name__)

def format_order_number(order_id: int) -> str:
    return f"ORD{order_id:06d}"

def audit_entry(action: str, actor: str, at, **details) -> dict:
    return {"action": action, "actor": actor, "at": at.isoformat(), **details}

class OrderRepository:
    def __init__(self, db: Session, clock: Callable = now_utc):
        self.db = db
        self.clock = clock

    @contextmanager
    def _store(self, action: str):
        try:
            yield
        except OperationalError as exc:
            self.db.rollback()
            logger.error("Database unavailable while trying to %s: %s", action, exc)
            raise UpstreamUnavailable("Database unavailable")

    # --- reads ---

    def _query(self):
        return select(Order).options(selectinload(Order.items))

    def find_by_id(self, order_id: int) -> Optional[Order]:
        with self._store("load order"):
            return self.db.execute(self._query().where(Order.id == order_id)).scalar_one_or_none()

    def get(self, order_id: int) -> Order:
        order = self.find_by_id(order_id)
        if order is None:
            raise NotFoundError("Order not found", order_id=order_id)
        return order

    def _customer_filter(self, identity: CustomerIdentity):
        if identity.is_guest:
            return (Order.customer_ip == identity.ip) & Order.user_id.is_(None)
        clauses = [Order.user_id == identity.user_id]
        if identity.email:
            clauses.append(func.lower(Order.customer_email) == identity.email.lower())
        return or_(*clauses)

    def find_active_for_customer(self, identity: CustomerIdentity) -> Optional[Order]:
        stmt = (self._query()
                .where(self._customer_filter(identity), Order.status.in_(OrderStatus.ACTIVE))
                .order_by(Order.created_at.desc())
                .limit(1))
        with self._store("look up active order"):
            return self.db.execute(stmt).scalars().first()

    def list_for_customer(self, identity: CustomerIdentity, limit: int = 50) -> List[Order]:
        stmt = (self._query()
                .where(self._customer_filter(identity))
                .order_by(Order.created_at.desc(), Order.id.desc())
                .limit(limit))
        with self._store("list customer orders"):
            return list(self.db.execute(stmt).scalars().all())

    def list(self, status: Optional[str] = None, reviewed: Optional[bool] = None, q: Optional[str] = None,
             limit: int = 50, offset: int = 0) -> List[Order]:
        stmt = self._query()
        if status is not None: stmt = stmt.where(Order.status == status)
        if reviewed is not None: stmt = stmt.where(Order.reviewed == reviewed)
        if q:
            q_like = f"%{q.lower()}%"
            stmt = stmt.where(or_(
                func.lower(Order.order_number).like(q_like),
                func.lower(Order.customer_first_name).like(q_like),
                func.lower(Order.customer_last_name).like(q_like),
                func.lower(Order.customer_email).like(q_like),
                Order.customer_phone.like(q_like),
            ))
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit)
        with self._store("list orders"):
            return list(self.db.execute(stmt).scalars().all())

    # --- writes ---

    def create(self, order: Order, items: List[OrderItem]) -> Order:
        """Insert the order header and its items as one unit.

        Header and items share a transaction, so a failed item insert rolls
        the header back with it and nothing is left behind.
        """
        key = order.customer_key
        with self._store("create order"):
            try:
                self.db.add(order)
                self.db.flush()
                order.order_number = format_order_number(order.id)
                order.items.extend(items)
                self.db.flush()
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                if self._active_key_taken(key):
                    logger.info("Rejected duplicate active order for %s", key)
                    raise ConflictError("Customer already has an active order", reason="active_order_exists")
                logger.error("Failed to create order for %s: %s", key, exc.orig)
                raise OrderError("Failed to create order", reason="order_create_failed")
            except OperationalError:
                raise
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.error("Failed to create order for %s: %s", key, exc)
                raise OrderError("Failed to create order", reason="order_create_failed")
        self.db.refresh(order)
        return order

    def update_status(self, order_id: int, new_status: str, audit_note: Optional[dict] = None,
                      clear_review: bool = False) -> Order:
        order = self.get(order_id)
        assert_transition(order, new_status)
        now = self.clock()
        previous = order.status

        order.status = new_status
        if new_status in (OrderStatus.REVIEWED, OrderStatus.PROCESSING) and not order.reviewed:
            order.reviewed = True
            order.reviewed_at = now
        elif new_status == OrderStatus.PENDING:
            order.reviewed = False
            order.reviewed_at = None
        elif new_status == OrderStatus.COMPLETED:
            order.completed_at = now
        elif new_status == OrderStatus.CANCELLED:
            order.cancelled_at = now
            if clear_review:
                order.reviewed = False
        order.updated_at = now

        note = {"action": "status_changed", "from": previous, "to": new_status, "at": now.isoformat()}
        if audit_note:
            note.update(audit_note)
        order.audit_log = [*(order.audit_log or []), note]

        with self._store("update order status"):
            if new_status in OrderStatus.TERMINAL:
                self._release_sessions(order.id, now)
            self.db.commit()
        self.db.refresh(order)
        logger.info("Order %s moved %s -> %s", order.order_number, previous, new_status)
        return order

    def delete(self, order_id: int):
        order = self.get(order_id)
        if order.status not in OrderStatus.TERMINAL:
            raise ConflictError("Only completed or cancelled orders can be deleted", reason="order_active",
                                order_number=order.order_number, current_status=order.status)
        number = order.order_number
        with self._store("delete order"):
            self._release_sessions(order.id, self.clock())
            self.db.delete(order)
            self.db.commit()
        logger.info("Deleted order %s", number)

    def _active_key_taken(self, customer_key: str) -> bool:
        stmt = select(func.count(Order.id)).where(Order.customer_key == customer_key,
                                                  Order.status.in_(OrderStatus.ACTIVE))
        return self.db.execute(stmt).scalar_one() > 0

    # --- guest sessions ---

    def point_session(self, identity: CustomerIdentity, order: Order) -> CustomerSession:
        now = self.clock()
        with self._store("update customer session"):
            session = self.db.execute(
                select(CustomerSession).where(CustomerSession.customer_ip == identity.ip)
            ).scalar_one_or_none()
            if session is None:
                session = CustomerSession(customer_ip=identity.ip, created_at=now)
                self.db.add(session)
            session.customer_phone = order.customer_phone
            session.customer_email = order.customer_email
            session.active_order_id = order.id
            session.updated_at = now
            self.db.commit()
        return session

    def find_session(self, ip: str) -> Optional[CustomerSession]:
        with self._store("load customer session"):
            return self.db.execute(
                select(CustomerSession).where(CustomerSession.customer_ip == ip)
            ).scalar_one_or_none()

    def _release_sessions(self, order_id: int, now):
        sessions = self.db.execute(
            select(CustomerSession).where(CustomerSession.active_order_id == order_id)
        ).scalars().all()
        for session in sessions:
            session.active_order_id = None
            session.updated_at = now
