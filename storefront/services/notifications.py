"""Order notifications: admin and customer emails plus an order event.

Delivery is best-effort. ``NotificationDispatcher.notify`` never raises; the
caller only learns whether everything went out through its boolean result.
"""
import logging
import smtplib
from email.mime.text import MIMEText
from typing import Callable, List, Optional, Tuple
import httpx
from storefront.core.auth import create_review_token
from storefront.core.config import Settings, settings as default_settings
from storefront.db.models import Order
from storefront.kafka import producer

logger = logging.getLogger(__name__)

CREATED = "created"
CANCELLED = "cancelled"
REVIEWED = "reviewed"
EVENTS = (CREATED, CANCELLED, REVIEWED)

Message = Tuple[str, str, str]  # (to, subject, body)

def format_amount(fils: int, currency: str = "OMR") -> str:
    return f"{fils / 1000:.3f} {currency}"

def send_email(to: str, subject: str, body: str, settings: Settings = default_settings):
    msg = MIMEText(body)
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as s:
        s.sendmail(settings.FROM_EMAIL, [to], msg.as_string())

def send_email_resend(to: str, subject: str, body: str, settings: Settings = default_settings):
    with httpx.Client(timeout=5.0) as client:
        resp = client.post(
            settings.RESEND_API_URL,
            json={"from": settings.FROM_EMAIL, "to": [to], "subject": subject, "text": body},
            headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
        )
        resp.raise_for_status()

class NotificationDispatcher:
    def __init__(self, settings: Settings = default_settings, mailer: Optional[Callable] = None,
                 publisher: Optional[Callable] = None):
        self.settings = settings
        self.mailer = mailer if mailer is not None else self._default_mailer()
        if publisher is None and settings.KAFKA_BOOTSTRAP:
            publisher = producer.send
        self.publisher = publisher

    def _default_mailer(self) -> Callable:
        if self.settings.EMAIL_BACKEND == "resend":
            return lambda to, subject, body: send_email_resend(to, subject, body, self.settings)
        return lambda to, subject, body: send_email(to, subject, body, self.settings)

    def notify(self, event: str, order: Order) -> bool:
        if event not in EVENTS:
            logger.warning("Ignoring unknown notification event %r for order %s", event, order.order_number)
            return False
        if not self.settings.NOTIFICATIONS_ENABLED:
            return False
        try:
            messages = self.messages(event, order)
            for to, subject, body in messages:
                self.mailer(to, subject, body)
            published = False
            if self.publisher:
                self.publisher(self.settings.TOPIC_ORDER_EVENTS, str(order.id), self.event_payload(event, order))
                published = True
        except Exception:
            logger.exception("Failed to deliver %s notifications for order %s", event, order.order_number)
            return False
        logger.info("Sent %d %s notification(s) for order %s", len(messages), event, order.order_number)
        return bool(messages) or published

    def event_payload(self, event: str, order: Order) -> dict:
        return {
            "type": f"order.{event}",
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "user_email": order.customer_email,
            "amount_fils": order.total_amount,
            "items": [
                {"variant_id": it.variant_id, "quantity": it.quantity, "unit_price_cents": it.unit_price_cents}
                for it in order.items
            ],
        }

    # --- templates ---

    def review_link(self, order: Order) -> str:
        base = self.settings.PUBLIC_BASE_URL.rstrip("/")
        token = create_review_token(order.id, config=self.settings)
        return f"{base}/api/review-order?order={order.id}&token={token}"

    def _items_block(self, order: Order) -> str:
        cur = self.settings.CURRENCY
        lines = []
        for it in order.items:
            brand = f" ({it.fragrance_brand})" if it.fragrance_brand else ""
            lines.append(
                f"- {it.fragrance_name}{brand} - {it.variant_size}\n"
                f"  Quantity: {it.quantity} x {format_amount(it.unit_price_cents, cur)}"
                f" = {format_amount(it.total_price_cents, cur)}"
            )
        lines.append(f"\nTotal: {format_amount(order.total_amount, self.settings.CURRENCY)}")
        return "\n".join(lines)

    def _delivery_block(self, order: Order) -> str:
        method = "Home Delivery" if order.delivery_type == "home" else "Delivery Service"
        out = [f"Location: {order.delivery_city}, {order.delivery_region}", f"Delivery: {method}"]
        if order.delivery_address:
            out.append(f"Address: {order.delivery_address}")
        if order.notes:
            out.append(f"Notes: {order.notes}")
        return "\n".join(out)

    def messages(self, event: str, order: Order) -> List[Message]:
        admin = self.settings.ADMIN_EMAIL
        customer = order.customer_email
        number = order.order_number
        name = order.customer_name
        out: List[Message] = []

        if event == CREATED:
            if admin:
                out.append((admin, f"New Order: {number} - {name}",
                            f"New order {number} received.\n\n"
                            f"Customer: {name}\nPhone: {order.customer_phone}\n"
                            f"Email: {customer or '-'}\n{self._delivery_block(order)}\n\n"
                            f"{self._items_block(order)}\n\n"
                            f"Mark as reviewed: {self.review_link(order)}\n"))
            if customer:
                window = self.settings.CANCELLATION_WINDOW_MINUTES
                out.append((customer, f"Order Confirmation - {number}",
                            f"Hello {name},\n\nWe have received your order {number}. "
                            f"It is pending review; you can cancel it within {window} minutes of placing it.\n\n"
                            f"{self._items_block(order)}\n\n{self._delivery_block(order)}\n"))
        elif event == CANCELLED:
            if admin:
                out.append((admin, f"Order Cancelled: {number} - {name}",
                            f"Order {number} from {name} ({order.customer_phone}) was cancelled.\n\n"
                            f"{self._items_block(order)}\n"))
            if customer:
                out.append((customer, f"Order Cancelled - {number}",
                            f"Hello {name},\n\nYour order {number} has been cancelled.\n"))
        elif event == REVIEWED:
            if customer:
                out.append((customer, f"Order Reviewed - {number}",
                            f"Hello {name},\n\nYour order {number} has been reviewed and is being prepared. "
                            f"We will contact you to arrange delivery.\n"))
        return out
