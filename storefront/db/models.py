from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, Boolean, DateTime, ForeignKey, BigInteger, JSON, Index, text
from datetime import datetime, timezone
from storefront.db.session import Base

def now_utc() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)

class OrderStatus:
    PENDING = "pending"
    REVIEWED = "reviewed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ACTIVE = (PENDING, REVIEWED, PROCESSING)
    TERMINAL = (COMPLETED, CANCELLED)
    ALL = ACTIVE + TERMINAL

# keep in sync with OrderStatus.ACTIVE
ACTIVE_ORDER_PREDICATE = "status IN ('pending', 'reviewed', 'processing')"

class Fragrance(Base):
    __tablename__ = "fragrances"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    brand: Mapped[str | None] = mapped_column(String(120), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    image_path: Mapped[str | None] = mapped_column(String(512), nullable=True)
    hidden: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)

    variants = relationship("Variant", back_populates="fragrance", cascade="all, delete-orphan",
                            order_by="Variant.id")

class Variant(Base):
    __tablename__ = "variants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    fragrance_id: Mapped[int] = mapped_column(ForeignKey("fragrances.id", ondelete="CASCADE"))
    size_ml: Mapped[int | None] = mapped_column(Integer, nullable=True)
    label: Mapped[str] = mapped_column(String(64), nullable=False)
    price_cents: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    is_whole_bottle: Mapped[bool] = mapped_column(Boolean, default=False)
    in_stock: Mapped[bool] = mapped_column(Boolean, default=True)
    max_quantity: Mapped[int] = mapped_column(Integer, default=50)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)

    fragrance = relationship("Fragrance", back_populates="variants")

class Order(Base):
    __tablename__ = "orders"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_number: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)

    user_id: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    customer_ip: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    customer_key: Mapped[str] = mapped_column(String(128), nullable=False)

    customer_first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    customer_last_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    customer_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_email: Mapped[str | None] = mapped_column(String(255), index=True, nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivery_city: Mapped[str] = mapped_column(String(120), nullable=False)
    delivery_region: Mapped[str] = mapped_column(String(120), nullable=False)
    delivery_type: Mapped[str] = mapped_column(String(32), default="home")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(32), default=OrderStatus.PENDING, index=True)
    reviewed: Mapped[bool] = mapped_column(Boolean, default=False)
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    review_deadline: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(), nullable=True)
    audit_log: Mapped[list] = mapped_column(JSON, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")

    __table_args__ = (
        Index(
            "uq_orders_active_customer",
            "customer_key",
            unique=True,
            postgresql_where=text(ACTIVE_ORDER_PREDICATE),
            sqlite_where=text(ACTIVE_ORDER_PREDICATE),
        ),
    )

    @property
    def customer_name(self) -> str:
        return f"{self.customer_first_name} {self.customer_last_name or ''}".strip()

    @property
    def is_active(self) -> bool:
        return self.status in OrderStatus.ACTIVE

class OrderItem(Base):
    __tablename__ = "order_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"))
    fragrance_id: Mapped[int] = mapped_column(Integer)
    variant_id: Mapped[int] = mapped_column(Integer)
    fragrance_name: Mapped[str] = mapped_column(String(200))
    fragrance_brand: Mapped[str | None] = mapped_column(String(120), nullable=True)
    variant_size: Mapped[str] = mapped_column(String(64))
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price_cents: Mapped[int] = mapped_column(BigInteger)
    total_price_cents: Mapped[int] = mapped_column(BigInteger)
    is_whole_bottle: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)

    order = relationship("Order", back_populates="items")

class CustomerSession(Base):
    __tablename__ = "customer_sessions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    customer_ip: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    active_order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
    updated_at: Mapped[datetime] = mapped_column(DateTime(), default=now_utc)
