from datetime import datetime
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List, Literal

# Largest value an INTEGER / BIGINT column accepts
MAX_INT = 2**31 - 1
MAX_BIGINT = 2**63 - 1

# --- Catalog ---

class VariantIn(BaseModel):
    label: str = Field(min_length=1, max_length=64)
    size_ml: Optional[int] = Field(default=None, ge=0, le=MAX_INT)
    price_cents: Optional[int] = Field(default=None, ge=0, le=MAX_BIGINT)
    is_whole_bottle: bool = False
    in_stock: bool = True
    max_quantity: int = Field(default=50, ge=1, le=MAX_INT)
class VariantRead(VariantIn):
    id: int
    class Config: from_attributes = True
class FragranceBase(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    brand: Optional[str] = None
    description: str = ''
    image_path: Optional[str] = None
    hidden: bool = False
class FragranceCreate(FragranceBase):
    slug: Optional[str] = Field(default=None, min_length=1, max_length=200)
    variants: List[VariantIn] = []
class FragranceUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    brand: Optional[str] = None
    description: Optional[str] = None
    image_path: Optional[str] = None
    hidden: Optional[bool] = None
    variants: Optional[List[VariantIn]] = None

    # Omit a field to leave it unchanged; an explicit null is only allowed where the column is nullable.
    @field_validator("name", "description", "hidden", "variants")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v
class FragranceRead(FragranceBase):
    id: int
    slug: str
    variants: List[VariantRead] = []
    class Config: from_attributes = True
class FragranceToggle(BaseModel):
    hidden: Optional[bool] = None

# --- Orders ---

class OrderLine(BaseModel):
    variant_id: int = Field(gt=0, le=MAX_INT)
    quantity: int = Field(ge=1, le=MAX_INT)

class OrderCreate(BaseModel):
    customer_first_name: str = Field(min_length=1, max_length=120)
    customer_last_name: Optional[str] = None
    customer_phone: str = Field(min_length=3, max_length=32)
    customer_email: Optional[EmailStr] = None
    delivery_address: Optional[str] = None
    delivery_city: str = Field(min_length=1, max_length=120)
    delivery_region: str = Field(min_length=1, max_length=120)
    delivery_type: Literal["home", "delivery_service"] = "home"
    notes: Optional[str] = None
    items: List[OrderLine]

class OrderItemRead(BaseModel):
    id: int
    fragrance_id: int
    variant_id: int
    fragrance_name: str
    fragrance_brand: Optional[str] = None
    variant_size: str
    quantity: int
    unit_price_cents: int
    total_price_cents: int
    is_whole_bottle: bool
    class Config: from_attributes = True

class OrderRead(BaseModel):
    id: int
    order_number: str
    status: str
    reviewed: bool
    customer_name: str
    customer_first_name: str
    customer_last_name: Optional[str] = None
    customer_phone: str
    customer_email: Optional[str] = None
    delivery_address: Optional[str] = None
    delivery_city: str
    delivery_region: str
    delivery_type: str
    notes: Optional[str] = None
    total_amount: int
    review_deadline: datetime
    created_at: datetime
    updated_at: datetime
    reviewed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemRead] = []
    class Config: from_attributes = True

class AdminOrderRead(OrderRead):
    user_id: Optional[str] = None
    customer_ip: Optional[str] = None
    audit_log: List[dict] = []

class OrderResult(BaseModel):
    order: OrderRead
    notifications_sent: bool = False

class AdminOrderResult(BaseModel):
    order: AdminOrderRead
    notifications_sent: bool = False

class ActiveOrderResponse(BaseModel):
    has_order: bool
    order: Optional[OrderRead] = None
    can_cancel: bool = False
    cancel_deadline: Optional[datetime] = None
    seconds_remaining: int = 0

class ReviewToggle(BaseModel):
    reviewed: bool

class StatusUpdate(BaseModel):
    status: Literal["pending", "reviewed", "processing", "completed", "cancelled"]

class AdminCancel(BaseModel):
    reason: Optional[str] = None

# --- Admin ---

class AdminLogin(BaseModel):
    username: str
    password: str

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int

class RecentOrder(BaseModel):
    id: int
    order_number: str
    customer_name: str
    total_amount: int
    status: str
    created_at: datetime
    class Config: from_attributes = True

class OrderStats(BaseModel):
    total_orders: int
    pending_orders: int
    reviewed_orders: int
    processing_orders: int
    completed_orders: int
    cancelled_orders: int
    total_revenue: int
    today_orders: int
    yesterday_orders: int
    this_month_revenue: int
    last_month_revenue: int
    recent_orders: List[RecentOrder] = []
