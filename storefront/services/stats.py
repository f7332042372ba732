from datetime import datetime, timedelta
from sqlalchemy import select, func
from sqlalchemy.orm import Session
from storefront.db.models import Order, OrderStatus

def _month_start(d: datetime) -> datetime:
    return d.replace(day=1, hour=0, minute=0, second=0, microsecond=0)

def order_statistics(db: Session, now: datetime, recent: int = 10) -> dict:
    """Dashboard figures. Revenue only counts completed orders."""
    counts = dict(db.execute(select(Order.status, func.count(Order.id)).group_by(Order.status)).all())

    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    yesterday = today - timedelta(days=1)
    this_month = _month_start(now)
    last_month = _month_start(this_month - timedelta(days=1))

    def created_between(start, end=None):
        stmt = select(func.count(Order.id)).where(Order.created_at >= start)
        if end is not None: stmt = stmt.where(Order.created_at < end)
        return db.execute(stmt).scalar_one()

    def revenue(start=None, end=None):
        stmt = select(func.coalesce(func.sum(Order.total_amount), 0)).where(Order.status == OrderStatus.COMPLETED)
        if start is not None: stmt = stmt.where(Order.created_at >= start)
        if end is not None: stmt = stmt.where(Order.created_at < end)
        return int(db.execute(stmt).scalar_one())

    recent_orders = db.execute(
        select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(recent)
    ).scalars().all()

    return {
        "total_orders": sum(counts.values()),
        "pending_orders": counts.get(OrderStatus.PENDING, 0),
        "reviewed_orders": counts.get(OrderStatus.REVIEWED, 0),
        "processing_orders": counts.get(OrderStatus.PROCESSING, 0),
        "completed_orders": counts.get(OrderStatus.COMPLETED, 0),
        "cancelled_orders": counts.get(OrderStatus.CANCELLED, 0),
        "total_revenue": revenue(),
        "today_orders": created_between(today),
        "yesterday_orders": created_between(yesterday, today),
        "this_month_revenue": revenue(this_month),
        "last_month_revenue": revenue(last_month, this_month),
        "recent_orders": recent_orders,
    }
