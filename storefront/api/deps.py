from datetime import datetime
from typing import Annotated
from fastapi import Depends, Path
from sqlalchemy.orm import Session
from storefront.core.config import settings
from storefront.db.models import now_utc
from storefront.db.session import SessionLocal
from storefront.schemas import MAX_INT
from storefront.services.catalog import CatalogRepository
from storefront.services.lifecycle import OrderLifecycle
from storefront.services.notifications import NotificationDispatcher
from storefront.services.repository import OrderRepository

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def get_clock():
    return now_utc

def get_notifier() -> NotificationDispatcher:
    return NotificationDispatcher(settings)

def get_catalog(db: Session = Depends(get_db)) -> CatalogRepository:
    return CatalogRepository(db)

def get_lifecycle(db: Session = Depends(get_db), notifier=Depends(get_notifier), clock=Depends(get_clock)) -> OrderLifecycle:
    return OrderLifecycle(OrderRepository(db, clock), CatalogRepository(db), notifier, settings, clock)

def get_now(clock=Depends(get_clock)) -> datetime:
    return clock()

# Path ids must fit the INTEGER primary keys
OrderId = Annotated[int, Path(gt=0, le=MAX_INT)]
FragranceId = Annotated[int, Path(gt=0, le=MAX_INT)]
