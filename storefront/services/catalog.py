import logging
import re
from typing import Dict, Iterable, List, Optional
from sqlalchemy import select, or_, func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, selectinload
from storefront.db.models import Fragrance, Variant, now_utc
from storefront.errors import ConflictError, NotFoundError, OrderValidationError, UpstreamUnavailable
from storefront.schemas import FragranceCreate, FragranceUpdate

logger = logging.getLogger(__name__)

def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "fragrance"

class CatalogRepository:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self, action: str):
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            # sqlite: "UNIQUE constraint failed: fragrances.slug"; postgres: "fragrances_slug_key"
            if "slug" in str(exc.orig).lower():
                raise ConflictError("A fragrance with this slug already exists", reason="slug_taken")
            logger.warning("Rejected fragrance write while trying to %s: %s", action, exc.orig)
            raise OrderValidationError("Fragrance data violates a store constraint", reason="invalid_fragrance")
        except OperationalError as exc:
            self.db.rollback()
            logger.error("Database unavailable while trying to %s: %s", action, exc)
            raise UpstreamUnavailable("Database unavailable")

    def get_variants(self, variant_ids: Iterable[int]) -> Dict[int, Variant]:
        ids = set(variant_ids)
        if not ids:
            return {}
        stmt = select(Variant).options(selectinload(Variant.fragrance)).where(Variant.id.in_(ids))
        try:
            return {v.id: v for v in self.db.execute(stmt).scalars().all()}
        except OperationalError as exc:
            logger.error("Database unavailable while loading variants: %s", exc)
            raise UpstreamUnavailable("Database unavailable")

    def list_fragrances(self, include_hidden: bool = False, q: Optional[str] = None, brand: Optional[str] = None,
                        limit: int = 100, offset: int = 0) -> List[Fragrance]:
        stmt = select(Fragrance).options(selectinload(Fragrance.variants))
        if not include_hidden: stmt = stmt.where(Fragrance.hidden.is_(False))
        if brand: stmt = stmt.where(func.lower(Fragrance.brand) == brand.lower())
        if q:
            q_like = f"%{q.lower()}%"
            stmt = stmt.where(or_(func.lower(Fragrance.name).like(q_like), func.lower(Fragrance.brand).like(q_like)))
        stmt = stmt.order_by(Fragrance.name).offset(offset).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_fragrance(self, fragrance_id: int) -> Fragrance:
        obj = self.db.get(Fragrance, fragrance_id)
        if not obj:
            raise NotFoundError("Fragrance not found", fragrance_id=fragrance_id)
        return obj

    def get_by_slug(self, slug: str, include_hidden: bool = False) -> Fragrance:
        obj = self.db.execute(select(Fragrance).where(Fragrance.slug == slug)).scalar_one_or_none()
        if not obj or (obj.hidden and not include_hidden):
            raise NotFoundError("Fragrance not found", slug=slug)
        return obj

    def create_fragrance(self, payload: FragranceCreate) -> Fragrance:
        data = payload.model_dump(exclude={"variants"})
        data["slug"] = payload.slug or slugify(payload.name)
        obj = Fragrance(**data)
        obj.variants = [Variant(**v.model_dump()) for v in payload.variants]
        self.db.add(obj)
        self._commit("create fragrance")
        self.db.refresh(obj)
        logger.info("Created fragrance %s (%s)", obj.slug, obj.id)
        return obj

    def update_fragrance(self, fragrance_id: int, payload: FragranceUpdate) -> Fragrance:
        obj = self.get_fragrance(fragrance_id)
        changes = payload.model_dump(exclude_unset=True, exclude={"variants"})
        for k, v in changes.items(): setattr(obj, k, v)
        # A variants list replaces the whole set; past order items keep their snapshots.
        if payload.variants is not None:
            obj.variants = [Variant(**v.model_dump()) for v in payload.variants]
        obj.updated_at = now_utc()
        self._commit("update fragrance")
        self.db.refresh(obj)
        return obj

    def set_hidden(self, fragrance_id: int, hidden: Optional[bool] = None) -> Fragrance:
        obj = self.get_fragrance(fragrance_id)
        obj.hidden = (not obj.hidden) if hidden is None else hidden
        obj.updated_at = now_utc()
        self._commit("toggle fragrance")
        self.db.refresh(obj)
        return obj

    def delete_fragrance(self, fragrance_id: int):
        obj = self.get_fragrance(fragrance_id)
        self.db.delete(obj)
        self._commit("delete fragrance")
        logger.info("Deleted fragrance %s", fragrance_id)
