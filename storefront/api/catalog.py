from fastapi import APIRouter, Depends, Query, Response
from typing import List, Optional
from storefront.api.deps import FragranceId, get_catalog
from storefront.core.auth import require_admin
from storefront.schemas import FragranceCreate, FragranceRead, FragranceToggle, FragranceUpdate
from storefront.services.catalog import CatalogRepository

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])

@router.get('/fragrances', response_model=List[FragranceRead])
def list_fragrances(q: Optional[str] = None, brand: Optional[str] = None,
                    limit: int = Query(100, ge=1, le=200), offset: int = Query(0, ge=0),
                    catalog: CatalogRepository = Depends(get_catalog)):
    return catalog.list_fragrances(q=q, brand=brand, limit=limit, offset=offset)

@router.get('/fragrances/{slug}', response_model=FragranceRead)
def get_fragrance(slug: str, catalog: CatalogRepository = Depends(get_catalog)):
    return catalog.get_by_slug(slug)

@admin_router.get('/fragrances', response_model=List[FragranceRead])
def admin_list_fragrances(q: Optional[str] = None,
                          limit: int = Query(100, ge=1, le=200), offset: int = Query(0, ge=0),
                          catalog: CatalogRepository = Depends(get_catalog)):
    return catalog.list_fragrances(include_hidden=True, q=q, limit=limit, offset=offset)

@admin_router.post('/fragrances', response_model=FragranceRead, status_code=201)
def create_fragrance(payload: FragranceCreate, catalog: CatalogRepository = Depends(get_catalog)):
    return catalog.create_fragrance(payload)

@admin_router.patch('/fragrances/{fragrance_id}', response_model=FragranceRead)
def update_fragrance(fragrance_id: FragranceId, payload: FragranceUpdate, catalog: CatalogRepository = Depends(get_catalog)):
    return catalog.update_fragrance(fragrance_id, payload)

@admin_router.post('/fragrances/{fragrance_id}/toggle', response_model=FragranceRead)
def toggle_fragrance(fragrance_id: FragranceId, payload: Optional[FragranceToggle] = None,
                     catalog: CatalogRepository = Depends(get_catalog)):
    return catalog.set_hidden(fragrance_id, payload.hidden if payload else None)

@admin_router.delete('/fragrances/{fragrance_id}', status_code=204)
def delete_fragrance(fragrance_id: FragranceId, catalog: CatalogRepository = Depends(get_catalog)):
    catalog.delete_fragrance(fragrance_id)
    return Response(status_code=204)
