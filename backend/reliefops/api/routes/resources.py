"""
Resource API routes.

Endpoints:
    GET   /resources                — Inventory with storage location
    POST  /resources                — Add a resource, optionally at a storage location
    GET   /resources/low-stock      — Resources below their replenishment threshold
    PATCH /resources/{id}           — Overwrite stock, status or storage location
    POST  /resources/{id}/replenish — Add stock to a resource
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from reliefops.api.deps import get_app_settings, get_store
from reliefops.config import Settings
from reliefops.repositories.base import Store
from reliefops.services import stock_service

router = APIRouter()


class ResourceCreateRequest(BaseModel):
    resource_type: str = Field(..., min_length=1, max_length=50)
    quantity_available: int = Field(..., ge=0)
    storage_location_id: Optional[int] = None
    status: Optional[str] = Field(default=None, description="Available, Reserved, Unavailable")


class ResourceUpdateRequest(BaseModel):
    quantity_available: Optional[int] = Field(default=None, ge=0)
    storage_location_id: Optional[int] = None
    status: Optional[str] = Field(default=None, description="Available, Reserved, Unavailable")


class ReplenishRequest(BaseModel):
    quantity: int = Field(..., ge=1)


@router.get("/resources")
async def list_resources(
    store: Store = Depends(get_store),
    resource_type: Optional[str] = None,
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    return await stock_service.list_resources(
        store, resource_type=resource_type, limit=limit, offset=offset
    )


@router.get("/resources/low-stock")
async def list_low_stock(
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    return await stock_service.list_low_stock(
        store,
        default_threshold=settings.LOW_STOCK_THRESHOLD,
        overrides=settings.LOW_STOCK_THRESHOLDS,
    )


@router.post("/resources/{resource_id}/replenish")
async def replenish_resource(
    resource_id: int,
    payload: ReplenishRequest,
    store: Store = Depends(get_store),
):
    return await stock_service.replenish_resource(store, resource_id, payload.quantity)


@router.post("/resources", status_code=status.HTTP_201_CREATED)
async def create_resource(
    payload: ResourceCreateRequest,
    store: Store = Depends(get_store),
):
    return await stock_service.create_resource(store, **payload.model_dump())


@router.patch("/resources/{resource_id}")
async def update_resource(
    resource_id: int,
    payload: ResourceUpdateRequest,
    store: Store = Depends(get_store),
):
    """Only the fields present in the body are changed."""
    return await stock_service.update_resource(
        store, resource_id, payload.model_dump(exclude_unset=True)
    )
