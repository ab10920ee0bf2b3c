"""
Storage location API routes.

Endpoints:
    GET  /storage-locations — Depots and warehouses, by city
    POST /storage-locations — Register a storage location
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from reliefops.api.deps import get_store
from reliefops.repositories.base import Store
from reliefops.services import stock_service

router = APIRouter()


class StorageLocationCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    address: Optional[str] = Field(default=None, max_length=150)
    city: str = Field(..., min_length=1, max_length=50)
    state: Optional[str] = Field(default=None, max_length=50)
    capacity: int = Field(default=0, ge=0)
    contact_number: Optional[str] = Field(default=None, max_length=20)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


@router.get("/storage-locations")
async def list_storage_locations(store: Store = Depends(get_store)):
    return await stock_service.list_storage_locations(store)


@router.post("/storage-locations", status_code=status.HTTP_201_CREATED)
async def create_storage_location(
    payload: StorageLocationCreateRequest,
    store: Store = Depends(get_store),
):
    return await stock_service.create_storage_location(store, **payload.model_dump())
