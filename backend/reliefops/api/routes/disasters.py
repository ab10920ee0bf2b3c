"""
Disaster API routes.

Endpoints:
    GET  /disasters — All recorded disasters
    POST /disasters — Record a disaster
"""

from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from reliefops.api.deps import get_store
from reliefops.repositories.base import Store
from reliefops.services import request_service

router = APIRouter()


class DisasterCreateRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=50, description="e.g. Flood, Earthquake")
    location: str = Field(..., min_length=1, max_length=150)
    severity_level: str = Field(default="Low", description="Low, Medium, High, Critical")
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)


@router.get("/disasters")
async def list_disasters(store: Store = Depends(get_store)):
    return await request_service.list_disasters(store)


@router.post("/disasters", status_code=status.HTTP_201_CREATED)
async def create_disaster(
    payload: DisasterCreateRequest,
    store: Store = Depends(get_store),
):
    return await request_service.create_disaster(store, **payload.model_dump())
