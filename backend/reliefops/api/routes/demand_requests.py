"""
Demand request API routes.

Endpoints:
    GET   /demand-requests                      — Requests, newest first, with allocated quantity
    POST  /demand-requests                      — File a request against a disaster
    GET   /demand-requests/{id}                 — Request with allocated / remaining quantity
    PATCH /demand-requests/{id}/status          — Set a request's status by hand
    GET   /demand-requests/{id}/recommendations — Ranked resources that can serve the request
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from reliefops.api.deps import get_store
from reliefops.repositories.base import Store
from reliefops.services import allocation_service, recommendation_service, request_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class DemandRequestCreateRequest(BaseModel):
    disaster_id: int
    requested_by: str = Field(..., min_length=1, max_length=100)
    priority_level: str = Field(..., description="Low, Medium, High")
    location: Optional[str] = Field(default=None, max_length=150)
    resource_type: str = Field(..., min_length=1, max_length=50)
    quantity_requested: int = Field(..., ge=1)


class DemandRequestStatusUpdateRequest(BaseModel):
    status: str = Field(..., description="Pending, In Progress, Fulfilled, Cancelled")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/demand-requests")
async def list_demand_requests(
    store: Store = Depends(get_store),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await request_service.list_demand_requests(store, limit=limit, offset=offset)


@router.post("/demand-requests", status_code=status.HTTP_201_CREATED)
async def create_demand_request(
    payload: DemandRequestCreateRequest,
    store: Store = Depends(get_store),
):
    return await request_service.create_demand_request(store, **payload.model_dump())


@router.get("/demand-requests/{request_id}")
async def get_demand_request(
    request_id: int,
    store: Store = Depends(get_store),
):
    return await allocation_service.get_demand_request(store, request_id)


@router.patch("/demand-requests/{request_id}/status")
async def update_demand_request_status(
    request_id: int,
    payload: DemandRequestStatusUpdateRequest,
    store: Store = Depends(get_store),
):
    return await request_service.update_demand_request_status(store, request_id, payload.status)


@router.get("/demand-requests/{request_id}/recommendations")
async def recommend_resources(
    request_id: int,
    store: Store = Depends(get_store),
):
    """Resources of the requested type, best candidates first.

    Ready beats Partial beats Unavailable; within a tier the nearest storage
    location wins, then the largest stock. The list is a snapshot, not a
    reservation.
    """
    return await recommendation_service.recommend_resources(store, request_id)
