"""
Allocation API routes.

Endpoints:
    GET   /allocations             — List allocations, newest first
    GET   /allocations/logs        — Latest allocation log entries
    POST  /allocations             — Reserve stock against a demand request
    PATCH /allocations/{id}/status — Move an allocation to a new status
"""

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from reliefops.api.deps import get_app_settings, get_store
from reliefops.config import Settings
from reliefops.repositories.base import Store
from reliefops.services import allocation_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class AllocationCreateRequest(BaseModel):
    request_id: int
    resource_id: int
    quantity: int = Field(..., ge=1)


class AllocationStatusUpdateRequest(BaseModel):
    status: str = Field(..., description="Dispatched, Pending, Delivered, Cancelled")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/allocations")
async def list_allocations(
    store: Store = Depends(get_store),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await allocation_service.list_allocations(store, limit=limit, offset=offset)


@router.get("/allocations/logs")
async def list_allocation_logs(store: Store = Depends(get_store)):
    return await allocation_service.list_allocation_logs(store, limit=50)


@router.post("/allocations", status_code=status.HTTP_201_CREATED)
async def create_allocation(
    payload: AllocationCreateRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    """Reserve stock. Rejected with 409 when stock or the request's outstanding quantity is short."""
    return await allocation_service.allocate_resource(
        store,
        request_id=payload.request_id,
        resource_id=payload.resource_id,
        quantity=payload.quantity,
        auto_fulfill=settings.AUTO_FULFILL_REQUESTS,
    )


@router.patch("/allocations/{allocation_id}/status")
async def update_allocation_status(
    allocation_id: int,
    payload: AllocationStatusUpdateRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    return await allocation_service.update_allocation_status(
        store,
        allocation_id,
        payload.status,
        auto_fulfill=settings.AUTO_FULFILL_REQUESTS,
    )
