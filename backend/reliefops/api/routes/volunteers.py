"""
Volunteer API routes.

Endpoints:
    GET   /volunteers                          — Roster with open assignment counts
    POST  /volunteers                          — Register a volunteer
    GET   /volunteers/{id}/assignments         — One volunteer's assignments, newest first
    GET   /volunteers/assignments              — Assignments, newest first
    POST  /volunteers/assign                   — Staff a disaster task with the best available volunteer
    POST  /volunteers/auto-assign              — Same as /volunteers/assign
    PATCH /volunteers/assignments/{id}/status  — Update an assignment's status
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from reliefops.api.deps import get_app_settings, get_store
from reliefops.config import Settings
from reliefops.repositories.base import Store
from reliefops.services import volunteer_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------

class VolunteerCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    skill_set: Optional[str] = Field(default=None, max_length=100, description="e.g. Medical, First Aid")
    availability_status: str = Field(default="Available", description="Available, Busy, Unavailable")
    contact_number: Optional[str] = Field(default=None, max_length=20)
    location: Optional[str] = Field(default=None, max_length=100)


class AssignmentCreateRequest(BaseModel):
    disaster_id: int
    task: str = Field(..., min_length=1, max_length=150)
    skill_set: Optional[str] = Field(default=None, max_length=100, description="Skill to match, e.g. Medical")


class AssignmentStatusUpdateRequest(BaseModel):
    status: str = Field(..., description="Assigned, In Progress, Completed, Cancelled")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.get("/volunteers")
async def list_roster(store: Store = Depends(get_store)):
    return await volunteer_service.list_roster(store)


@router.post("/volunteers", status_code=status.HTTP_201_CREATED)
async def create_volunteer(
    payload: VolunteerCreateRequest,
    store: Store = Depends(get_store),
):
    return await volunteer_service.create_volunteer(store, **payload.model_dump())


@router.get("/volunteers/assignments")
async def list_assignments(
    store: Store = Depends(get_store),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await volunteer_service.list_assignments(store, limit=limit, offset=offset)


@router.post("/volunteers/assign", status_code=status.HTTP_201_CREATED)
@router.post("/volunteers/auto-assign", status_code=status.HTTP_201_CREATED)
async def assign_volunteer(
    payload: AssignmentCreateRequest,
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    """Create an assignment. ``volunteer_name`` is null when nobody was available."""
    return await volunteer_service.assign_volunteer(
        store,
        disaster_id=payload.disaster_id,
        task=payload.task,
        skill=payload.skill_set,
        allow_unstaffed=settings.ALLOW_UNSTAFFED_ASSIGNMENTS,
        max_attempts=settings.ASSIGNMENT_MAX_ATTEMPTS,
    )


@router.patch("/volunteers/assignments/{assignment_id}/status")
async def update_assignment_status(
    assignment_id: int,
    payload: AssignmentStatusUpdateRequest,
    store: Store = Depends(get_store),
):
    return await volunteer_service.update_assignment_status(store, assignment_id, payload.status)


@router.get("/volunteers/{volunteer_id}/assignments")
async def list_volunteer_assignments(
    volunteer_id: int,
    store: Store = Depends(get_store),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return await volunteer_service.list_volunteer_assignments(
        store, volunteer_id, limit=limit, offset=offset
    )
