"""
Request intake — disasters and the demand requests raised against them.

Field teams file a demand request for a number of units of one resource type.
Allocation bookkeeping lives in ``allocation_service``; this module only
creates, lists and re-labels requests.
"""

from __future__ import annotations

import logging
from typing import Any

from reliefops.errors import NotFound, ValidationError
from reliefops.models import PriorityLevel, RequestStatus, SeverityLevel
from reliefops.repositories.base import DisasterRecord, RequestSummaryRecord, Store
from reliefops.services.allocation_service import _request_to_dict, validate_quantity

logger = logging.getLogger(__name__)


def _disaster_to_dict(disaster: DisasterRecord) -> dict[str, Any]:
    return {
        "id": disaster.id,
        "type": disaster.type,
        "location": disaster.location,
        "severity_level": disaster.severity_level.value,
        "latitude": disaster.latitude,
        "longitude": disaster.longitude,
    }


def _summary_to_dict(req: RequestSummaryRecord) -> dict[str, Any]:
    data = _request_to_dict(req, req.allocated_quantity)
    data["disaster_type"] = req.disaster_type
    return data


def _required_text(value: str | None, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{field} must not be empty")
    return value


def _parse(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(s.value for s in enum_cls)
        raise ValidationError(f"{field} must be one of: {allowed}")


# ---------------------------------------------------------------------------
# Disasters
# ---------------------------------------------------------------------------

async def create_disaster(
    store: Store,
    *,
    type: str,
    location: str,
    severity_level: str | SeverityLevel = SeverityLevel.LOW,
    latitude: float | None = None,
    longitude: float | None = None,
) -> dict[str, Any]:
    type = _required_text(type, "type")
    location = _required_text(location, "location")
    severity_level = _parse(SeverityLevel, severity_level, "severity_level")
    if (latitude is None) != (longitude is None):
        raise ValidationError("latitude and longitude must be given together")

    async with store.session() as uow:
        disaster = await uow.requests.insert_disaster(
            type=type,
            location=location,
            severity_level=severity_level,
            latitude=latitude,
            longitude=longitude,
        )

    logger.info("Recorded disaster %s: %s at %s (%s)", disaster.id, disaster.type, disaster.location, severity_level.value)
    return _disaster_to_dict(disaster)


async def list_disasters(store: Store) -> list[dict[str, Any]]:
    async with store.session() as uow:
        disasters = await uow.requests.list_disasters()
    return [_disaster_to_dict(d) for d in disasters]


# ---------------------------------------------------------------------------
# Demand requests
# ---------------------------------------------------------------------------

async def create_demand_request(
    store: Store,
    *,
    disaster_id: int,
    requested_by: str,
    priority_level: str | PriorityLevel,
    resource_type: str,
    quantity_requested: int,
    location: str | None = None,
) -> dict[str, Any]:
    requested_by = _required_text(requested_by, "requested_by")
    resource_type = _required_text(resource_type, "resource_type")
    priority_level = _parse(PriorityLevel, priority_level, "priority_level")
    quantity_requested = validate_quantity(quantity_requested)

    async with store.session() as uow:
        if await uow.requests.get_disaster(disaster_id) is None:
            raise NotFound(f"Disaster {disaster_id} not found")
        req = await uow.requests.insert_request(
            disaster_id=disaster_id,
            requested_by=requested_by,
            priority_level=priority_level,
            location=location,
            resource_type=resource_type,
            quantity=quantity_requested,
        )

    logger.info(
        "Demand request %s: %d x %s for disaster %s (%s priority)",
        req.id, req.quantity_requested, req.resource_type, disaster_id, priority_level.value,
    )
    return _request_to_dict(req, 0)


async def list_demand_requests(store: Store, *, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    async with store.session() as uow:
        requests = await uow.requests.list_requests(limit=limit, offset=offset)
    return [_summary_to_dict(r) for r in requests]


async def update_demand_request_status(
    store: Store,
    request_id: int,
    new_status: str | RequestStatus,
) -> dict[str, Any]:
    """Set a request's status by hand.

    Any status may follow any other, as the field console allows. A Cancelled
    request stops receiving allocations; its existing allocations are left
    alone and must be cancelled one by one.
    """
    new_status = _parse(RequestStatus, new_status, "status")

    async with store.session() as uow:
        req = await uow.requests.lock_request(request_id)
        if req is None:
            raise NotFound(f"Demand request {request_id} not found")
        previous = req.status
        if previous != new_status:
            req = await uow.requests.set_request_status(request_id, new_status)
        allocated_total = await uow.requests.allocated_total(request_id)

    if previous != new_status:
        logger.info("Demand request %s status %s -> %s", request_id, previous.value, new_status.value)
    return _request_to_dict(req, allocated_total)
