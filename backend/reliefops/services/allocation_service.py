"""
Allocation committer — reserve stock against a demand request.

A commit locks the demand request and then the resource (always in that
order), re-checks stock and the request's outstanding quantity, and writes the
decrement, the allocation row and its log entry in one unit of work.
"""

from __future__ import annotations

import logging
from typing import Any

from reliefops.errors import InsufficientInventory, NotFound, OverRequested, ValidationError
from reliefops.models import (
    AllocationStatus,
    RequestStatus,
    ResourceStatus,
    TERMINAL_ALLOCATION_STATUSES,
)
from reliefops.repositories.base import (
    AllocationLogRecord,
    AllocationRecord,
    RequestRecord,
    ResourceRecord,
    Store,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _allocation_to_dict(allocation: AllocationRecord) -> dict[str, Any]:
    return {
        "id": allocation.id,
        "request_id": allocation.request_id,
        "resource_id": allocation.resource_id,
        "allocated_quantity": allocation.allocated_quantity,
        "status": allocation.status.value,
        "created_at": allocation.created_at.isoformat() if allocation.created_at else None,
        "updated_at": allocation.updated_at.isoformat() if allocation.updated_at else None,
    }


def _log_to_dict(entry: AllocationLogRecord) -> dict[str, Any]:
    return {
        "id": entry.id,
        "allocation_id": entry.allocation_id,
        "action": entry.action,
        "action_date": entry.action_date.isoformat() if entry.action_date else None,
    }


def _request_to_dict(req: RequestRecord, allocated_total: int) -> dict[str, Any]:
    return {
        "id": req.id,
        "disaster_id": req.disaster_id,
        "requested_by": req.requested_by,
        "priority_level": req.priority_level.value,
        "location": req.location,
        "resource_type": req.resource_type,
        "quantity_requested": req.quantity_requested,
        "status": req.status.value,
        "allocated_quantity": allocated_total,
        "remaining_quantity": max(req.quantity_requested - allocated_total, 0),
        "created_at": req.created_at.isoformat() if req.created_at else None,
    }


def validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")
    return quantity


def resource_status_for(current: ResourceStatus, quantity: int) -> ResourceStatus:
    """Status after a stock change. Restocking only lifts Unavailable; Reserved is kept."""
    if quantity == 0:
        return ResourceStatus.UNAVAILABLE
    if current == ResourceStatus.UNAVAILABLE:
        return ResourceStatus.AVAILABLE
    return current


def check_allocation(
    req: RequestRecord,
    resource: ResourceRecord,
    *,
    allocated_total: int,
    quantity: int,
) -> None:
    """Raise if ``quantity`` cannot be reserved right now.

    The resource must be of the requested type; after that, stock is checked
    before the request's outstanding quantity.
    """
    if resource.resource_type != req.resource_type:
        raise ValidationError(
            f"Resource {resource.id} holds {resource.resource_type}; "
            f"demand request {req.id} needs {req.resource_type}"
        )
    if quantity > resource.quantity_available:
        raise InsufficientInventory(resource.id, quantity, resource.quantity_available)
    if allocated_total + quantity > req.quantity_requested:
        raise OverRequested(req.id, req.quantity_requested, allocated_total, quantity)


def next_request_status(current: RequestStatus, allocated_total: int, quantity_requested: int) -> RequestStatus:
    """Auto-fulfilment policy. Cancelled requests are never moved."""
    if current == RequestStatus.CANCELLED:
        return current
    if allocated_total >= quantity_requested:
        return RequestStatus.FULFILLED
    if allocated_total > 0:
        return RequestStatus.IN_PROGRESS
    return RequestStatus.PENDING if current == RequestStatus.PENDING else RequestStatus.IN_PROGRESS


def check_status_transition(current: AllocationStatus, new: AllocationStatus) -> None:
    if current != new and current in TERMINAL_ALLOCATION_STATUSES:
        raise ValidationError(f"Allocation is {current.value}; it cannot move to {new.value}")


def parse_allocation_status(value: str | AllocationStatus) -> AllocationStatus:
    try:
        return AllocationStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in AllocationStatus)
        raise ValidationError(f"status must be one of: {allowed}")


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------

async def allocate_resource(
    store: Store,
    *,
    request_id: int,
    resource_id: int,
    quantity: int,
    auto_fulfill: bool = True,
) -> dict[str, Any]:
    quantity = validate_quantity(quantity)

    async with store.session() as uow:
        req = await uow.requests.lock_request(request_id)
        if req is None:
            raise NotFound(f"Demand request {request_id} not found")
        if req.status == RequestStatus.CANCELLED:
            raise ValidationError(f"Demand request {request_id} is cancelled")

        resource = await uow.inventory.lock_resource(resource_id)
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")

        allocated_total = await uow.requests.allocated_total(request_id)
        try:
            check_allocation(req, resource, allocated_total=allocated_total, quantity=quantity)
        except (InsufficientInventory, OverRequested, ValidationError) as exc:
            logger.warning("Rejected allocation for request %s: %s", request_id, exc.message)
            raise

        remaining_stock = resource.quantity_available - quantity
        await uow.inventory.set_quantity(
            resource_id,
            remaining_stock,
            status=resource_status_for(resource.status, remaining_stock),
        )
        allocation = await uow.requests.insert_allocation(
            request_id=request_id,
            resource_id=resource_id,
            quantity=quantity,
            status=AllocationStatus.DISPATCHED,
        )
        await uow.requests.append_log(
            allocation.id,
            f"Allocated {quantity} units of {resource.resource_type} from resource {resource_id}",
        )

        allocated_total += quantity
        request_status = req.status
        if auto_fulfill:
            request_status = next_request_status(req.status, allocated_total, req.quantity_requested)
            if request_status != req.status:
                await uow.requests.set_request_status(request_id, request_status)

    logger.info(
        "Allocated %d x %s (resource %s) to request %s as allocation %s; %d left in stock",
        quantity, resource.resource_type, resource_id, request_id, allocation.id, remaining_stock,
    )
    payload = _allocation_to_dict(allocation)
    payload["request_status"] = request_status.value
    payload["allocated_total"] = allocated_total
    payload["remaining_quantity"] = max(req.quantity_requested - allocated_total, 0)
    return payload


async def update_allocation_status(
    store: Store,
    allocation_id: int,
    new_status: str | AllocationStatus,
    *,
    auto_fulfill: bool = True,
) -> dict[str, Any]:
    """Move an allocation to *new_status*.

    Delivered and Cancelled are final. Cancelling puts the reserved quantity
    back on the resource and, under auto-fulfilment, reopens a request that
    no longer has enough allocated.
    """
    new_status = parse_allocation_status(new_status)

    async with store.session() as uow:
        allocation = await uow.requests.lock_allocation(allocation_id)
        if allocation is None:
            raise NotFound(f"Allocation {allocation_id} not found")
        check_status_transition(allocation.status, new_status)
        if allocation.status == new_status:
            return _allocation_to_dict(allocation)

        req = None
        if new_status == AllocationStatus.CANCELLED:
            req = await uow.requests.lock_request(allocation.request_id)
            resource = await uow.inventory.lock_resource(allocation.resource_id)
            if resource is None:
                raise NotFound(f"Resource {allocation.resource_id} not found")
            restocked = resource.quantity_available + allocation.allocated_quantity
            await uow.inventory.set_quantity(
                resource.id,
                restocked,
                status=resource_status_for(resource.status, restocked),
            )

        previous = allocation.status
        allocation = await uow.requests.set_allocation_status(allocation_id, new_status)
        await uow.requests.append_log(
            allocation_id, f"Status changed from {previous.value} to {new_status.value}"
        )

        if new_status == AllocationStatus.CANCELLED and auto_fulfill and req is not None:
            allocated_total = await uow.requests.allocated_total(req.id)
            request_status = next_request_status(req.status, allocated_total, req.quantity_requested)
            if request_status != req.status:
                await uow.requests.set_request_status(req.id, request_status)

    logger.info("Allocation %s status %s -> %s", allocation_id, previous.value, new_status.value)
    return _allocation_to_dict(allocation)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_demand_request(store: Store, request_id: int) -> dict[str, Any]:
    async with store.session() as uow:
        req = await uow.requests.get_request(request_id)
        if req is None:
            raise NotFound(f"Demand request {request_id} not found")
        allocated_total = await uow.requests.allocated_total(request_id)
    return _request_to_dict(req, allocated_total)


async def list_allocations(store: Store, *, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    async with store.session() as uow:
        allocations = await uow.requests.list_allocations(limit=limit, offset=offset)
    return [_allocation_to_dict(a) for a in allocations]


async def list_allocation_logs(store: Store, *, limit: int = 50) -> list[dict[str, Any]]:
    async with store.session() as uow:
        entries = await uow.requests.list_logs(limit=limit)
    return [_log_to_dict(e) for e in entries]
