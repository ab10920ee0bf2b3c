"""
Stock service: inventory and storage locations, replenishment, and the low-stock monitor.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from reliefops.errors import NotFound, ValidationError
from reliefops.models import ResourceStatus
from reliefops.repositories.base import (
    ResourceRecord,
    StockLevelRecord,
    StorageLocationRecord,
    Store,
    StoredResourceRecord,
)
from reliefops.services.allocation_service import resource_status_for, validate_quantity

logger = logging.getLogger(__name__)


def _resource_to_dict(resource: ResourceRecord) -> dict[str, Any]:
    data = {
        "id": resource.id,
        "resource_type": resource.resource_type,
        "quantity_available": resource.quantity_available,
        "status": resource.status.value,
        "storage_location_id": resource.storage_location_id,
        "updated_at": resource.updated_at.isoformat() if resource.updated_at else None,
    }
    if isinstance(resource, StoredResourceRecord):
        data["storage_name"] = resource.storage_name
        data["city"] = resource.storage_city
        data["state"] = resource.storage_state
    return data


# ---------------------------------------------------------------------------
# Low-stock monitor
# ---------------------------------------------------------------------------

def threshold_for(resource_type: str, default: int, overrides: Mapping[str, int] | None = None) -> int:
    if overrides and resource_type in overrides:
        return overrides[resource_type]
    return default


def filter_low_stock(
    levels: list[StockLevelRecord],
    *,
    default_threshold: int,
    overrides: Mapping[str, int] | None = None,
) -> list[dict[str, Any]]:
    """Resources strictly below their threshold. Never-alerted ones report updated_at."""
    low = []
    for level in levels:
        threshold = threshold_for(level.resource_type, default_threshold, overrides)
        if level.quantity_available >= threshold:
            continue
        last_alerted_at = level.last_alert_at or level.updated_at
        low.append({
            "resource_id": level.resource_id,
            "resource_type": level.resource_type,
            "quantity_available": level.quantity_available,
            "threshold": threshold,
            "storage_name": level.storage_name,
            "last_alerted_at": last_alerted_at.isoformat() if last_alerted_at else None,
        })
    return low


async def list_low_stock(
    store: Store,
    *,
    default_threshold: int,
    overrides: Mapping[str, int] | None = None,
) -> list[dict[str, Any]]:
    async with store.session() as uow:
        levels = await uow.inventory.list_stock_levels()
    return filter_low_stock(levels, default_threshold=default_threshold, overrides=overrides)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

async def list_resources(
    store: Store,
    *,
    resource_type: str | None = None,
    limit: int = 200,
    offset: int = 0,
) -> list[dict[str, Any]]:
    async with store.session() as uow:
        resources = await uow.inventory.list_resources(
            resource_type=resource_type, limit=limit, offset=offset
        )
    return [_resource_to_dict(r) for r in resources]


async def replenish_resource(store: Store, resource_id: int, quantity: int) -> dict[str, Any]:
    """Add stock to a resource under its row lock. An Unavailable resource becomes Available."""
    quantity = validate_quantity(quantity)

    async with store.session() as uow:
        resource = await uow.inventory.lock_resource(resource_id)
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")
        restocked = resource.quantity_available + quantity
        updated = await uow.inventory.set_quantity(
            resource_id,
            restocked,
            status=resource_status_for(resource.status, restocked),
        )

    logger.info(
        "Replenished resource %s (%s) by %d -> %d",
        resource_id, updated.resource_type, quantity, updated.quantity_available,
    )
    return _resource_to_dict(updated)


def _check_stock_level(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        raise ValidationError("quantity_available must be a non-negative integer")
    return quantity


def _parse_resource_status(value: str | ResourceStatus) -> ResourceStatus:
    try:
        return ResourceStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ResourceStatus)
        raise ValidationError(f"status must be one of: {allowed}")


async def create_resource(
    store: Store,
    *,
    resource_type: str,
    quantity_available: int,
    storage_location_id: int | None = None,
    status: str | ResourceStatus | None = None,
) -> dict[str, Any]:
    resource_type = (resource_type or "").strip()
    if not resource_type:
        raise ValidationError("resource_type must not be empty")
    quantity_available = _check_stock_level(quantity_available)
    if status is None:
        status = resource_status_for(ResourceStatus.AVAILABLE, quantity_available)
    else:
        status = _parse_resource_status(status)

    async with store.session() as uow:
        if storage_location_id is not None and await uow.inventory.get_storage_location(storage_location_id) is None:
            raise NotFound(f"Storage location {storage_location_id} not found")
        resource = await uow.inventory.insert_resource(
            resource_type=resource_type,
            quantity=quantity_available,
            status=status,
            storage_location_id=storage_location_id,
        )

    logger.info("Added resource %s: %d x %s", resource.id, resource.quantity_available, resource.resource_type)
    return _resource_to_dict(resource)


async def update_resource(store: Store, resource_id: int, changes: Mapping[str, Any]) -> dict[str, Any]:
    """Overwrite stock, status or storage on a resource under its row lock.

    Without an explicit ``status`` the status follows the new quantity the same
    way replenishment does.
    """
    unknown = set(changes) - {"quantity_available", "status", "storage_location_id"}
    if unknown:
        raise ValidationError(f"Unknown resource fields: {', '.join(sorted(unknown))}")

    updates: dict[str, Any] = {}
    if changes.get("quantity_available") is not None:
        updates["quantity_available"] = _check_stock_level(changes["quantity_available"])
    if changes.get("status") is not None:
        updates["status"] = _parse_resource_status(changes["status"])
    if "storage_location_id" in changes:
        updates["storage_location_id"] = changes["storage_location_id"]
    if not updates:
        raise ValidationError("Nothing to update")

    async with store.session() as uow:
        resource = await uow.inventory.lock_resource(resource_id)
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")
        location_id = updates.get("storage_location_id")
        if location_id is not None and await uow.inventory.get_storage_location(location_id) is None:
            raise NotFound(f"Storage location {location_id} not found")
        if "quantity_available" in updates and "status" not in updates:
            updates["status"] = resource_status_for(resource.status, updates["quantity_available"])
        updated = await uow.inventory.update_resource(resource_id, updates)

    logger.info("Updated resource %s: %s", resource_id, ", ".join(sorted(updates)))
    return _resource_to_dict(updated)


# ---------------------------------------------------------------------------
# Storage locations
# ---------------------------------------------------------------------------

def _location_to_dict(location: StorageLocationRecord) -> dict[str, Any]:
    return {
        "id": location.id,
        "name": location.name,
        "address": location.address,
        "city": location.city,
        "state": location.state,
        "capacity": location.capacity,
        "contact_number": location.contact_number,
        "latitude": location.latitude,
        "longitude": location.longitude,
    }


async def create_storage_location(store: Store, **fields: Any) -> dict[str, Any]:
    for required in ("name", "city"):
        value = (fields.get(required) or "").strip()
        if not value:
            raise ValidationError(f"{required} must not be empty")
        fields[required] = value

    async with store.session() as uow:
        location = await uow.inventory.insert_storage_location(**fields)

    logger.info("Added storage location %s (%s, %s)", location.id, location.name, location.city)
    return _location_to_dict(location)


async def list_storage_locations(store: Store) -> list[dict[str, Any]]:
    async with store.session() as uow:
        locations = await uow.inventory.list_storage_locations()
    return [_location_to_dict(l) for l in locations]
