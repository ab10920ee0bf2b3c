"""
Recommendation ranker — which stocked resources can serve a demand request.

Ranking is advisory: nothing is reserved here, and an allocation made from a
recommendation is re-checked against live stock when it commits.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

from pydantic import ValidationError as InvalidCoordinates

from reliefops.errors import NotFound
from reliefops.repositories.base import DisasterRecord, RequestRecord, Store, StoredResourceRecord
from reliefops.services.distance import DistanceProvider, GeoPoint, haversine

logger = logging.getLogger(__name__)


class FulfillmentStatus(str, enum.Enum):
    READY = "Ready"
    PARTIAL = "Partial"
    UNAVAILABLE = "Unavailable"


_TIER_RANK = {
    FulfillmentStatus.READY: 0,
    FulfillmentStatus.PARTIAL: 1,
    FulfillmentStatus.UNAVAILABLE: 2,
}


def _stored_point(what: str, latitude: Optional[float], longitude: Optional[float]) -> GeoPoint | None:
    """Coordinates read back from storage; out-of-range ones count as unknown."""
    try:
        return GeoPoint.maybe(latitude, longitude)
    except InvalidCoordinates:
        logger.warning("Ignoring out-of-range coordinates (%s, %s) on %s", latitude, longitude, what)
        return None


def classify_fulfillment(quantity_available: int, quantity_requested: int) -> FulfillmentStatus:
    if quantity_available >= quantity_requested:
        return FulfillmentStatus.READY
    if quantity_available > 0:
        return FulfillmentStatus.PARTIAL
    return FulfillmentStatus.UNAVAILABLE


def rank_candidates(
    request: RequestRecord,
    disaster: DisasterRecord | None,
    candidates: list[StoredResourceRecord],
    distance: DistanceProvider = haversine,
) -> list[dict[str, Any]]:
    """Order candidates by tier, then distance (unknown last), then stock on hand."""
    disaster_point = (
        _stored_point(f"disaster {disaster.id}", disaster.latitude, disaster.longitude) if disaster else None
    )

    scored = []
    for resource in candidates:
        if resource.resource_type != request.resource_type:
            continue
        storage_point = _stored_point(
            f"storage of resource {resource.id}", resource.storage_latitude, resource.storage_longitude
        )
        distance_km = distance.between(storage_point, disaster_point)
        tier = classify_fulfillment(resource.quantity_available, request.quantity_requested)
        scored.append((resource, distance_km, tier))

    scored.sort(
        key=lambda item: (
            _TIER_RANK[item[2]],
            item[1] is None,
            item[1] if item[1] is not None else 0.0,
            -item[0].quantity_available,
            item[0].id,
        )
    )

    return [
        {
            "resource_id": resource.id,
            "resource_type": resource.resource_type,
            "quantity_available": resource.quantity_available,
            "storage_name": resource.storage_name,
            "storage_city": resource.storage_city,
            "storage_state": resource.storage_state,
            "distance_km": round(distance_km, 2) if distance_km is not None else None,
            "fulfillment_status": tier.value,
        }
        for resource, distance_km, tier in scored
    ]


async def recommend_resources(
    store: Store,
    request_id: int,
    *,
    distance: DistanceProvider = haversine,
) -> list[dict[str, Any]]:
    async with store.session() as uow:
        req = await uow.requests.get_request(request_id)
        if req is None:
            raise NotFound(f"Demand request {request_id} not found")
        disaster = await uow.requests.get_disaster(req.disaster_id)
        candidates = await uow.inventory.list_resources(
            resource_type=req.resource_type, stored_only=True
        )

    ranked = rank_candidates(req, disaster, candidates, distance)
    logger.info(
        "Ranked %d %s candidates for demand request %s", len(ranked), req.resource_type, request_id
    )
    return ranked
