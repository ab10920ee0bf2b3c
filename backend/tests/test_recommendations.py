import logging

import pytest

from conftest import KM, DISASTER_LAT, DISASTER_LON, run
from reliefops.errors import NotFound
from reliefops.models import PriorityLevel
from reliefops.repositories.base import DisasterRecord, RequestRecord, StoredResourceRecord
from reliefops.services.distance import DistanceProvider
from reliefops.services.recommendation_service import (
    FulfillmentStatus,
    classify_fulfillment,
    rank_candidates,
    recommend_resources,
)


class TableDistance(DistanceProvider):
    """Distance looked up by storage latitude, so tests can pin exact kilometres."""

    def __init__(self, by_latitude):
        self.by_latitude = by_latitude

    def distance_km(self, origin, destination):
        return self.by_latitude[origin.latitude]


def _request(quantity=50, resource_type="Water"):
    return RequestRecord(
        id=1, disaster_id=1, requested_by="Camp", priority_level=PriorityLevel.MEDIUM,
        resource_type=resource_type, quantity_requested=quantity,
    )


def _candidate(resource_id, quantity, latitude=None, resource_type="Water"):
    return StoredResourceRecord(
        id=resource_id, resource_type=resource_type, quantity_available=quantity,
        storage_location_id=resource_id, storage_name=f"Depot {resource_id}", storage_city="Chennai",
        storage_latitude=latitude, storage_longitude=80.0 if latitude is not None else None,
    )


@pytest.mark.parametrize(
    "available, expected",
    [
        (50, FulfillmentStatus.READY),
        (80, FulfillmentStatus.READY),
        (49, FulfillmentStatus.PARTIAL),
        (1, FulfillmentStatus.PARTIAL),
        (0, FulfillmentStatus.UNAVAILABLE),
    ],
)
def test_classify_fulfillment(available, expected):
    assert classify_fulfillment(available, 50) == expected


def test_fulfillment_tier_dominates_distance(store, water):
    ranked = run(recommend_resources(store, water.request.id))

    assert [r["resource_id"] for r in ranked] == [water.a.id, water.b.id, water.c.id]
    assert [r["fulfillment_status"] for r in ranked] == ["Ready", "Partial", "Unavailable"]
    assert ranked[0]["distance_km"] == pytest.approx(5, abs=0.05)
    assert ranked[1]["distance_km"] == pytest.approx(2, abs=0.05)
    assert ranked[0]["storage_city"] == "Chennai"


def test_nearer_candidate_wins_within_tier(store, water):
    near = store.add_storage_location(
        name="Harbour", city="Chennai", latitude=DISASTER_LAT + 0.5 * KM, longitude=DISASTER_LON,
    )
    closer = store.add_resource(resource_type="Water", quantity_available=55, storage_location_id=near)

    ranked = run(recommend_resources(store, water.request.id))

    assert [r["resource_id"] for r in ranked[:2]] == [closer.id, water.a.id]


def test_unknown_distance_sorts_after_known_distance():
    disaster = DisasterRecord(id=1, type="Flood", location="X", latitude=13.0, longitude=80.0)
    candidates = [_candidate(1, 100, latitude=None), _candidate(2, 60, latitude=13.5)]

    ranked = rank_candidates(_request(), disaster, candidates, TableDistance({13.5: 40.0}))

    assert [r["resource_id"] for r in ranked] == [2, 1]
    assert ranked[1]["distance_km"] is None


def test_larger_stock_breaks_distance_ties():
    disaster = DisasterRecord(id=1, type="Flood", location="X", latitude=13.0, longitude=80.0)
    candidates = [_candidate(1, 20, latitude=13.1), _candidate(2, 35, latitude=13.2)]

    ranked = rank_candidates(_request(), disaster, candidates, TableDistance({13.1: 3.0, 13.2: 3.0}))

    assert [r["resource_id"] for r in ranked] == [2, 1]


def test_disaster_without_coordinates_ranks_on_stock_only():
    disaster = DisasterRecord(id=1, type="Cyclone", location="Coast")
    candidates = [_candidate(1, 10, latitude=13.1), _candidate(2, 30, latitude=13.2), _candidate(3, 70, latitude=13.3)]

    ranked = rank_candidates(_request(), disaster, candidates)

    assert [r["resource_id"] for r in ranked] == [3, 2, 1]
    assert all(r["distance_km"] is None for r in ranked)


def test_out_of_range_coordinates_count_as_unknown_distance(caplog):
    disaster = DisasterRecord(id=1, type="Flood", location="X", latitude=13.0, longitude=80.0)
    candidates = [_candidate(1, 90, latitude=95.0), _candidate(2, 60, latitude=13.1)]

    with caplog.at_level(logging.WARNING, logger="reliefops.services.recommendation_service"):
        ranked = rank_candidates(_request(), disaster, candidates)

    assert [r["resource_id"] for r in ranked] == [2, 1]
    assert ranked[1]["distance_km"] is None
    assert "out-of-range" in caplog.text


def test_out_of_range_disaster_coordinates_rank_on_stock_only():
    disaster = DisasterRecord(id=1, type="Flood", location="X", latitude=13.0, longitude=200.0)
    candidates = [_candidate(1, 10, latitude=13.1), _candidate(2, 30, latitude=13.2)]

    ranked = rank_candidates(_request(), disaster, candidates)

    assert [r["resource_id"] for r in ranked] == [2, 1]
    assert all(r["distance_km"] is None for r in ranked)


def test_bad_stored_coordinates_do_not_break_recommendations(store, water):
    broken = store.add_storage_location(name="Depot X", city="Chennai", latitude=95.0, longitude=80.0)
    store.add_resource(resource_type="Water", quantity_available=55, storage_location_id=broken)

    ranked = run(recommend_resources(store, water.request.id))

    assert len(ranked) == 4
    by_name = {r["storage_name"]: r for r in ranked}
    assert by_name["Depot X"]["distance_km"] is None
    assert by_name["Depot X"]["fulfillment_status"] == "Ready"


def test_other_resource_types_are_ignored():
    candidates = [_candidate(1, 100, resource_type="Blankets"), _candidate(2, 5)]
    ranked = rank_candidates(_request(), None, candidates)
    assert [r["resource_id"] for r in ranked] == [2]


def test_unstored_resources_are_not_candidates(store, water):
    store.add_resource(resource_type="Water", quantity_available=500, storage_location_id=None)
    ranked = run(recommend_resources(store, water.request.id))
    assert len(ranked) == 3


def test_no_matching_type_returns_empty_list(store, water):
    request = store.add_request(
        disaster_id=water.disaster.id, requested_by="Camp", priority_level="Low",
        resource_type="Tarpaulin", quantity_requested=10,
    )
    assert run(recommend_resources(store, request.id)) == []


def test_unknown_request_raises_not_found(store):
    with pytest.raises(NotFound):
        run(recommend_resources(store, 404))


def test_ranking_does_not_touch_stock(store, water):
    run(recommend_resources(store, water.request.id))
    assert store.tables.resources[water.a.id].quantity_available == 60
    assert store.tables.allocations == {}
