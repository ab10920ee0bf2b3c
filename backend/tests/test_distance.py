import pytest

from reliefops.services.distance import GeoPoint, HaversineDistanceProvider, haversine


def test_same_point_is_zero():
    point = GeoPoint(latitude=13.08, longitude=80.27)
    assert haversine.distance_km(point, point) == pytest.approx(0.0)


def test_one_degree_of_latitude_is_about_111_km():
    origin = GeoPoint(latitude=10.0, longitude=78.0)
    destination = GeoPoint(latitude=11.0, longitude=78.0)
    assert haversine.distance_km(origin, destination) == pytest.approx(111.19, abs=0.05)


def test_chennai_to_bengaluru():
    chennai = GeoPoint(latitude=13.0827, longitude=80.2707)
    bengaluru = GeoPoint(latitude=12.9716, longitude=77.5946)
    assert HaversineDistanceProvider().distance_km(chennai, bengaluru) == pytest.approx(290, abs=5)


def test_missing_coordinates_give_no_distance():
    point = GeoPoint(latitude=13.0, longitude=80.0)
    assert haversine.between(point, None) is None
    assert haversine.between(None, point) is None
    assert GeoPoint.maybe(13.0, None) is None
    assert GeoPoint.maybe(None, None) is None


def test_out_of_range_latitude_rejected():
    with pytest.raises(ValueError):
        GeoPoint(latitude=95.0, longitude=0.0)
