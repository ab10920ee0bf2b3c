import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from reliefops.config import Settings
from reliefops.main import create_app
from reliefops.models import AvailabilityStatus, PriorityLevel, SeverityLevel
from reliefops.repositories.memory import MemoryStore
from reliefops.repositories.sql import SqlStore
from reliefops.services import request_service, stock_service

# One kilometre of latitude, close enough for ordering checks
KM = 1 / 111.195

DISASTER_LAT = 13.0827
DISASTER_LON = 80.2707


def run(coro):
    """Drive an async service call from a synchronous test."""
    return asyncio.run(coro)


@pytest.fixture
def store():
    return MemoryStore(lock_timeout_seconds=0.2)


@pytest.fixture
def sql_store(tmp_path):
    """SqlStore on a throwaway SQLite file. NullPool keeps connections out of closed event loops."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reliefops.db'}", poolclass=NullPool)
    sql_settings = Settings(CREATE_TABLES=True, ALLOCATION_LOCK_TIMEOUT_SECONDS=0.2, LOG_LEVEL="WARNING", _env_file=None)
    store = SqlStore(sql_settings, engine=engine)
    run(store.open())
    yield store
    run(store.close())


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request):
    if request.param == "memory":
        return MemoryStore(lock_timeout_seconds=0.2)
    return request.getfixturevalue("sql_store")


@pytest.fixture
def settings():
    return Settings(
        STORE_BACKEND="memory",
        LOW_STOCK_THRESHOLD=50,
        LOW_STOCK_THRESHOLDS={"Medical Kits": 10},
        AUTO_FULFILL_REQUESTS=True,
        ALLOW_UNSTAFFED_ASSIGNMENTS=True,
        ALLOCATION_LOCK_TIMEOUT_SECONDS=0.2,
        LOG_LEVEL="WARNING",
        _env_file=None,
    )


@pytest.fixture
def water(store):
    """Chennai flood needing 50 units of Water, with three depots north of it.

    A: 60 units, 5 km   B: 20 units, 2 km   C: 0 units, 1 km
    """
    disaster = store.add_disaster(
        type="Flood",
        location="Chennai, TN",
        severity_level=SeverityLevel.HIGH,
        latitude=DISASTER_LAT,
        longitude=DISASTER_LON,
    )
    depots = {}
    for label, km in (("A", 5), ("B", 2), ("C", 1)):
        depots[label] = store.add_storage_location(
            name=f"Depot {label}",
            city="Chennai",
            state="TN",
            capacity=1000,
            latitude=DISASTER_LAT + km * KM,
            longitude=DISASTER_LON,
        )
    a = store.add_resource(resource_type="Water", quantity_available=60, storage_location_id=depots["A"])
    b = store.add_resource(resource_type="Water", quantity_available=20, storage_location_id=depots["B"])
    c = store.add_resource(resource_type="Water", quantity_available=0, storage_location_id=depots["C"],
                           status="Unavailable")
    request = store.add_request(
        disaster_id=disaster.id,
        requested_by="Relief Camp 7",
        priority_level=PriorityLevel.HIGH,
        resource_type="Water",
        quantity_requested=50,
    )
    return SimpleNamespace(disaster=disaster, request=request, a=a, b=b, c=c, depots=depots)


@pytest.fixture
def roster(store):
    """Earthquake plus three volunteers: V1 busy medic, V2 available medic, V3 available logistics."""
    disaster = store.add_disaster(type="Earthquake", location="Bhuj, GJ", severity_level=SeverityLevel.CRITICAL)
    v1 = store.add_volunteer(name="Asha", skill_set="Medical", availability_status=AvailabilityStatus.BUSY)
    v2 = store.add_volunteer(name="Ravi", skill_set="Medical, First Aid", availability_status=AvailabilityStatus.AVAILABLE)
    v3 = store.add_volunteer(name="Meena", skill_set="Logistics", availability_status=AvailabilityStatus.AVAILABLE)
    return SimpleNamespace(disaster=disaster, v1=v1, v2=v2, v3=v3)


@pytest.fixture
def client(store, settings):
    app = create_app(store=store, settings=settings)
    with TestClient(app) as test_client:
        yield test_client


def stock_of(store, resource_id):
    return store.tables.resources[resource_id].quantity_available


def stamp(year, month, day):
    return datetime(year, month, day, 12, 0, 0)


async def stage_water(store):
    """The ``water`` scenario loaded through the services, so it works on every backend."""
    disaster = await request_service.create_disaster(
        store,
        type="Flood",
        location="Chennai, TN",
        severity_level="High",
        latitude=DISASTER_LAT,
        longitude=DISASTER_LON,
    )
    depots = {}
    for label, km in (("A", 5), ("B", 2), ("C", 1)):
        location = await stock_service.create_storage_location(
            store,
            name=f"Depot {label}",
            city="Chennai",
            state="TN",
            capacity=1000,
            latitude=DISASTER_LAT + km * KM,
            longitude=DISASTER_LON,
        )
        depots[label] = location["id"]
    resources = {}
    for label, quantity in (("A", 60), ("B", 20), ("C", 0)):
        resource = await stock_service.create_resource(
            store, resource_type="Water", quantity_available=quantity, storage_location_id=depots[label],
        )
        resources[label] = resource["id"]
    request = await request_service.create_demand_request(
        store,
        disaster_id=disaster["id"],
        requested_by="Relief Camp 7",
        priority_level="High",
        resource_type="Water",
        quantity_requested=50,
    )
    return SimpleNamespace(
        disaster=disaster["id"], request=request["id"], depots=depots,
        a=resources["A"], b=resources["B"], c=resources["C"],
    )
