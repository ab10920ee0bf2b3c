"""
In-process store for local runs and tests.

Rows live in dictionaries of records. Writes are applied immediately and
journalled; if the unit of work raises, the journal is replayed backwards so
none of its writes stay visible. Row locks are per-row ``asyncio.Lock``
objects held until the unit of work ends, which gives the same serialisation
guarantees as ``SELECT ... FOR UPDATE`` for code that locks before it writes.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Mapping

from reliefops.errors import Conflict, NotFound
from reliefops.models import (
    AllocationStatus,
    AssignmentStatus,
    AvailabilityStatus,
    OPEN_ASSIGNMENT_STATUSES,
    PriorityLevel,
    RequestStatus,
    ResourceStatus,
    SeverityLevel,
)
from reliefops.repositories.base import (
    AllocationLogRecord,
    AllocationRecord,
    AssignmentRecord,
    DisasterRecord,
    InventoryRepository,
    RequestRecord,
    RequestRepository,
    RequestSummaryRecord,
    ResourceRecord,
    StockLevelRecord,
    StorageLocationRecord,
    Store,
    StoredResourceRecord,
    UnitOfWork,
    VolunteerRecord,
    VolunteerRepository,
)

logger = logging.getLogger(__name__)


class _Tables:
    def __init__(self):
        self.disasters: dict[int, DisasterRecord] = {}
        self.storage_locations: dict[int, StorageLocationRecord] = {}
        self.resources: dict[int, ResourceRecord] = {}
        self.resource_alerts: list[tuple[int, datetime]] = []
        self.requests: dict[int, RequestRecord] = {}
        self.allocations: dict[int, AllocationRecord] = {}
        self.allocation_log: list[AllocationLogRecord] = []
        self.volunteers: dict[int, VolunteerRecord] = {}
        self.assignments: dict[int, AssignmentRecord] = {}
        self._ids: dict[str, itertools.count] = defaultdict(lambda: itertools.count(1))

    def next_id(self, table: str) -> int:
        return next(self._ids[table])


class _MemoryRepository:

    def __init__(self, uow: "MemoryUnitOfWork"):
        self._uow = uow
        self._t = uow.tables

    def _put(self, table: dict, key: int, record) -> None:
        """Replace a row and journal the previous value."""
        previous = table.get(key)

        def undo():
            if previous is None:
                table.pop(key, None)
            else:
                table[key] = previous

        self._uow.journal(undo)
        table[key] = record

    async def get_disaster(self, disaster_id: int) -> DisasterRecord | None:
        disaster = self._t.disasters.get(disaster_id)
        return disaster.model_copy() if disaster else None


class MemoryInventoryRepository(_MemoryRepository, InventoryRepository):

    def _stored(self, resource: ResourceRecord) -> StoredResourceRecord:
        location = self._t.storage_locations.get(resource.storage_location_id)
        data = resource.model_dump()
        if location is None:
            return StoredResourceRecord(**data)
        return StoredResourceRecord(
            **data,
            storage_name=location.name,
            storage_city=location.city,
            storage_state=location.state,
            storage_latitude=location.latitude,
            storage_longitude=location.longitude,
        )

    async def get_resource(self, resource_id: int) -> ResourceRecord | None:
        resource = self._t.resources.get(resource_id)
        return resource.model_copy() if resource else None

    async def lock_resource(self, resource_id: int) -> ResourceRecord | None:
        if resource_id not in self._t.resources:
            return None
        await self._uow.lock("resources", resource_id)
        return await self.get_resource(resource_id)

    async def list_resources(
        self,
        *,
        resource_type: str | None = None,
        stored_only: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredResourceRecord]:
        rows = []
        for resource_id in sorted(self._t.resources):
            resource = self._t.resources[resource_id]
            if resource_type is not None and resource.resource_type != resource_type:
                continue
            if stored_only and resource.storage_location_id not in self._t.storage_locations:
                continue
            rows.append(self._stored(resource))
        end = offset + limit if limit is not None else None
        return rows[offset:end]

    async def set_quantity(
        self,
        resource_id: int,
        quantity: int,
        *,
        status: ResourceStatus | None = None,
    ) -> ResourceRecord:
        current = self._t.resources.get(resource_id)
        if current is None:
            raise NotFound(f"Resource {resource_id} not found")
        changes: dict[str, Any] = {"quantity_available": quantity, "updated_at": datetime.utcnow()}
        if status is not None:
            changes["status"] = status
        updated = current.model_copy(update=changes)
        self._put(self._t.resources, resource_id, updated)
        return updated.model_copy()

    async def list_stock_levels(self) -> list[StockLevelRecord]:
        last_alerts: dict[int, datetime] = {}
        for resource_id, alerted_at in self._t.resource_alerts:
            if resource_id not in last_alerts or alerted_at > last_alerts[resource_id]:
                last_alerts[resource_id] = alerted_at

        levels = []
        for resource in self._t.resources.values():
            location = self._t.storage_locations.get(resource.storage_location_id)
            levels.append(
                StockLevelRecord(
                    resource_id=resource.id,
                    resource_type=resource.resource_type,
                    quantity_available=resource.quantity_available,
                    storage_name=location.name if location else None,
                    updated_at=resource.updated_at,
                    last_alert_at=last_alerts.get(resource.id),
                )
            )
        levels.sort(key=lambda level: (level.resource_type, level.resource_id))
        return levels

    async def insert_resource(
        self,
        *,
        resource_type: str,
        quantity: int,
        status: ResourceStatus,
        storage_location_id: int | None = None,
    ) -> ResourceRecord:
        now = datetime.utcnow()
        resource = ResourceRecord(
            id=self._t.next_id("resources"),
            resource_type=resource_type,
            quantity_available=quantity,
            status=status,
            storage_location_id=storage_location_id,
            created_at=now,
            updated_at=now,
        )
        self._put(self._t.resources, resource.id, resource)
        return resource.model_copy()

    async def update_resource(self, resource_id: int, changes: Mapping[str, Any]) -> ResourceRecord:
        current = self._t.resources.get(resource_id)
        if current is None:
            raise NotFound(f"Resource {resource_id} not found")
        updated = current.model_copy(update={**changes, "updated_at": datetime.utcnow()})
        self._put(self._t.resources, resource_id, updated)
        return updated.model_copy()

    async def get_storage_location(self, location_id: int) -> StorageLocationRecord | None:
        location = self._t.storage_locations.get(location_id)
        return location.model_copy() if location else None

    async def list_storage_locations(self) -> list[StorageLocationRecord]:
        rows = sorted(self._t.storage_locations.values(), key=lambda l: (l.city, l.name, l.id))
        return [l.model_copy() for l in rows]

    async def insert_storage_location(self, **fields: Any) -> StorageLocationRecord:
        location = StorageLocationRecord(id=self._t.next_id("storage_locations"), **fields)
        self._put(self._t.storage_locations, location.id, location)
        return location.model_copy()


class MemoryRequestRepository(_MemoryRepository, RequestRepository):

    async def insert_disaster(
        self,
        *,
        type: str,
        location: str,
        severity_level: SeverityLevel,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> DisasterRecord:
        disaster = DisasterRecord(
            id=self._t.next_id("disasters"),
            type=type,
            location=location,
            severity_level=severity_level,
            latitude=latitude,
            longitude=longitude,
        )
        self._put(self._t.disasters, disaster.id, disaster)
        return disaster.model_copy()

    async def list_disasters(self) -> list[DisasterRecord]:
        return [d.model_copy() for _, d in sorted(self._t.disasters.items())]

    async def get_request(self, request_id: int) -> RequestRecord | None:
        req = self._t.requests.get(request_id)
        return req.model_copy() if req else None

    async def insert_request(
        self,
        *,
        disaster_id: int,
        requested_by: str,
        priority_level: PriorityLevel,
        location: str | None,
        resource_type: str,
        quantity: int,
    ) -> RequestRecord:
        now = datetime.utcnow()
        req = RequestRecord(
            id=self._t.next_id("demand_requests"),
            disaster_id=disaster_id,
            requested_by=requested_by,
            priority_level=priority_level,
            location=location,
            resource_type=resource_type,
            quantity_requested=quantity,
            status=RequestStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self._put(self._t.requests, req.id, req)
        return req.model_copy()

    async def list_requests(self, *, limit: int = 100, offset: int = 0) -> list[RequestSummaryRecord]:
        rows = sorted(self._t.requests.values(), key=lambda r: (r.created_at, r.id), reverse=True)
        summaries = []
        for req in rows[offset:offset + limit]:
            disaster = self._t.disasters.get(req.disaster_id)
            summaries.append(
                RequestSummaryRecord(
                    **req.model_dump(),
                    disaster_type=disaster.type if disaster else None,
                    allocated_quantity=await self.allocated_total(req.id),
                )
            )
        return summaries

    async def lock_request(self, request_id: int) -> RequestRecord | None:
        if request_id not in self._t.requests:
            return None
        await self._uow.lock("demand_requests", request_id)
        return await self.get_request(request_id)

    async def set_request_status(self, request_id: int, status: RequestStatus) -> RequestRecord:
        current = self._t.requests.get(request_id)
        if current is None:
            raise NotFound(f"Demand request {request_id} not found")
        updated = current.model_copy(update={"status": status, "updated_at": datetime.utcnow()})
        self._put(self._t.requests, request_id, updated)
        return updated.model_copy()

    async def allocated_total(self, request_id: int) -> int:
        return sum(
            a.allocated_quantity
            for a in self._t.allocations.values()
            if a.request_id == request_id and a.status != AllocationStatus.CANCELLED
        )

    async def insert_allocation(
        self,
        *,
        request_id: int,
        resource_id: int,
        quantity: int,
        status: AllocationStatus = AllocationStatus.DISPATCHED,
    ) -> AllocationRecord:
        now = datetime.utcnow()
        allocation = AllocationRecord(
            id=self._t.next_id("allocations"),
            request_id=request_id,
            resource_id=resource_id,
            allocated_quantity=quantity,
            status=status,
            created_at=now,
            updated_at=now,
        )
        self._put(self._t.allocations, allocation.id, allocation)
        return allocation.model_copy()

    async def get_allocation(self, allocation_id: int) -> AllocationRecord | None:
        allocation = self._t.allocations.get(allocation_id)
        return allocation.model_copy() if allocation else None

    async def lock_allocation(self, allocation_id: int) -> AllocationRecord | None:
        if allocation_id not in self._t.allocations:
            return None
        await self._uow.lock("allocations", allocation_id)
        return await self.get_allocation(allocation_id)

    async def set_allocation_status(self, allocation_id: int, status: AllocationStatus) -> AllocationRecord:
        current = self._t.allocations.get(allocation_id)
        if current is None:
            raise NotFound(f"Allocation {allocation_id} not found")
        updated = current.model_copy(update={"status": status, "updated_at": datetime.utcnow()})
        self._put(self._t.allocations, allocation_id, updated)
        return updated.model_copy()

    async def list_allocations(self, *, limit: int = 100, offset: int = 0) -> list[AllocationRecord]:
        rows = sorted(
            self._t.allocations.values(),
            key=lambda a: (a.created_at, a.id),
            reverse=True,
        )
        return [a.model_copy() for a in rows[offset:offset + limit]]

    async def append_log(self, allocation_id: int, action: str) -> AllocationLogRecord:
        entry = AllocationLogRecord(
            id=self._t.next_id("allocation_log"),
            allocation_id=allocation_id,
            action=action,
            action_date=datetime.utcnow(),
        )
        log = self._t.allocation_log
        log.append(entry)
        self._uow.journal(lambda: log.remove(entry))
        return entry.model_copy()

    async def list_logs(self, *, limit: int = 50) -> list[AllocationLogRecord]:
        rows = sorted(self._t.allocation_log, key=lambda e: e.id, reverse=True)
        return [e.model_copy() for e in rows[:limit]]


class MemoryVolunteerRepository(_MemoryRepository, VolunteerRepository):

    def _with_open_count(self, volunteer: VolunteerRecord) -> VolunteerRecord:
        open_count = sum(
            1
            for a in self._t.assignments.values()
            if a.volunteer_id == volunteer.id and a.status in OPEN_ASSIGNMENT_STATUSES
        )
        return volunteer.model_copy(update={"open_assignments": open_count})

    def _with_name(self, assignment: AssignmentRecord) -> AssignmentRecord:
        volunteer = self._t.volunteers.get(assignment.volunteer_id)
        return assignment.model_copy(update={"volunteer_name": volunteer.name if volunteer else None})

    async def list_volunteers(
        self, *, availability: AvailabilityStatus | None = None
    ) -> list[VolunteerRecord]:
        return [
            self._with_open_count(v)
            for _, v in sorted(self._t.volunteers.items())
            if availability is None or v.availability_status == availability
        ]

    async def get_volunteer(self, volunteer_id: int) -> VolunteerRecord | None:
        volunteer = self._t.volunteers.get(volunteer_id)
        return self._with_open_count(volunteer) if volunteer else None

    async def insert_volunteer(
        self,
        *,
        name: str,
        skill_set: str | None = None,
        availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE,
        contact_number: str | None = None,
        location: str | None = None,
    ) -> VolunteerRecord:
        volunteer = VolunteerRecord(
            id=self._t.next_id("volunteers"),
            name=name,
            skill_set=skill_set,
            availability_status=availability_status,
            contact_number=contact_number,
            location=location,
        )
        self._put(self._t.volunteers, volunteer.id, volunteer)
        return volunteer.model_copy()

    async def lock_volunteer(self, volunteer_id: int) -> VolunteerRecord | None:
        if volunteer_id not in self._t.volunteers:
            return None
        await self._uow.lock("volunteers", volunteer_id)
        return self._with_open_count(self._t.volunteers[volunteer_id])

    async def insert_assignment(
        self,
        *,
        volunteer_id: int | None,
        disaster_id: int,
        task: str,
        skill_requested: str | None = None,
    ) -> AssignmentRecord:
        now = datetime.utcnow()
        assignment = AssignmentRecord(
            id=self._t.next_id("volunteer_assignments"),
            volunteer_id=volunteer_id,
            disaster_id=disaster_id,
            task=task,
            skill_requested=skill_requested,
            status=AssignmentStatus.ASSIGNED,
            created_at=now,
            updated_at=now,
        )
        self._put(self._t.assignments, assignment.id, assignment)
        return self._with_name(assignment)

    async def get_assignment(self, assignment_id: int) -> AssignmentRecord | None:
        assignment = self._t.assignments.get(assignment_id)
        return self._with_name(assignment) if assignment else None

    async def set_assignment_status(self, assignment_id: int, status: AssignmentStatus) -> AssignmentRecord:
        current = self._t.assignments.get(assignment_id)
        if current is None:
            raise NotFound(f"Volunteer assignment {assignment_id} not found")
        updated = current.model_copy(update={"status": status, "updated_at": datetime.utcnow()})
        self._put(self._t.assignments, assignment_id, updated)
        return self._with_name(updated)

    async def list_assignments(
        self,
        *,
        volunteer_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AssignmentRecord]:
        rows = sorted(
            (a for a in self._t.assignments.values() if volunteer_id is None or a.volunteer_id == volunteer_id),
            key=lambda a: (a.created_at, a.id),
            reverse=True,
        )
        return [self._with_name(a) for a in rows[offset:offset + limit]]


class MemoryUnitOfWork(UnitOfWork):

    def __init__(self, store: "MemoryStore"):
        self._store = store
        self.tables = store.tables
        self._undo: list[Callable[[], None]] = []
        self._held: dict[tuple[str, int], asyncio.Lock] = {}
        self.inventory = MemoryInventoryRepository(self)
        self.requests = MemoryRequestRepository(self)
        self.volunteers = MemoryVolunteerRepository(self)

    def journal(self, undo: Callable[[], None]) -> None:
        self._undo.append(undo)

    async def lock(self, table: str, row_id: int) -> None:
        key = (table, row_id)
        if key in self._held:
            return
        lock = self._store.row_lock(key)
        timeout = self._store.lock_timeout_seconds
        try:
            await asyncio.wait_for(lock.acquire(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for %s row %s", table, row_id)
            raise Conflict(f"{table} row {row_id} is locked by a concurrent operation; retry")
        self._held[key] = lock

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()

    def release(self) -> None:
        self._undo.clear()
        for lock in self._held.values():
            lock.release()
        self._held.clear()


class MemoryStore(Store):
    """Single-process store for tests and local runs.

    ``_locks`` keeps one ``asyncio.Lock`` per row that has ever been locked and
    never evicts them, so memory grows with the number of distinct rows touched.
    Use ``SqlStore`` for anything long-running.
    """

    def __init__(self, lock_timeout_seconds: float | None = 5.0):
        self.lock_timeout_seconds = lock_timeout_seconds
        self.tables = _Tables()
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}

    def row_lock(self, key: tuple[str, int]) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def session(self) -> AsyncIterator[MemoryUnitOfWork]:
        uow = MemoryUnitOfWork(self)
        try:
            yield uow
        except BaseException:
            uow.rollback()
            raise
        finally:
            uow.release()

    async def ping(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Seeding helpers (synchronous, outside any unit of work)
    # ------------------------------------------------------------------

    def add_disaster(self, **fields: Any) -> DisasterRecord:
        record = DisasterRecord(id=self.tables.next_id("disasters"), **fields)
        self.tables.disasters[record.id] = record
        return record

    def add_storage_location(self, **fields: Any) -> int:
        record = StorageLocationRecord(id=self.tables.next_id("storage_locations"), **fields)
        self.tables.storage_locations[record.id] = record
        return record.id

    def add_resource(self, **fields: Any) -> ResourceRecord:
        now = datetime.utcnow()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        record = ResourceRecord(id=self.tables.next_id("resources"), **fields)
        self.tables.resources[record.id] = record
        return record

    def add_resource_alert(self, resource_id: int, alerted_at: datetime) -> None:
        self.tables.resource_alerts.append((resource_id, alerted_at))

    def add_request(self, **fields: Any) -> RequestRecord:
        now = datetime.utcnow()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        record = RequestRecord(id=self.tables.next_id("demand_requests"), **fields)
        self.tables.requests[record.id] = record
        return record

    def add_volunteer(self, **fields: Any) -> VolunteerRecord:
        record = VolunteerRecord(id=self.tables.next_id("volunteers"), **fields)
        self.tables.volunteers[record.id] = record
        return record

    def add_assignment(self, **fields: Any) -> AssignmentRecord:
        now = datetime.utcnow()
        fields.setdefault("created_at", now)
        fields.setdefault("updated_at", now)
        record = AssignmentRecord(id=self.tables.next_id("volunteer_assignments"), **fields)
        self.tables.assignments[record.id] = record
        return record
