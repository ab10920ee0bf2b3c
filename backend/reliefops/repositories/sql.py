"""
SQLAlchemy (async, asyncpg) implementation of the data-access contract.

Row locks are ``SELECT ... FOR UPDATE`` inside the unit-of-work transaction, so
they are released on commit or rollback. ``lock_timeout`` is set per
transaction; lock timeouts, deadlocks and serialization failures surface as
:class:`reliefops.errors.Conflict`.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import func, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from reliefops.config import Settings
from reliefops.db.postgres import Base, make_engine, make_sessionmaker
from reliefops.errors import Conflict, NotFound
from reliefops.models import (
    Allocation,
    AllocationLog,
    AllocationStatus,
    AssignmentStatus,
    AvailabilityStatus,
    DemandRequest,
    Disaster,
    OPEN_ASSIGNMENT_STATUSES,
    PriorityLevel,
    RequestStatus,
    Resource,
    ResourceAlert,
    ResourceStatus,
    SeverityLevel,
    StorageLocation,
    Volunteer,
    VolunteerAssignment,
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

# lock_not_available, deadlock_detected, serialization_failure
_CONFLICT_SQLSTATES = {"55P03", "40P01", "40001"}


def _is_conflict(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code in _CONFLICT_SQLSTATES


def _stored_record(resource: Resource, location: StorageLocation | None) -> StoredResourceRecord:
    base = ResourceRecord.model_validate(resource, from_attributes=True).model_dump()
    if location is None:
        return StoredResourceRecord(**base)
    return StoredResourceRecord(
        **base,
        storage_name=location.name,
        storage_city=location.city,
        storage_state=location.state,
        storage_latitude=location.latitude,
        storage_longitude=location.longitude,
    )


def _assignment_record(assignment: VolunteerAssignment, volunteer_name: str | None) -> AssignmentRecord:
    data = {
        "id": assignment.id,
        "volunteer_id": assignment.volunteer_id,
        "volunteer_name": volunteer_name,
        "disaster_id": assignment.disaster_id,
        "task": assignment.task,
        "skill_requested": assignment.skill_requested,
        "status": assignment.status,
        "created_at": assignment.created_at,
        "updated_at": assignment.updated_at,
    }
    return AssignmentRecord(**data)


class _SqlRepository:

    def __init__(self, uow: "SqlUnitOfWork"):
        self._uow = uow

    @property
    def db(self) -> AsyncSession:
        return self._uow.db

    async def _lock_one(self, query):
        await self._uow.apply_lock_timeout()
        result = await self.db.execute(
            query.with_for_update().execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_disaster(self, disaster_id: int) -> DisasterRecord | None:
        result = await self.db.execute(select(Disaster).where(Disaster.id == disaster_id))
        disaster = result.scalar_one_or_none()
        if disaster is None:
            return None
        return DisasterRecord.model_validate(disaster, from_attributes=True)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

class SqlInventoryRepository(_SqlRepository, InventoryRepository):

    async def get_resource(self, resource_id: int) -> ResourceRecord | None:
        result = await self.db.execute(select(Resource).where(Resource.id == resource_id))
        resource = result.scalar_one_or_none()
        if resource is None:
            return None
        return ResourceRecord.model_validate(resource, from_attributes=True)

    async def lock_resource(self, resource_id: int) -> ResourceRecord | None:
        resource = await self._lock_one(select(Resource).where(Resource.id == resource_id))
        if resource is None:
            return None
        return ResourceRecord.model_validate(resource, from_attributes=True)

    async def list_resources(
        self,
        *,
        resource_type: str | None = None,
        stored_only: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredResourceRecord]:
        query = select(Resource, StorageLocation)
        if stored_only:
            query = query.join(StorageLocation, StorageLocation.id == Resource.storage_location_id)
        else:
            query = query.outerjoin(StorageLocation, StorageLocation.id == Resource.storage_location_id)
        if resource_type is not None:
            query = query.where(Resource.resource_type == resource_type)
        query = query.order_by(Resource.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return [_stored_record(resource, location) for resource, location in result.all()]

    async def set_quantity(
        self,
        resource_id: int,
        quantity: int,
        *,
        status: ResourceStatus | None = None,
    ) -> ResourceRecord:
        resource = await self.db.get(Resource, resource_id)
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")
        resource.quantity_available = quantity
        if status is not None:
            resource.status = status
        resource.updated_at = datetime.utcnow()
        await self.db.flush()
        return ResourceRecord.model_validate(resource, from_attributes=True)

    async def list_stock_levels(self) -> list[StockLevelRecord]:
        last_alert = (
            select(
                ResourceAlert.resource_id,
                func.max(ResourceAlert.alerted_at).label("last_alert_at"),
            )
            .group_by(ResourceAlert.resource_id)
            .subquery()
        )
        query = (
            select(Resource, StorageLocation.name, last_alert.c.last_alert_at)
            .outerjoin(StorageLocation, StorageLocation.id == Resource.storage_location_id)
            .outerjoin(last_alert, last_alert.c.resource_id == Resource.id)
            .order_by(Resource.resource_type, Resource.id)
        )
        result = await self.db.execute(query)
        return [
            StockLevelRecord(
                resource_id=resource.id,
                resource_type=resource.resource_type,
                quantity_available=resource.quantity_available,
                storage_name=storage_name,
                updated_at=resource.updated_at,
                last_alert_at=last_alert_at,
            )
            for resource, storage_name, last_alert_at in result.all()
        ]

    async def insert_resource(
        self,
        *,
        resource_type: str,
        quantity: int,
        status: ResourceStatus,
        storage_location_id: int | None = None,
    ) -> ResourceRecord:
        resource = Resource(
            resource_type=resource_type,
            quantity_available=quantity,
            status=status,
            storage_location_id=storage_location_id,
        )
        self.db.add(resource)
        await self.db.flush()
        await self.db.refresh(resource)
        return ResourceRecord.model_validate(resource, from_attributes=True)

    async def update_resource(self, resource_id: int, changes: Mapping[str, Any]) -> ResourceRecord:
        resource = await self.db.get(Resource, resource_id)
        if resource is None:
            raise NotFound(f"Resource {resource_id} not found")
        for field, value in changes.items():
            setattr(resource, field, value)
        resource.updated_at = datetime.utcnow()
        await self.db.flush()
        return ResourceRecord.model_validate(resource, from_attributes=True)

    async def get_storage_location(self, location_id: int) -> StorageLocationRecord | None:
        location = await self.db.get(StorageLocation, location_id)
        if location is None:
            return None
        return StorageLocationRecord.model_validate(location, from_attributes=True)

    async def list_storage_locations(self) -> list[StorageLocationRecord]:
        result = await self.db.execute(
            select(StorageLocation).order_by(StorageLocation.city, StorageLocation.name, StorageLocation.id)
        )
        return [StorageLocationRecord.model_validate(l, from_attributes=True) for l in result.scalars().all()]

    async def insert_storage_location(self, **fields: Any) -> StorageLocationRecord:
        location = StorageLocation(**fields)
        self.db.add(location)
        await self.db.flush()
        await self.db.refresh(location)
        return StorageLocationRecord.model_validate(location, from_attributes=True)


# ---------------------------------------------------------------------------
# Requests & allocations
# ---------------------------------------------------------------------------

class SqlRequestRepository(_SqlRepository, RequestRepository):

    async def insert_disaster(
        self,
        *,
        type: str,
        location: str,
        severity_level: SeverityLevel,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> DisasterRecord:
        disaster = Disaster(
            type=type,
            location=location,
            severity_level=severity_level,
            latitude=latitude,
            longitude=longitude,
        )
        self.db.add(disaster)
        await self.db.flush()
        await self.db.refresh(disaster)
        return DisasterRecord.model_validate(disaster, from_attributes=True)

    async def list_disasters(self) -> list[DisasterRecord]:
        result = await self.db.execute(select(Disaster).order_by(Disaster.id))
        return [DisasterRecord.model_validate(d, from_attributes=True) for d in result.scalars().all()]

    async def get_request(self, request_id: int) -> RequestRecord | None:
        result = await self.db.execute(select(DemandRequest).where(DemandRequest.id == request_id))
        req = result.scalar_one_or_none()
        if req is None:
            return None
        return RequestRecord.model_validate(req, from_attributes=True)

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
        req = DemandRequest(
            disaster_id=disaster_id,
            requested_by=requested_by,
            priority_level=priority_level,
            location=location,
            resource_type=resource_type,
            quantity_requested=quantity,
            status=RequestStatus.PENDING,
        )
        self.db.add(req)
        await self.db.flush()
        await self.db.refresh(req)
        return RequestRecord.model_validate(req, from_attributes=True)

    async def list_requests(self, *, limit: int = 100, offset: int = 0) -> list[RequestSummaryRecord]:
        allocated = (
            select(
                Allocation.request_id,
                func.sum(Allocation.allocated_quantity).label("allocated_quantity"),
            )
            .where(Allocation.status != AllocationStatus.CANCELLED)
            .group_by(Allocation.request_id)
            .subquery()
        )
        query = (
            select(DemandRequest, Disaster.type, func.coalesce(allocated.c.allocated_quantity, 0))
            .join(Disaster, Disaster.id == DemandRequest.disaster_id)
            .outerjoin(allocated, allocated.c.request_id == DemandRequest.id)
            .order_by(DemandRequest.created_at.desc(), DemandRequest.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        return [
            RequestSummaryRecord(
                **RequestRecord.model_validate(req, from_attributes=True).model_dump(),
                disaster_type=disaster_type,
                allocated_quantity=int(allocated_quantity),
            )
            for req, disaster_type, allocated_quantity in result.all()
        ]

    async def lock_request(self, request_id: int) -> RequestRecord | None:
        req = await self._lock_one(select(DemandRequest).where(DemandRequest.id == request_id))
        if req is None:
            return None
        return RequestRecord.model_validate(req, from_attributes=True)

    async def set_request_status(self, request_id: int, status: RequestStatus) -> RequestRecord:
        req = await self.db.get(DemandRequest, request_id)
        if req is None:
            raise NotFound(f"Demand request {request_id} not found")
        req.status = status
        req.updated_at = datetime.utcnow()
        await self.db.flush()
        return RequestRecord.model_validate(req, from_attributes=True)

    async def allocated_total(self, request_id: int) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Allocation.allocated_quantity), 0)).where(
                Allocation.request_id == request_id,
                Allocation.status != AllocationStatus.CANCELLED,
            )
        )
        return int(result.scalar_one())

    async def insert_allocation(
        self,
        *,
        request_id: int,
        resource_id: int,
        quantity: int,
        status: AllocationStatus = AllocationStatus.DISPATCHED,
    ) -> AllocationRecord:
        allocation = Allocation(
            request_id=request_id,
            resource_id=resource_id,
            allocated_quantity=quantity,
            status=status,
        )
        self.db.add(allocation)
        await self.db.flush()
        await self.db.refresh(allocation)
        return AllocationRecord.model_validate(allocation, from_attributes=True)

    async def get_allocation(self, allocation_id: int) -> AllocationRecord | None:
        result = await self.db.execute(select(Allocation).where(Allocation.id == allocation_id))
        allocation = result.scalar_one_or_none()
        if allocation is None:
            return None
        return AllocationRecord.model_validate(allocation, from_attributes=True)

    async def lock_allocation(self, allocation_id: int) -> AllocationRecord | None:
        allocation = await self._lock_one(select(Allocation).where(Allocation.id == allocation_id))
        if allocation is None:
            return None
        return AllocationRecord.model_validate(allocation, from_attributes=True)

    async def set_allocation_status(self, allocation_id: int, status: AllocationStatus) -> AllocationRecord:
        allocation = await self.db.get(Allocation, allocation_id)
        if allocation is None:
            raise NotFound(f"Allocation {allocation_id} not found")
        allocation.status = status
        allocation.updated_at = datetime.utcnow()
        await self.db.flush()
        return AllocationRecord.model_validate(allocation, from_attributes=True)

    async def list_allocations(self, *, limit: int = 100, offset: int = 0) -> list[AllocationRecord]:
        result = await self.db.execute(
            select(Allocation)
            .order_by(Allocation.created_at.desc(), Allocation.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return [AllocationRecord.model_validate(a, from_attributes=True) for a in result.scalars().all()]

    async def append_log(self, allocation_id: int, action: str) -> AllocationLogRecord:
        entry = AllocationLog(allocation_id=allocation_id, action=action)
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return AllocationLogRecord.model_validate(entry, from_attributes=True)

    async def list_logs(self, *, limit: int = 50) -> list[AllocationLogRecord]:
        result = await self.db.execute(
            select(AllocationLog).order_by(AllocationLog.id.desc()).limit(limit)
        )
        return [AllocationLogRecord.model_validate(e, from_attributes=True) for e in result.scalars().all()]


# ---------------------------------------------------------------------------
# Volunteers
# ---------------------------------------------------------------------------

class SqlVolunteerRepository(_SqlRepository, VolunteerRepository):

    async def _open_count(self, volunteer_id: int) -> int:
        result = await self.db.execute(
            select(func.count(VolunteerAssignment.id)).where(
                VolunteerAssignment.volunteer_id == volunteer_id,
                VolunteerAssignment.status.in_(list(OPEN_ASSIGNMENT_STATUSES)),
            )
        )
        return int(result.scalar_one())

    async def list_volunteers(
        self, *, availability: AvailabilityStatus | None = None
    ) -> list[VolunteerRecord]:
        open_counts = (
            select(
                VolunteerAssignment.volunteer_id,
                func.count(VolunteerAssignment.id).label("open_assignments"),
            )
            .where(VolunteerAssignment.status.in_(list(OPEN_ASSIGNMENT_STATUSES)))
            .group_by(VolunteerAssignment.volunteer_id)
            .subquery()
        )
        query = (
            select(Volunteer, func.coalesce(open_counts.c.open_assignments, 0))
            .outerjoin(open_counts, open_counts.c.volunteer_id == Volunteer.id)
            .order_by(Volunteer.id)
        )
        if availability is not None:
            query = query.where(Volunteer.availability_status == availability)

        result = await self.db.execute(query)
        roster = []
        for volunteer, open_assignments in result.all():
            record = VolunteerRecord.model_validate(volunteer, from_attributes=True)
            record.open_assignments = int(open_assignments)
            roster.append(record)
        return roster

    async def get_volunteer(self, volunteer_id: int) -> VolunteerRecord | None:
        volunteer = await self.db.get(Volunteer, volunteer_id)
        if volunteer is None:
            return None
        record = VolunteerRecord.model_validate(volunteer, from_attributes=True)
        record.open_assignments = await self._open_count(volunteer_id)
        return record

    async def insert_volunteer(
        self,
        *,
        name: str,
        skill_set: str | None = None,
        availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE,
        contact_number: str | None = None,
        location: str | None = None,
    ) -> VolunteerRecord:
        volunteer = Volunteer(
            name=name,
            skill_set=skill_set,
            availability_status=availability_status,
            contact_number=contact_number,
            location=location,
        )
        self.db.add(volunteer)
        await self.db.flush()
        await self.db.refresh(volunteer)
        return VolunteerRecord.model_validate(volunteer, from_attributes=True)

    async def lock_volunteer(self, volunteer_id: int) -> VolunteerRecord | None:
        volunteer = await self._lock_one(select(Volunteer).where(Volunteer.id == volunteer_id))
        if volunteer is None:
            return None
        record = VolunteerRecord.model_validate(volunteer, from_attributes=True)
        record.open_assignments = await self._open_count(volunteer_id)
        return record

    async def _volunteer_name(self, volunteer_id: int | None) -> str | None:
        if volunteer_id is None:
            return None
        result = await self.db.execute(select(Volunteer.name).where(Volunteer.id == volunteer_id))
        return result.scalar_one_or_none()

    async def insert_assignment(
        self,
        *,
        volunteer_id: int | None,
        disaster_id: int,
        task: str,
        skill_requested: str | None = None,
    ) -> AssignmentRecord:
        assignment = VolunteerAssignment(
            volunteer_id=volunteer_id,
            disaster_id=disaster_id,
            task=task,
            skill_requested=skill_requested,
            status=AssignmentStatus.ASSIGNED,
        )
        self.db.add(assignment)
        await self.db.flush()
        await self.db.refresh(assignment)
        return _assignment_record(assignment, await self._volunteer_name(volunteer_id))

    async def get_assignment(self, assignment_id: int) -> AssignmentRecord | None:
        result = await self.db.execute(
            select(VolunteerAssignment, Volunteer.name)
            .outerjoin(Volunteer, Volunteer.id == VolunteerAssignment.volunteer_id)
            .where(VolunteerAssignment.id == assignment_id)
        )
        row = result.first()
        if row is None:
            return None
        assignment, volunteer_name = row
        return _assignment_record(assignment, volunteer_name)

    async def set_assignment_status(self, assignment_id: int, status: AssignmentStatus) -> AssignmentRecord:
        assignment = await self.db.get(VolunteerAssignment, assignment_id)
        if assignment is None:
            raise NotFound(f"Volunteer assignment {assignment_id} not found")
        assignment.status = status
        assignment.updated_at = datetime.utcnow()
        await self.db.flush()
        return _assignment_record(assignment, await self._volunteer_name(assignment.volunteer_id))

    async def list_assignments(
        self,
        *,
        volunteer_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AssignmentRecord]:
        query = select(VolunteerAssignment, Volunteer.name).outerjoin(
            Volunteer, Volunteer.id == VolunteerAssignment.volunteer_id
        )
        if volunteer_id is not None:
            query = query.where(VolunteerAssignment.volunteer_id == volunteer_id)
        query = (
            query.order_by(VolunteerAssignment.created_at.desc(), VolunteerAssignment.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        return [_assignment_record(a, name) for a, name in result.all()]


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class SqlUnitOfWork(UnitOfWork):

    def __init__(self, db: AsyncSession, lock_timeout_seconds: float | None):
        self.db = db
        self._lock_timeout_ms = int(lock_timeout_seconds * 1000) if lock_timeout_seconds else None
        self._lock_timeout_applied = False
        self.inventory = SqlInventoryRepository(self)
        self.requests = SqlRequestRepository(self)
        self.volunteers = SqlVolunteerRepository(self)

    async def apply_lock_timeout(self) -> None:
        if self._lock_timeout_ms is None or self._lock_timeout_applied:
            return
        # SET LOCAL takes no bind parameters; the value is an int we built ourselves
        await self.db.execute(text(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'"))
        self._lock_timeout_applied = True


class SqlStore(Store):

    def __init__(self, settings: Settings, engine: AsyncEngine | None = None):
        self._settings = settings
        self._engine = engine
        self._sessionmaker = make_sessionmaker(engine) if engine is not None else None

    async def open(self) -> None:
        if self._engine is None:
            self._engine = make_engine(self._settings)
            self._sessionmaker = make_sessionmaker(self._engine)
        if self._settings.CREATE_TABLES:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables ensured")

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None

    def _lock_timeout_seconds(self) -> float | None:
        # lock_timeout is a PostgreSQL setting; other dialects wait on their own terms
        if self._engine is None or self._engine.dialect.name != "postgresql":
            return None
        return self._settings.ALLOCATION_LOCK_TIMEOUT_SECONDS

    @asynccontextmanager
    async def session(self) -> AsyncIterator[SqlUnitOfWork]:
        if self._sessionmaker is None:
            raise RuntimeError("SqlStore.session() called before open()")
        async with self._sessionmaker() as db:
            uow = SqlUnitOfWork(db, self._lock_timeout_seconds())
            try:
                yield uow
                await db.commit()
            except DBAPIError as exc:
                await db.rollback()
                if _is_conflict(exc):
                    logger.warning("Transaction lost a lock race: %s", exc.orig)
                    raise Conflict("Record is locked by a concurrent operation; retry") from exc
                raise
            except Exception:
                await db.rollback()
                raise

    async def ping(self) -> bool:
        if self._engine is None:
            return False
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
