"""
Data-access contract for the fulfillment engine.

Services never talk to a database directly: they open a unit of work with
``Store.session()`` and go through the three repositories it exposes. The unit
of work is one transaction: it commits when the ``async with`` block exits
normally and rolls back every write when the block raises.

``lock_*`` methods take a row lock that is held until the unit of work ends.
Implementations raise :class:`reliefops.errors.Conflict` when a lock cannot be
acquired within the configured timeout.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from reliefops.models import (
    AllocationStatus,
    AssignmentStatus,
    AvailabilityStatus,
    PriorityLevel,
    RequestStatus,
    ResourceStatus,
    SeverityLevel,
)


# ---------------------------------------------------------------------------
# Records returned by repositories
# ---------------------------------------------------------------------------

class DisasterRecord(BaseModel):
    id: int
    type: str
    location: str
    severity_level: SeverityLevel = SeverityLevel.LOW
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class RequestRecord(BaseModel):
    id: int
    disaster_id: int
    requested_by: str
    priority_level: PriorityLevel
    location: Optional[str] = None
    resource_type: str
    quantity_requested: int
    status: RequestStatus = RequestStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RequestSummaryRecord(RequestRecord):
    """A request with its disaster type and the units allocated to it so far."""
    disaster_type: Optional[str] = None
    allocated_quantity: int = 0


class StorageLocationRecord(BaseModel):
    id: int
    name: str
    address: Optional[str] = None
    city: str
    state: Optional[str] = None
    capacity: int = 0
    contact_number: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class ResourceRecord(BaseModel):
    id: int
    resource_type: str
    quantity_available: int
    status: ResourceStatus = ResourceStatus.AVAILABLE
    storage_location_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class StoredResourceRecord(ResourceRecord):
    """A resource joined to its storage location (all storage fields empty when unstored)."""
    storage_name: Optional[str] = None
    storage_city: Optional[str] = None
    storage_state: Optional[str] = None
    storage_latitude: Optional[float] = None
    storage_longitude: Optional[float] = None


class StockLevelRecord(BaseModel):
    resource_id: int
    resource_type: str
    quantity_available: int
    storage_name: Optional[str] = None
    updated_at: Optional[datetime] = None
    last_alert_at: Optional[datetime] = None  # newest resource_alerts row, if any


class AllocationRecord(BaseModel):
    id: int
    request_id: int
    resource_id: int
    allocated_quantity: int
    status: AllocationStatus = AllocationStatus.DISPATCHED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class AllocationLogRecord(BaseModel):
    id: int
    allocation_id: int
    action: str
    action_date: Optional[datetime] = None


class VolunteerRecord(BaseModel):
    id: int
    name: str
    skill_set: Optional[str] = None
    availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE
    contact_number: Optional[str] = None
    location: Optional[str] = None
    open_assignments: int = 0  # derived on read: Assigned + In Progress


class AssignmentRecord(BaseModel):
    id: int
    volunteer_id: Optional[int] = None
    volunteer_name: Optional[str] = None
    disaster_id: int
    task: str
    skill_requested: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Repository interfaces
# ---------------------------------------------------------------------------

class DisasterLookup(ABC):

    @abstractmethod
    async def get_disaster(self, disaster_id: int) -> DisasterRecord | None:
        pass


class InventoryRepository(ABC):

    @abstractmethod
    async def get_resource(self, resource_id: int) -> ResourceRecord | None:
        pass

    @abstractmethod
    async def lock_resource(self, resource_id: int) -> ResourceRecord | None:
        pass

    @abstractmethod
    async def list_resources(
        self,
        *,
        resource_type: str | None = None,
        stored_only: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[StoredResourceRecord]:
        """Resources joined to storage, ordered by id. ``stored_only`` drops unstored ones."""

    @abstractmethod
    async def set_quantity(
        self,
        resource_id: int,
        quantity: int,
        *,
        status: ResourceStatus | None = None,
    ) -> ResourceRecord:
        """Write a new quantity. Callers must hold the resource lock."""

    @abstractmethod
    async def list_stock_levels(self) -> list[StockLevelRecord]:
        pass

    @abstractmethod
    async def insert_resource(
        self,
        *,
        resource_type: str,
        quantity: int,
        status: ResourceStatus,
        storage_location_id: int | None = None,
    ) -> ResourceRecord:
        pass

    @abstractmethod
    async def update_resource(self, resource_id: int, changes: Mapping[str, Any]) -> ResourceRecord:
        """Apply ``quantity_available``/``status``/``storage_location_id`` changes. Callers hold the lock."""

    @abstractmethod
    async def get_storage_location(self, location_id: int) -> StorageLocationRecord | None:
        pass

    @abstractmethod
    async def list_storage_locations(self) -> list[StorageLocationRecord]:
        """Ordered by city, then name."""

    @abstractmethod
    async def insert_storage_location(self, **fields: Any) -> StorageLocationRecord:
        pass


class RequestRepository(DisasterLookup):

    @abstractmethod
    async def insert_disaster(
        self,
        *,
        type: str,
        location: str,
        severity_level: SeverityLevel,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> DisasterRecord:
        pass

    @abstractmethod
    async def list_disasters(self) -> list[DisasterRecord]:
        """Ordered by id."""

    @abstractmethod
    async def get_request(self, request_id: int) -> RequestRecord | None:
        pass

    @abstractmethod
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
        pass

    @abstractmethod
    async def list_requests(self, *, limit: int = 100, offset: int = 0) -> list[RequestSummaryRecord]:
        """Newest first, each with its non-cancelled allocated quantity."""

    @abstractmethod
    async def lock_request(self, request_id: int) -> RequestRecord | None:
        pass

    @abstractmethod
    async def set_request_status(self, request_id: int, status: RequestStatus) -> RequestRecord:
        pass

    @abstractmethod
    async def allocated_total(self, request_id: int) -> int:
        """Sum of allocated_quantity over the request's non-cancelled allocations."""

    @abstractmethod
    async def insert_allocation(
        self,
        *,
        request_id: int,
        resource_id: int,
        quantity: int,
        status: AllocationStatus = AllocationStatus.DISPATCHED,
    ) -> AllocationRecord:
        pass

    @abstractmethod
    async def get_allocation(self, allocation_id: int) -> AllocationRecord | None:
        pass

    @abstractmethod
    async def lock_allocation(self, allocation_id: int) -> AllocationRecord | None:
        pass

    @abstractmethod
    async def set_allocation_status(self, allocation_id: int, status: AllocationStatus) -> AllocationRecord:
        pass

    @abstractmethod
    async def list_allocations(self, *, limit: int = 100, offset: int = 0) -> list[AllocationRecord]:
        """Newest first."""

    @abstractmethod
    async def append_log(self, allocation_id: int, action: str) -> AllocationLogRecord:
        pass

    @abstractmethod
    async def list_logs(self, *, limit: int = 50) -> list[AllocationLogRecord]:
        """Newest first."""


class VolunteerRepository(DisasterLookup):

    @abstractmethod
    async def list_volunteers(
        self, *, availability: AvailabilityStatus | None = None
    ) -> list[VolunteerRecord]:
        """Roster ordered by id, with open assignment counts."""

    @abstractmethod
    async def get_volunteer(self, volunteer_id: int) -> VolunteerRecord | None:
        pass

    @abstractmethod
    async def insert_volunteer(
        self,
        *,
        name: str,
        skill_set: str | None = None,
        availability_status: AvailabilityStatus = AvailabilityStatus.AVAILABLE,
        contact_number: str | None = None,
        location: str | None = None,
    ) -> VolunteerRecord:
        pass

    @abstractmethod
    async def lock_volunteer(self, volunteer_id: int) -> VolunteerRecord | None:
        """Lock the volunteer, then re-read the roster entry and its open count."""

    @abstractmethod
    async def insert_assignment(
        self,
        *,
        volunteer_id: int | None,
        disaster_id: int,
        task: str,
        skill_requested: str | None = None,
    ) -> AssignmentRecord:
        pass

    @abstractmethod
    async def get_assignment(self, assignment_id: int) -> AssignmentRecord | None:
        pass

    @abstractmethod
    async def set_assignment_status(self, assignment_id: int, status: AssignmentStatus) -> AssignmentRecord:
        pass

    @abstractmethod
    async def list_assignments(
        self,
        *,
        volunteer_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[AssignmentRecord]:
        """Newest first, optionally for one volunteer."""


# ---------------------------------------------------------------------------
# Unit of work / store
# ---------------------------------------------------------------------------

class UnitOfWork(ABC):
    inventory: InventoryRepository
    requests: RequestRepository
    volunteers: VolunteerRepository


class Store(ABC):
    """System of record. Opened at application startup, closed at shutdown."""

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    def session(self) -> AbstractAsyncContextManager[UnitOfWork]:
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass
