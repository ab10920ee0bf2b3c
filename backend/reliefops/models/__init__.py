from reliefops.models.disaster import Disaster, SeverityLevel
from reliefops.models.demand_request import DemandRequest, PriorityLevel, RequestStatus
from reliefops.models.resource import Resource, ResourceStatus, StorageLocation, ResourceAlert
from reliefops.models.allocation import (
    Allocation, AllocationLog, AllocationStatus, TERMINAL_ALLOCATION_STATUSES,
)
from reliefops.models.volunteer import (
    Volunteer, VolunteerAssignment, AvailabilityStatus, AssignmentStatus, OPEN_ASSIGNMENT_STATUSES,
)

__all__ = [
    "Disaster",
    "SeverityLevel",
    "DemandRequest",
    "PriorityLevel",
    "RequestStatus",
    "Resource",
    "ResourceStatus",
    "StorageLocation",
    "ResourceAlert",
    "Allocation",
    "AllocationLog",
    "AllocationStatus",
    "TERMINAL_ALLOCATION_STATUSES",
    "Volunteer",
    "VolunteerAssignment",
    "AvailabilityStatus",
    "AssignmentStatus",
    "OPEN_ASSIGNMENT_STATUSES",
]
