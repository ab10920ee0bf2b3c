"""
Volunteer matcher — staff a disaster task with an available volunteer.

Selection prefers volunteers whose skills match the requested skill, falls
back to anyone available, and breaks ties on the fewest open assignments and
then the lowest id. The chosen volunteer is locked and re-read before the
assignment is written; if their open-assignment count moved in the meantime
the selection is redone.
"""

from __future__ import annotations

import logging
from typing import Any

from reliefops.errors import Conflict, NotFound, ValidationError
from reliefops.models import AssignmentStatus, AvailabilityStatus
from reliefops.repositories.base import AssignmentRecord, Store, UnitOfWork, VolunteerRecord

logger = logging.getLogger(__name__)

MATCHED_ON_SKILL = "skill"
MATCHED_ON_FALLBACK = "fallback"
MATCHED_ON_ANY = "any"
MATCHED_ON_UNSTAFFED = "unstaffed"


def _assignment_to_dict(assignment: AssignmentRecord) -> dict[str, Any]:
    return {
        "id": assignment.id,
        "volunteer_id": assignment.volunteer_id,
        "volunteer_name": assignment.volunteer_name,
        "disaster_id": assignment.disaster_id,
        "task": assignment.task,
        "skill_requested": assignment.skill_requested,
        "status": assignment.status.value,
        "created_at": assignment.created_at.isoformat() if assignment.created_at else None,
        "updated_at": assignment.updated_at.isoformat() if assignment.updated_at else None,
    }


def _volunteer_to_dict(volunteer: VolunteerRecord) -> dict[str, Any]:
    return {
        "id": volunteer.id,
        "name": volunteer.name,
        "skill_set": volunteer.skill_set,
        "availability_status": volunteer.availability_status.value,
        "contact_number": volunteer.contact_number,
        "location": volunteer.location,
        "open_assignments": volunteer.open_assignments,
    }


def normalise_skill(skill: str | None) -> str | None:
    if skill is None:
        return None
    skill = skill.strip()
    return skill or None


def skill_matches(skill_set: str | None, skill: str) -> bool:
    """Case-insensitive substring match: "medical" matches "Medical, First Aid"."""
    if not skill_set:
        return False
    return skill.casefold() in skill_set.casefold()


def select_volunteer(
    volunteers: list[VolunteerRecord],
    skill: str | None = None,
) -> tuple[VolunteerRecord | None, str]:
    """Pick a volunteer and say how they were matched. Pure; no I/O."""
    available = [v for v in volunteers if v.availability_status == AvailabilityStatus.AVAILABLE]
    if not available:
        return None, MATCHED_ON_UNSTAFFED

    if skill is None:
        pool, matched_on = available, MATCHED_ON_ANY
    else:
        skilled = [v for v in available if skill_matches(v.skill_set, skill)]
        if skilled:
            pool, matched_on = skilled, MATCHED_ON_SKILL
        else:
            pool, matched_on = available, MATCHED_ON_FALLBACK

    chosen = min(pool, key=lambda v: (v.open_assignments, v.id))
    return chosen, matched_on


async def _try_assign(
    uow: UnitOfWork,
    *,
    disaster_id: int,
    task: str,
    skill: str | None,
    allow_unstaffed: bool,
) -> tuple[AssignmentRecord, str] | None:
    """One selection round. Returns ``None`` when the chosen volunteer moved under us."""
    if await uow.volunteers.get_disaster(disaster_id) is None:
        raise NotFound(f"Disaster {disaster_id} not found")

    roster = await uow.volunteers.list_volunteers(availability=AvailabilityStatus.AVAILABLE)
    chosen, matched_on = select_volunteer(roster, skill)

    if chosen is None:
        if not allow_unstaffed:
            raise NotFound("No available volunteer to assign")
        assignment = await uow.volunteers.insert_assignment(
            volunteer_id=None, disaster_id=disaster_id, task=task, skill_requested=skill,
        )
        return assignment, matched_on

    locked = await uow.volunteers.lock_volunteer(chosen.id)
    if (
        locked is None
        or locked.availability_status != AvailabilityStatus.AVAILABLE
        or locked.open_assignments != chosen.open_assignments
    ):
        return None

    assignment = await uow.volunteers.insert_assignment(
        volunteer_id=chosen.id, disaster_id=disaster_id, task=task, skill_requested=skill,
    )
    return assignment, matched_on


async def assign_volunteer(
    store: Store,
    *,
    disaster_id: int,
    task: str,
    skill: str | None = None,
    allow_unstaffed: bool = True,
    max_attempts: int = 3,
) -> dict[str, Any]:
    task = (task or "").strip()
    if not task:
        raise ValidationError("task must not be empty")
    skill = normalise_skill(skill)

    for attempt in range(1, max(max_attempts, 1) + 1):
        async with store.session() as uow:
            outcome = await _try_assign(
                uow,
                disaster_id=disaster_id,
                task=task,
                skill=skill,
                allow_unstaffed=allow_unstaffed,
            )
        if outcome is not None:
            break
        logger.info("Volunteer picked for disaster %s changed while assigning (attempt %d)", disaster_id, attempt)
    else:
        logger.warning("Gave up assigning a volunteer to disaster %s after %d attempts", disaster_id, max_attempts)
        raise Conflict("Volunteer roster kept changing during assignment; retry")

    assignment, matched_on = outcome
    if assignment.volunteer_id is None:
        logger.warning("No available volunteer for disaster %s; assignment %s left unstaffed", disaster_id, assignment.id)
    else:
        logger.info(
            "Assigned volunteer %s to disaster %s (%s match) as assignment %s",
            assignment.volunteer_id, disaster_id, matched_on, assignment.id,
        )

    payload = _assignment_to_dict(assignment)
    payload["matched_on"] = matched_on
    return payload


async def update_assignment_status(
    store: Store,
    assignment_id: int,
    new_status: str | AssignmentStatus,
) -> dict[str, Any]:
    try:
        new_status = AssignmentStatus(new_status)
    except ValueError:
        allowed = ", ".join(s.value for s in AssignmentStatus)
        raise ValidationError(f"status must be one of: {allowed}")

    async with store.session() as uow:
        if await uow.volunteers.get_assignment(assignment_id) is None:
            raise NotFound(f"Volunteer assignment {assignment_id} not found")
        assignment = await uow.volunteers.set_assignment_status(assignment_id, new_status)

    logger.info("Volunteer assignment %s status -> %s", assignment_id, new_status.value)
    return _assignment_to_dict(assignment)


async def list_assignments(store: Store, *, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
    async with store.session() as uow:
        assignments = await uow.volunteers.list_assignments(limit=limit, offset=offset)
    return [_assignment_to_dict(a) for a in assignments]


async def list_roster(store: Store) -> list[dict[str, Any]]:
    async with store.session() as uow:
        roster = await uow.volunteers.list_volunteers()
    return [_volunteer_to_dict(v) for v in roster]


async def create_volunteer(
    store: Store,
    *,
    name: str,
    skill_set: str | None = None,
    availability_status: str | AvailabilityStatus = AvailabilityStatus.AVAILABLE,
    contact_number: str | None = None,
    location: str | None = None,
) -> dict[str, Any]:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name must not be empty")
    try:
        availability_status = AvailabilityStatus(availability_status)
    except ValueError:
        allowed = ", ".join(s.value for s in AvailabilityStatus)
        raise ValidationError(f"availability_status must be one of: {allowed}")

    async with store.session() as uow:
        volunteer = await uow.volunteers.insert_volunteer(
            name=name,
            skill_set=normalise_skill(skill_set),
            availability_status=availability_status,
            contact_number=contact_number,
            location=location,
        )

    logger.info("Registered volunteer %s (%s)", volunteer.id, volunteer.name)
    return _volunteer_to_dict(volunteer)


async def list_volunteer_assignments(
    store: Store,
    volunteer_id: int,
    *,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    async with store.session() as uow:
        if await uow.volunteers.get_volunteer(volunteer_id) is None:
            raise NotFound(f"Volunteer {volunteer_id} not found")
        assignments = await uow.volunteers.list_assignments(
            volunteer_id=volunteer_id, limit=limit, offset=offset
        )
    return [_assignment_to_dict(a) for a in assignments]
