"""Attendance routes for taking attendance at an occurrence."""
from dataclasses import asdict
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, SQLModel

from training_schedule.core.database import get_session
from training_schedule.core.dependencies import get_schedule_context
from training_schedule.routes.events import definition_or_422, get_event_or_404
from training_schedule.scheduling import store
from training_schedule.scheduling.errors import AttendanceConflict, UnknownOccurrence
from training_schedule.scheduling.orchestrator import ScheduleContext, plan_attendance
from training_schedule.scheduling.types import Exercise

router = APIRouter(prefix="/events/{event_id}/attendance", tags=["attendance"])


class ExerciseIn(SQLModel):
    id: str
    name: str
    points: int = 0


class AttendanceSave(SQLModel):
    present_user_ids: list[str] = []
    exercises: list[ExerciseIn] = []
    version: int | None = None


@router.get("/{occurrence_date}")
async def get_attendance(
    event_id: UUID,
    occurrence_date: date,
    session: Session = Depends(get_session),
):
    """Return the attendance recorded for one occurrence."""
    get_event_or_404(session, event_id)
    record = store.get_attendance(session, event_id, occurrence_date)
    if not record:
        raise HTTPException(status_code=404, detail="No attendance recorded")
    return record


@router.put("/{occurrence_date}")
async def save_attendance(
    event_id: UUID,
    occurrence_date: date,
    payload: AttendanceSave,
    session: Session = Depends(get_session),
    context: ScheduleContext = Depends(get_schedule_context),
):
    """
    Save attendance for one occurrence and settle points.

    Newly present users are awarded points (streak tiers, same-day decay and
    exercise bonus applied); users who were awarded but are no longer present
    lose the base points. Send back the ``version`` you loaded: if someone
    else saved the occurrence in the meantime the request fails with 409 and
    nothing is changed.
    """
    event = get_event_or_404(session, event_id)
    definition = definition_or_422(event)

    existing = store.get_attendance(session, event_id, occurrence_date)
    current_version = existing.version if existing else None
    if payload.version is not None and payload.version != (current_version or 0):
        raise HTTPException(
            status_code=409,
            detail=f"Attendance is at version {current_version or 0}, not {payload.version}",
        )

    try:
        plan = plan_attendance(
            context,
            definition,
            occurrence_date,
            payload.present_user_ids,
            [Exercise(id=ex.id, name=ex.name, points=ex.points) for ex in payload.exercises],
            existing.to_record() if existing else None,
            store.SqlAttendanceLookups(session),
        )
    except UnknownOccurrence as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        store.apply_attendance_plan(session, plan)
    except AttendanceConflict as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "event_id": str(event_id),
        "occurrence_date": occurrence_date,
        "version": plan.record.version,
        "awards": [asdict(award) for award in plan.awards],
        "deductions": [asdict(deduction) for deduction in plan.deductions],
        "unchanged": plan.unchanged,
        "warnings": plan.warnings,
    }
