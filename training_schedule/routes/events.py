"""Event routes for defining events and viewing their occurrences."""
import logging
from datetime import UTC, date, datetime, time
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, SQLModel, select

from training_schedule.core.database import get_session
from training_schedule.core.dependencies import get_schedule_context
from training_schedule.models import Event, Invitation
from training_schedule.scheduling import recurrence, rewards, store
from training_schedule.scheduling.errors import (
    AttendanceConflict,
    DuplicateKeyConflict,
    InvalidDefinition,
    IterationLimitExceeded,
    UnknownOccurrence,
)
from training_schedule.scheduling.orchestrator import (
    ScheduleContext,
    plan_cancellation,
    plan_event_deletion,
    plan_invitations,
)
from training_schedule.scheduling.types import EventDefinition

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


class EventCreate(SQLModel):
    group_id: str
    title: str
    description: str | None = None
    location: str | None = None
    start_date: date
    start_time: time | None = None
    end_time: time | None = None
    recurrence: str = "none"
    recurrence_end_date: date | None = None
    excluded_dates: list[date] = []
    lead_time_value: int | None = None
    lead_time_unit: str | None = None
    target_subgroup_ids: list[str] = []
    audience: list[str] = []


class EventUpdate(SQLModel):
    title: str | None = None
    description: str | None = None
    location: str | None = None
    start_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    recurrence: str | None = None
    recurrence_end_date: date | None = None
    lead_time_value: int | None = None
    lead_time_unit: str | None = None
    target_subgroup_ids: list[str] | None = None
    audience: list[str] | None = None


class TruncateRequest(SQLModel):
    cutoff: date


def get_event_or_404(session: Session, event_id: UUID) -> Event:
    event = session.get(Event, event_id)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event


def definition_or_422(event: Event) -> EventDefinition:
    try:
        return event.to_definition()
    except InvalidDefinition as e:
        raise HTTPException(status_code=422, detail=str(e))


@router.post("", status_code=201)
async def create_event(payload: EventCreate, session: Session = Depends(get_session)):
    """
    Create a single or recurring event.

    The schedule fields are validated before anything is stored; an unknown
    recurrence kind or a half-specified lead time is rejected with 422.
    """
    data = payload.model_dump()
    data["excluded_dates"] = sorted(d.isoformat() for d in payload.excluded_dates)
    event = Event(**data)
    definition_or_422(event)

    session.add(event)
    session.commit()
    session.refresh(event)
    logger.info(f"Created event {event.id} ({event.recurrence}) for group {event.group_id}")
    return event


@router.get("/{event_id}")
async def get_event(event_id: UUID, session: Session = Depends(get_session)):
    """Return a single event definition."""
    return get_event_or_404(session, event_id)


@router.patch("/{event_id}")
async def update_event(
    event_id: UUID,
    payload: EventUpdate,
    session: Session = Depends(get_session),
):
    """
    Edit an event.

    Title, description, location and times do not affect the schedule. A new
    start date or recurrence changes which occurrences are generated from the
    next view on; existing invitations are kept.
    """
    event = get_event_or_404(session, event_id)

    for key, value in payload.model_dump(exclude_unset=True).items():
        setattr(event, key, value)
    event.updated_at = datetime.now(UTC)

    try:
        event.to_definition()
    except InvalidDefinition as e:
        session.rollback()
        raise HTTPException(status_code=422, detail=str(e))

    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@router.delete("/{event_id}")
async def delete_event(event_id: UUID, session: Session = Depends(get_session)):
    """
    Delete an event with all its occurrences.

    Every user awarded at any occurrence loses the base attendance points
    before the invitations and attendance records are removed.
    """
    event = get_event_or_404(session, event_id)
    definition = definition_or_422(event)

    deductions = plan_event_deletion(
        definition, [record.to_record() for record in event.attendance_records]
    )
    store.queue_notifications(
        session, [rewards.deduction_notification(d, definition) for d in deductions]
    )
    store.delete_event(session, event, deductions)
    return {"deleted": True, "revoked": len(deductions)}


@router.get("/{event_id}/occurrences")
async def event_occurrences(
    event_id: UUID,
    session: Session = Depends(get_session),
    context: ScheduleContext = Depends(get_schedule_context),
):
    """
    List upcoming occurrences and create any missing invitations.

    Safe to call on every view: invitations that already exist are never
    duplicated, and a view that has nothing to add reports ``created: 0``.
    """
    event = get_event_or_404(session, event_id)
    definition = definition_or_422(event)

    try:
        plan = plan_invitations(context, definition, store.existing_invitations(session, event))
    except IterationLimitExceeded as e:
        raise HTTPException(status_code=422, detail=str(e))

    try:
        stats = store.apply_invitation_plan(session, plan)
    except DuplicateKeyConflict as e:
        raise HTTPException(status_code=409, detail=str(e))

    return {
        "event_id": str(event_id),
        "window_start": plan.window_start,
        "window_end": plan.window_end,
        "occurrences": plan.occurrences,
        "created": stats["created"],
        "duplicates": stats["duplicates"],
    }


@router.post("/{event_id}/occurrences/{occurrence_date}/cancel")
async def cancel_occurrence(
    event_id: UUID,
    occurrence_date: date,
    session: Session = Depends(get_session),
):
    """
    Cancel a single occurrence.

    The date is added to the event's excluded dates and everyone invited to
    that occurrence is notified. For a single event this cancels the event.
    If attendance was already saved for the date, the record is removed and
    everyone awarded there loses the base points.
    """
    event = get_event_or_404(session, event_id)
    definition = definition_or_422(event)
    existing = store.get_attendance(session, event_id, occurrence_date)

    try:
        plan = plan_cancellation(
            definition,
            occurrence_date,
            store.existing_invitations(session, event),
            existing.to_record() if existing else None,
        )
    except UnknownOccurrence as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        store.apply_cancellation_plan(session, event, plan)
    except AttendanceConflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    session.refresh(event)
    return event


@router.post("/{event_id}/truncate")
async def truncate_event(
    event_id: UUID,
    payload: TruncateRequest,
    session: Session = Depends(get_session),
):
    """End a recurring series so that no occurrence falls on or after the cutoff."""
    event = get_event_or_404(session, event_id)
    definition = definition_or_422(event)

    try:
        truncated = recurrence.truncate_series(definition, payload.cutoff)
    except InvalidDefinition as e:
        raise HTTPException(status_code=400, detail=str(e))

    event.apply_definition(truncated)
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@router.get("/{event_id}/invitations")
async def event_invitations(
    event_id: UUID,
    occurrence_date: date | None = None,
    session: Session = Depends(get_session),
):
    """List an event's invitations, optionally for one occurrence only."""
    get_event_or_404(session, event_id)
    statement = select(Invitation).where(Invitation.event_id == event_id)
    if occurrence_date:
        statement = statement.where(Invitation.occurrence_date == occurrence_date)
    statement = statement.order_by(Invitation.occurrence_date, Invitation.user_id)
    return session.exec(statement).all()
