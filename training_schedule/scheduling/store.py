"""Database side of the scheduling core.

Loads the state the planners need, answers their historical lookups and
applies the plans they return. All writes for one plan are committed
together.
"""
import logging
from collections.abc import Iterable
from datetime import UTC, date, datetime
from uuid import UUID

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from training_schedule.models import (
    Event,
    EventAttendance,
    Invitation,
    OutboxNotification,
    PointsEntry,
    Streak,
)
from training_schedule.scheduling import types
from training_schedule.scheduling.errors import (
    AttendanceConflict,
    DuplicateKeyConflict,
    LookupUnavailable,
)
from training_schedule.scheduling.orchestrator import (
    AttendancePlan,
    CancellationPlan,
    InvitationPlan,
)
from training_schedule.scheduling.streaks import replay_streaks

logger = logging.getLogger(__name__)


class SqlAttendanceLookups:
    """Historical lookups answered from the local database."""

    def __init__(self, session: Session):
        self.session = session

    def prior_event(self, group_id: str, before: date) -> tuple[str, date] | None:
        statement = (
            select(EventAttendance)
            .join(Event)
            .where(Event.group_id == group_id)
            .where(EventAttendance.occurrence_date < before)
            .order_by(EventAttendance.occurrence_date.desc(), EventAttendance.updated_at.desc())
        )
        try:
            latest = self.session.exec(statement).first()
        except SQLAlchemyError as e:
            raise LookupUnavailable(f"prior event query failed: {e}") from e
        if latest is None:
            return None
        return str(latest.event_id), latest.occurrence_date

    def was_present(self, event_id: str, occurrence_date: date, user_id: str) -> bool:
        statement = (
            select(EventAttendance)
            .where(EventAttendance.event_id == UUID(event_id))
            .where(EventAttendance.occurrence_date == occurrence_date)
        )
        try:
            record = self.session.exec(statement).first()
        except SQLAlchemyError as e:
            raise LookupUnavailable(f"prior attendance query failed: {e}") from e
        return bool(record and user_id in (record.present_user_ids or []))

    def streak_state(self, user_id: str, scope_id: str) -> types.StreakState | None:
        try:
            streak = _get_streak(self.session, user_id, scope_id)
        except SQLAlchemyError as e:
            raise LookupUnavailable(f"streak query failed: {e}") from e
        return streak.to_state() if streak else None

    def awarded_elsewhere_on(
        self, user_id: str, group_id: str, day: date, exclude_event_id: str
    ) -> bool:
        statement = (
            select(EventAttendance)
            .join(Event)
            .where(Event.group_id == group_id)
            .where(EventAttendance.occurrence_date == day)
            .where(EventAttendance.event_id != UUID(exclude_event_id))
        )
        try:
            records = self.session.exec(statement).all()
        except SQLAlchemyError as e:
            raise LookupUnavailable(f"same-day query failed: {e}") from e
        return any(user_id in (record.awarded_to or []) for record in records)


def _get_streak(session: Session, user_id: str, scope_id: str) -> Streak | None:
    statement = select(Streak).where(Streak.user_id == user_id).where(Streak.scope_id == scope_id)
    return session.exec(statement).first()


def get_attendance(session: Session, event_id: UUID, occurrence_date: date) -> EventAttendance | None:
    statement = (
        select(EventAttendance)
        .where(EventAttendance.event_id == event_id)
        .where(EventAttendance.occurrence_date == occurrence_date)
    )
    return session.exec(statement).first()


def existing_invitations(session: Session, event: Event) -> list[types.Invitation]:
    statement = select(Invitation).where(Invitation.event_id == event.id)
    return [inv.to_value() for inv in session.exec(statement).all()]


def _invitation_row(invitation: types.Invitation) -> Invitation:
    return Invitation(
        event_id=UUID(invitation.event_id),
        user_id=invitation.user_id,
        occurrence_date=invitation.occurrence_date,
        status=invitation.status,
        created_at=invitation.created_at or datetime.now(UTC),
    )


def _stored_keys(session: Session, invitations: list[types.Invitation]) -> set[tuple[str, str, date]]:
    event_ids = {UUID(inv.event_id) for inv in invitations}
    statement = select(Invitation).where(Invitation.event_id.in_(event_ids))
    return {inv.to_value().key for inv in session.exec(statement).all()}


def insert_invitations(
    session: Session,
    invitations: list[types.Invitation],
    notifications: Iterable[types.Notification] = (),
) -> dict:
    """
    Persist proposed invitations and their notifications in one transaction.

    Keys already stored are skipped, and so are their notifications. If another
    request inserts some of the same keys between that check and the commit,
    nothing is kept and the whole batch is tried once more against the fresh
    state.

    Raises:
        DuplicateKeyConflict: the retry clashed again.

    Returns dict with keys: created, duplicates
    """
    if not invitations:
        return {"created": 0, "duplicates": 0}
    notifications = list(notifications)

    for attempt in range(2):
        stored = _stored_keys(session, invitations)
        fresh = list({inv.key: inv for inv in invitations if inv.key not in stored}.values())
        created_keys = {inv.key for inv in fresh}

        try:
            session.add_all(_invitation_row(inv) for inv in fresh)
            queue_notifications(
                session,
                (
                    n
                    for n in notifications
                    if (n.data["event_id"], n.recipient_id, date.fromisoformat(n.data["date"]))
                    in created_keys
                ),
            )
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if attempt:
                raise DuplicateKeyConflict(
                    f"Invitations for event(s) {sorted({inv.event_id for inv in fresh})} clashed twice"
                ) from e
            logger.info("Invitation batch hit keys inserted concurrently, retrying")
            continue
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Saving invitations failed: {e}")
            raise
        return {"created": len(fresh), "duplicates": len(invitations) - len(fresh)}


def queue_notifications(session: Session, notifications: Iterable[types.Notification]) -> int:
    """Add notifications to the outbox. Does not commit."""
    count = 0
    for notification in notifications:
        session.add(
            OutboxNotification(
                recipient_id=notification.recipient_id,
                type=notification.type,
                title=notification.title,
                message=notification.message,
                data=notification.data,
                due_at=notification.due_at,
            )
        )
        count += 1
    return count


def apply_invitation_plan(session: Session, plan: InvitationPlan) -> dict:
    """Persist a reconciliation plan. Returns dict with keys: created, duplicates."""
    stats = insert_invitations(session, plan.invitations, plan.notifications)
    if stats["created"] or stats["duplicates"]:
        logger.info(f"Reconciled invitations for event {plan.definition_id}: {stats}")
    return stats


def _write_attendance(session: Session, plan: AttendancePlan) -> None:
    record = plan.record
    exercises = [{"id": ex.id, "name": ex.name, "points": ex.points} for ex in record.exercises]

    if plan.expected_version is None:
        session.add(
            EventAttendance(
                event_id=UUID(record.event_id),
                occurrence_date=record.occurrence_date,
                present_user_ids=list(record.present_user_ids),
                completed_exercises=exercises,
                awarded_to=list(record.awarded_to),
                created_at=record.updated_at,
                updated_at=record.updated_at,
                version=record.version,
            )
        )
        session.flush()
        return

    statement = (
        update(EventAttendance)
        .where(EventAttendance.event_id == UUID(record.event_id))
        .where(EventAttendance.occurrence_date == record.occurrence_date)
        .where(EventAttendance.version == plan.expected_version)
        .values(
            present_user_ids=list(record.present_user_ids),
            completed_exercises=exercises,
            awarded_to=list(record.awarded_to),
            updated_at=record.updated_at,
            version=record.version,
        )
    )
    result = session.connection().execute(statement)
    if result.rowcount != 1:
        raise AttendanceConflict(record.event_id, record.occurrence_date, plan.expected_version)


def _write_streaks(session: Session, streaks: Iterable[types.StreakState]) -> None:
    for state in streaks:
        streak = _get_streak(session, state.user_id, state.scope_id)
        if streak is None:
            streak = Streak(user_id=state.user_id, scope_id=state.scope_id)
        streak.current_streak = state.current_streak
        streak.last_attendance_date = state.last_attendance_date
        streak.updated_at = datetime.now(UTC)
        session.add(streak)


def _write_points(
    session: Session,
    awards: Iterable[types.Award],
    deductions: Iterable[types.Deduction],
) -> None:
    for award in awards:
        session.add(
            PointsEntry(
                user_id=award.user_id,
                points=award.points,
                xp=award.xp,
                reason=award.reason,
                event_id=award.event_id,
                occurrence_date=award.occurrence_date,
            )
        )
    for deduction in deductions:
        session.add(
            PointsEntry(
                user_id=deduction.user_id,
                points=-deduction.points,
                xp=-deduction.xp,
                reason=deduction.reason,
                event_id=deduction.event_id,
                occurrence_date=deduction.occurrence_date,
            )
        )


def apply_attendance_plan(session: Session, plan: AttendancePlan) -> None:
    """
    Persist an attendance plan atomically.

    The attendance row is written first and only if nobody saved the same
    occurrence since the plan was computed; otherwise nothing is written.

    Raises:
        AttendanceConflict: the record's version moved on (or a first save
            raced another first save).
    """
    try:
        _write_attendance(session, plan)
        _write_streaks(session, plan.streaks)
        _write_points(session, plan.awards, plan.deductions)
        queue_notifications(session, plan.notifications)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Concurrent first save for {plan.event_id} on {plan.occurrence_date}")
        raise AttendanceConflict(plan.event_id, plan.occurrence_date, 0) from e
    except AttendanceConflict:
        session.rollback()
        logger.warning(
            f"Attendance for {plan.event_id} on {plan.occurrence_date} changed since "
            f"version {plan.expected_version}, nothing saved"
        )
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Saving attendance failed: {e}")
        raise

    logger.info(
        f"Saved attendance for {plan.event_id} on {plan.occurrence_date}: "
        f"{len(plan.awards)} awarded, {len(plan.deductions)} deducted"
    )


def apply_cancellation_plan(session: Session, event: Event, plan: CancellationPlan) -> None:
    """
    Persist a cancelled occurrence.

    The occurrence is excluded from the event, its attendance record (if any)
    is dropped, the points awarded there are taken back and everybody invited
    is notified, all in one commit.

    Raises:
        AttendanceConflict: attendance was saved for the occurrence since the
            plan was computed; nothing is written.
    """
    try:
        event.apply_definition(plan.definition)
        session.add(event)
        if plan.expected_version is not None:
            statement = (
                delete(EventAttendance)
                .where(EventAttendance.event_id == event.id)
                .where(EventAttendance.occurrence_date == plan.occurrence_date)
                .where(EventAttendance.version == plan.expected_version)
            )
            result = session.connection().execute(statement)
            if result.rowcount != 1:
                raise AttendanceConflict(str(event.id), plan.occurrence_date, plan.expected_version)
        _write_points(session, [], plan.deductions)
        queue_notifications(session, plan.notifications)
        session.commit()
    except AttendanceConflict:
        session.rollback()
        logger.warning(
            f"Attendance for {event.id} on {plan.occurrence_date} changed since "
            f"version {plan.expected_version}, cancellation not saved"
        )
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Cancelling occurrence failed: {e}")
        raise

    logger.info(
        f"Cancelled {event.id} on {plan.occurrence_date}: "
        f"{len(plan.notifications)} notified, {len(plan.deductions)} deducted"
    )


def delete_event(session: Session, event: Event, deductions: list[types.Deduction]) -> None:
    """Delete an event with its invitations and attendance, revoking awarded points."""
    _write_points(session, [], deductions)
    for invitation in event.invitations:
        session.delete(invitation)
    for record in event.attendance_records:
        session.delete(record)
    session.delete(event)
    session.commit()
    logger.info(f"Deleted event {event.id}, revoked points for {len(deductions)} awards")


def recalculate_streaks(session: Session, group_id: str) -> dict:
    """
    Rebuild every streak of a group from recorded attendance.

    All recorded occurrences of the group are replayed in date order, each
    in its event's streak scope, with the same prior-event rule a live save
    uses. Users who never attended keep whatever they have.

    Returns dict with keys: scopes, updated
    """
    statement = (
        select(EventAttendance, Event)
        .join(Event, EventAttendance.event_id == Event.id)
        .where(Event.group_id == group_id)
        .order_by(EventAttendance.occurrence_date, EventAttendance.updated_at)
    )
    rows = session.exec(statement).all()

    scopes = {}
    occurrences = []
    for record, event in rows:
        if event.id not in scopes:
            scopes[event.id] = event.to_definition().streak_scope
        occurrences.append(
            (record.occurrence_date, scopes[event.id], record.present_user_ids or [])
        )

    states = replay_streaks(occurrences)
    _write_streaks(session, states.values())
    session.commit()

    stats = {"scopes": len({scope_id for _, scope_id in states}), "updated": len(states)}
    logger.info(f"Recalculated streaks for group {group_id}: {stats}")
    return stats
