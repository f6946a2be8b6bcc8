"""Compose occurrence generation, reconciliation and rewards into plans.

Each entry point takes the current persisted state and returns a plan: the
side effects a caller must apply (invitations to insert, points to grant or
take back, streaks and attendance records to write, notifications to hand to
the delivery service). Nothing here writes to the database, so every plan can
be recomputed from persisted state at any time.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Protocol

from training_schedule.scheduling import recurrence, rewards
from training_schedule.scheduling.errors import LookupUnavailable, UnknownOccurrence
from training_schedule.scheduling.reconciler import reconcile
from training_schedule.scheduling.streaks import compute_next_streak
from training_schedule.scheduling.types import (
    AttendanceRecord,
    Award,
    Deduction,
    EventDefinition,
    Exercise,
    Invitation,
    Notification,
    StreakState,
)

logger = logging.getLogger(__name__)

NOTIFICATION_INVITATION = "event_invitation"
NOTIFICATION_CANCELLED = "event_cancelled"


@dataclass(frozen=True)
class ScheduleContext:
    """Request-scoped clock and limits passed through every plan."""

    today: date
    now: datetime
    lookahead_weeks: int = 4
    max_steps: int = recurrence.DEFAULT_MAX_STEPS

    @classmethod
    def current(cls, lookahead_weeks: int = 4, max_steps: int = recurrence.DEFAULT_MAX_STEPS):
        now = datetime.now(UTC)
        return cls(today=now.date(), now=now, lookahead_weeks=lookahead_weeks, max_steps=max_steps)


class AttendanceLookups(Protocol):
    """Historical queries the reward calculation depends on.

    Implementations raise ``LookupUnavailable`` when a query fails.
    """

    def prior_event(self, group_id: str, before: date) -> tuple[str, date] | None:
        """Most recent recorded occurrence (event id, date) of the group before a date."""

    def was_present(self, event_id: str, occurrence_date: date, user_id: str) -> bool:
        """Whether the user is in that occurrence's present set."""

    def streak_state(self, user_id: str, scope_id: str) -> StreakState | None:
        """Stored streak for the user within a scope."""

    def awarded_elsewhere_on(
        self, user_id: str, group_id: str, day: date, exclude_event_id: str
    ) -> bool:
        """Whether the user already got points for another group event that day."""


@dataclass
class InvitationPlan:
    definition_id: str
    window_start: date
    window_end: date
    occurrences: list[date]
    invitations: list[Invitation]
    notifications: list[Notification] = field(default_factory=list)


@dataclass
class AttendancePlan:
    event_id: str
    occurrence_date: date
    record: AttendanceRecord
    expected_version: int | None
    awards: list[Award] = field(default_factory=list)
    deductions: list[Deduction] = field(default_factory=list)
    streaks: list[StreakState] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)


@dataclass
class CancellationPlan:
    definition: EventDefinition
    occurrence_date: date
    notifications: list[Notification] = field(default_factory=list)
    deductions: list[Deduction] = field(default_factory=list)
    expected_version: int | None = None


def plan_invitations(
    context: ScheduleContext,
    definition: EventDefinition,
    existing: Iterable[Invitation],
) -> InvitationPlan:
    """
    The "view events" trigger.

    Generates the occurrences in the lookahead window and proposes the
    invitations still missing for the definition's audience, each with an
    invitation notification due at the occurrence start minus the lead time.
    """
    window_start, window_end = recurrence.lookahead_window(context.today, context.lookahead_weeks)
    occurrences = recurrence.generate_occurrences(
        definition, window_start, window_end, max_steps=context.max_steps
    )
    invitations = reconcile(
        definition.id, occurrences, definition.audience, existing, now=context.now
    )

    notifications = [
        Notification(
            recipient_id=inv.user_id,
            type=NOTIFICATION_INVITATION,
            title=f"Invitation: {definition.title}",
            message=(
                f"You are invited to \"{definition.title}\" on "
                f"{rewards.format_date(inv.occurrence_date)}."
            ),
            data={"event_id": definition.id, "date": inv.occurrence_date.isoformat()},
            due_at=recurrence.invitation_due_at(
                inv.occurrence_date, definition.start_time, definition.lead_time
            ),
        )
        for inv in invitations
    ]

    return InvitationPlan(
        definition_id=definition.id,
        window_start=window_start,
        window_end=window_end,
        occurrences=occurrences,
        invitations=invitations,
        notifications=notifications,
    )


def plan_attendance(
    context: ScheduleContext,
    definition: EventDefinition,
    occurrence_date: date,
    present_user_ids: Iterable[str],
    exercises: Iterable[Exercise],
    record: AttendanceRecord | None,
    lookups: AttendanceLookups,
) -> AttendancePlan:
    """
    The "save attendance" trigger for one occurrence.

    Users present now but never awarded for this occurrence get an award.
    Users who were awarded but are no longer present get a deduction.
    Everyone else is left alone. Historical lookup failures never block an
    award: the streak falls back to 1 (or the same-day check to "no") and a
    warning is attached to the plan.

    A date that is no longer an occurrence (excluded, truncated away or moved
    by an edit) still accepts saves that only take users off an existing
    record, so awarded points can always be retracted.
    """
    present = list(dict.fromkeys(present_user_ids))
    exercises = tuple(exercises)
    exercise_points = sum(ex.points for ex in exercises)

    awarded = list(record.awarded_to) if record else []
    newly_present = [user_id for user_id in present if user_id not in awarded]
    removed = [user_id for user_id in awarded if user_id not in present]

    if not recurrence.is_occurrence_date(definition, occurrence_date):
        if record is None or newly_present:
            raise UnknownOccurrence(
                f"{occurrence_date} is not an occurrence of event {definition.id}"
            )
        logger.info(f"Retraction-only save for {definition.id} on former occurrence {occurrence_date}")

    plan = AttendancePlan(
        event_id=definition.id,
        occurrence_date=occurrence_date,
        record=AttendanceRecord(
            event_id=definition.id,
            occurrence_date=occurrence_date,
            present_user_ids=tuple(present),
            exercises=exercises,
            awarded_to=tuple(u for u in awarded if u in present) + tuple(newly_present),
            updated_at=context.now,
            version=(record.version + 1) if record else 1,
        ),
        expected_version=record.version if record else None,
        unchanged=[u for u in present if u in awarded],
    )

    scope_id = definition.streak_scope
    prior = None
    prior_failed = False
    if newly_present:
        try:
            prior = lookups.prior_event(definition.group_id, occurrence_date)
        except LookupUnavailable as e:
            prior_failed = True
            plan.warnings.append(f"Prior event lookup failed, streaks reset to 1: {e}")
            logger.warning(f"Prior event lookup failed for {definition.id}: {e}")

    for user_id in newly_present:
        present_before = None
        prior_state = None
        if not prior_failed:
            try:
                if prior is not None:
                    present_before = lookups.was_present(prior[0], prior[1], user_id)
                prior_state = lookups.streak_state(user_id, scope_id)
            except LookupUnavailable as e:
                present_before = None
                plan.warnings.append(f"Streak lookup failed for {user_id}, streak reset to 1: {e}")
                logger.warning(f"Streak lookup failed for {user_id}: {e}")

        streak = compute_next_streak(
            user_id, scope_id, occurrence_date, present_before, prior_state
        )

        try:
            same_day = lookups.awarded_elsewhere_on(
                user_id, definition.group_id, occurrence_date, definition.id
            )
        except LookupUnavailable as e:
            same_day = False
            plan.warnings.append(f"Same-day lookup failed for {user_id}, no decay applied: {e}")
            logger.warning(f"Same-day lookup failed for {user_id}: {e}")

        award = rewards.compute_award(
            user_id,
            definition,
            occurrence_date,
            exercise_points,
            streak.current_streak,
            same_day=same_day,
        )
        plan.streaks.append(streak)
        plan.awards.append(award)
        plan.notifications.append(rewards.award_notification(award, definition))

    for user_id in removed:
        deduction = rewards.compute_deduction(user_id, definition, occurrence_date)
        plan.deductions.append(deduction)
        plan.notifications.append(rewards.deduction_notification(deduction, definition))

    logger.debug(
        f"Attendance plan for {definition.id} on {occurrence_date}: "
        f"{len(plan.awards)} awards, {len(plan.deductions)} deductions"
    )
    return plan


def plan_event_deletion(
    definition: EventDefinition,
    records: Iterable[AttendanceRecord],
) -> list[Deduction]:
    """Base-point deductions for everyone awarded at any occurrence of the event."""
    return [
        rewards.compute_deduction(user_id, definition, record.occurrence_date)
        for record in records
        for user_id in record.awarded_to
    ]


def plan_cancellation(
    definition: EventDefinition,
    occurrence_date: date,
    invitations: Iterable[Invitation],
    record: AttendanceRecord | None = None,
) -> CancellationPlan:
    """
    Exclude one occurrence and notify everyone invited to it.

    If attendance was already taken for the occurrence, everyone awarded
    there loses the base points and the record is dropped with the
    occurrence, guarded by the version it was read at.
    """
    if not recurrence.is_occurrence_date(definition, occurrence_date):
        raise UnknownOccurrence(f"{occurrence_date} is not an occurrence of event {definition.id}")

    recipients = dict.fromkeys(
        inv.user_id for inv in invitations if inv.occurrence_date == occurrence_date
    )
    notifications = [
        Notification(
            recipient_id=user_id,
            type=NOTIFICATION_CANCELLED,
            title=f"Cancelled: {definition.title}",
            message=(
                f"\"{definition.title}\" on {rewards.format_date(occurrence_date)} "
                "has been cancelled."
            ),
            data={"event_id": definition.id, "date": occurrence_date.isoformat()},
        )
        for user_id in recipients
    ]

    deductions = plan_event_deletion(definition, [record] if record else [])
    notifications.extend(rewards.deduction_notification(d, definition) for d in deductions)

    return CancellationPlan(
        definition=recurrence.cancel_occurrence(definition, occurrence_date),
        occurrence_date=occurrence_date,
        notifications=notifications,
        deductions=deductions,
        expected_version=record.version if record else None,
    )
