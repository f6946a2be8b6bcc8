"""Attendance reward points.

Scoring for one present user at one occurrence:

    1. Start from ``BASE_POINTS``.
    2. Replace it with the streak tier total, looked up on the *new* streak
       value: ``SUPER_STREAK_POINTS`` from ``SUPER_STREAK_MIN``, otherwise
       ``STREAK_BONUS_POINTS`` from ``STREAK_BONUS_MIN``.
    3. Halve it, rounding up, when the user was already awarded for another
       event of the same group on the same date.
    4. Add the exercise points of the occurrence. They are never decayed.

XP always equals points for attendance.

A retraction only takes back ``BASE_POINTS``. Streak and exercise parts of
the original award stay with the user and the stored streak is left alone;
changing that would change what historical point totals mean.
"""
import math
from datetime import date

from training_schedule.scheduling.types import Award, Deduction, EventDefinition, Notification

BASE_POINTS = 3
STREAK_BONUS_MIN = 3
STREAK_BONUS_POINTS = 5
SUPER_STREAK_MIN = 5
SUPER_STREAK_POINTS = 6

TIER_STREAK_BONUS = "streak bonus"
TIER_SUPER_STREAK = "super-streak"

NOTIFICATION_ATTENDANCE = "event_attendance"
NOTIFICATION_ATTENDANCE_CORRECTED = "event_attendance_corrected"


def streak_tier(streak: int) -> tuple[int, str | None]:
    """Points before decay and the tier label for a streak value."""
    if streak >= SUPER_STREAK_MIN:
        return SUPER_STREAK_POINTS, TIER_SUPER_STREAK
    if streak >= STREAK_BONUS_MIN:
        return STREAK_BONUS_POINTS, TIER_STREAK_BONUS
    return BASE_POINTS, None


def format_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def compute_award(
    user_id: str,
    event: EventDefinition,
    occurrence_date: date,
    exercise_points_total: int,
    streak: int,
    same_day: bool = False,
) -> Award:
    """Award for ``user_id`` attending ``event`` on ``occurrence_date``.

    ``streak`` is the user's streak *including* this attendance.
    """
    points, tier = streak_tier(streak)
    if same_day:
        points = math.ceil(points / 2)
    points += exercise_points_total

    reason = f"{event.title} on {format_date(occurrence_date)}"
    if tier == TIER_SUPER_STREAK:
        reason += f" ({streak}x super-streak!)"
    elif tier == TIER_STREAK_BONUS:
        reason += f" ({streak}x streak bonus)"
    if same_day:
        reason += " (2nd event today)"
    if exercise_points_total > 0:
        reason += f" (+{exercise_points_total} exercise points)"

    return Award(
        user_id=user_id,
        event_id=event.id,
        occurrence_date=occurrence_date,
        points=points,
        xp=points,
        streak_value=streak,
        reason=reason,
        tier=tier,
        same_day=same_day,
    )


def compute_deduction(user_id: str, event: EventDefinition, occurrence_date: date) -> Deduction:
    """Take back the base points of an award whose user was unchecked."""
    reason = (
        f"Attendance corrected: {event.title} on {format_date(occurrence_date)} "
        f"({BASE_POINTS} points deducted)"
    )
    return Deduction(
        user_id=user_id,
        event_id=event.id,
        occurrence_date=occurrence_date,
        points=BASE_POINTS,
        xp=BASE_POINTS,
        reason=reason,
    )


def award_notification(award: Award, event: EventDefinition) -> Notification:
    """Notification telling a player about their attendance points."""
    if award.tier == TIER_SUPER_STREAK:
        title = "Super streak!"
        message = f"{award.streak_value}x in a row! +{award.points} points"
    elif award.tier == TIER_STREAK_BONUS:
        title = "Streak bonus!"
        message = f"{award.streak_value}x in a row! +{award.points} points"
    else:
        title = "Attendance recorded"
        message = (
            f"You received +{award.points} points for \"{event.title}\" "
            f"on {format_date(award.occurrence_date)}."
        )

    return Notification(
        recipient_id=award.user_id,
        type=NOTIFICATION_ATTENDANCE,
        title=title,
        message=message,
        data={
            "points": award.points,
            "streak": award.streak_value,
            "date": award.occurrence_date.isoformat(),
            "event_id": event.id,
            "event_title": event.title,
            "scope_id": event.streak_scope,
        },
    )


def deduction_notification(deduction: Deduction, event: EventDefinition) -> Notification:
    """Notification telling a player their attendance was corrected."""
    return Notification(
        recipient_id=deduction.user_id,
        type=NOTIFICATION_ATTENDANCE_CORRECTED,
        title="Attendance corrected",
        message=deduction.reason,
        data={
            "points": -deduction.points,
            "date": deduction.occurrence_date.isoformat(),
            "event_id": event.id,
            "event_title": event.title,
        },
    )
