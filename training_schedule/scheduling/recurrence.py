"""Occurrence generation for single and recurring events.

Occurrences are always computed as ``start_date + k * step``. Fast-forwarding
to the window is done arithmetically, which gives the same candidates as
stepping one at a time from the start date, so a weekly Wednesday training
stays on Wednesdays no matter which day the schedule is viewed.

Monthly steps use ``dateutil.relativedelta`` against the start date rather
than against the previous occurrence, so a series starting on the 31st clamps
to shorter month ends (Feb 29, Apr 30) and returns to the 31st afterwards.
"""

import logging
import math
from dataclasses import replace
from datetime import UTC, date, datetime, time, timedelta

from dateutil.relativedelta import relativedelta

from training_schedule.scheduling.errors import InvalidDefinition, IterationLimitExceeded
from training_schedule.scheduling.types import (
    RECURRENCE_MONTHLY,
    RECURRENCE_NONE,
    EventDefinition,
    LeadTime,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 100

STEP_DAYS = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 14,
}


def nth_candidate(definition: EventDefinition, k: int) -> date:
    """Return the k-th candidate date of a recurring definition (k=0 is the start)."""
    if definition.recurrence == RECURRENCE_MONTHLY:
        return definition.start_date + relativedelta(months=k)
    return definition.start_date + timedelta(days=STEP_DAYS[definition.recurrence] * k)


def _first_index_on_or_after(definition: EventDefinition, window_start: date) -> int:
    """Smallest k whose candidate falls on or after window_start."""
    start = definition.start_date
    if window_start <= start:
        return 0

    if definition.recurrence == RECURRENCE_MONTHLY:
        k = (window_start.year - start.year) * 12 + window_start.month - start.month
        if nth_candidate(definition, k) < window_start:
            k += 1
        return k

    step = STEP_DAYS[definition.recurrence]
    return math.ceil((window_start - start).days / step)


def generate_occurrences(
    definition: EventDefinition,
    window_start: date,
    window_end: date,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> list[date]:
    """
    Compute the occurrence dates of a definition within an inclusive window.

    A date is emitted when it lies in the window, is not after the recurrence
    end date and is not excluded. Results are ascending and duplicate-free.

    Raises:
        IterationLimitExceeded: more than ``max_steps`` candidates were
            needed to walk the window. Callers get an error instead of a
            silently shortened list.
    """
    end_date = definition.recurrence_end_date

    if definition.recurrence == RECURRENCE_NONE:
        start = definition.start_date
        if window_start <= start <= window_end and start not in definition.excluded_dates:
            return [start]
        return []

    occurrences = []
    k = _first_index_on_or_after(definition, window_start)
    steps = 0

    while True:
        candidate = nth_candidate(definition, k)
        if candidate > window_end or (end_date and candidate > end_date):
            break
        if steps >= max_steps:
            logger.warning(
                f"Occurrence generation for {definition.id} hit the {max_steps}-step cap "
                f"at {candidate} (window ends {window_end})"
            )
            raise IterationLimitExceeded(definition.id, max_steps)
        steps += 1

        if candidate not in definition.excluded_dates:
            occurrences.append(candidate)
        k += 1

    return occurrences


def is_occurrence_date(definition: EventDefinition, day: date) -> bool:
    """Check whether ``day`` is a real (non-cancelled) occurrence of the definition."""
    if day in definition.excluded_dates or day < definition.start_date:
        return False
    if definition.recurrence_end_date and day > definition.recurrence_end_date:
        return False
    if definition.recurrence == RECURRENCE_NONE:
        return day == definition.start_date
    return nth_candidate(definition, _first_index_on_or_after(definition, day)) == day


def lookahead_window(today: date, weeks: int = 4) -> tuple[date, date]:
    """Window of dates whose invitations should exist by ``today``: ``[today, today + weeks]``.

    The invitation lead time never widens it; it only moves ``invitation_due_at``.
    """
    return today, today + timedelta(weeks=weeks)


def invitation_due_at(
    occurrence_date: date,
    start_time: time | None = None,
    lead_time: LeadTime | None = None,
) -> datetime:
    """UTC moment an occurrence's invitation is due for notification."""
    starts_at = datetime.combine(occurrence_date, start_time or time.min, tzinfo=UTC)
    if lead_time is None:
        return starts_at
    return starts_at - lead_time.as_timedelta()


def cancel_occurrence(definition: EventDefinition, occurrence_date: date) -> EventDefinition:
    """Exclude one occurrence. Cancelling twice is a no-op."""
    if occurrence_date in definition.excluded_dates:
        return definition
    logger.info(f"Cancelling occurrence {occurrence_date} of event {definition.id}")
    return replace(definition, excluded_dates=definition.excluded_dates | {occurrence_date})


def truncate_series(definition: EventDefinition, cutoff: date) -> EventDefinition:
    """
    End a recurring series before ``cutoff``.

    The recurrence end date becomes the day before the cutoff, so the cutoff
    occurrence and everything after it disappear. An earlier end date is kept.
    """
    if not definition.is_recurring:
        raise InvalidDefinition(f"Event {definition.id} is not recurring and cannot be truncated")

    new_end = cutoff - timedelta(days=1)
    current_end = definition.recurrence_end_date
    if current_end is not None and current_end <= new_end:
        return definition

    logger.info(f"Truncating series {definition.id}: recurrence now ends {new_end}")
    return replace(definition, recurrence_end_date=new_end)
