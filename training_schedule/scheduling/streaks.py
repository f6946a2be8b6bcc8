"""
Attendance streaks: pure functions, no DB access.

A streak is never decremented. It grows by one when the user was present at
the most recent prior event of the group and starts over at 1 otherwise.
"""
from collections.abc import Iterable
from datetime import date

from training_schedule.scheduling.types import StreakState


def compute_next_streak(
    user_id: str,
    scope_id: str,
    event_date: date,
    present_at_prior_event: bool | None,
    prior_state: StreakState | None = None,
) -> StreakState:
    """
    Returns the streak state after the user attends ``event_date``.

    ``present_at_prior_event`` is None when there was no prior event (or it
    could not be looked up); that counts the same as an absence.
    """
    new_streak = 1
    if present_at_prior_event and prior_state is not None:
        new_streak = prior_state.current_streak + 1

    return StreakState(
        user_id=user_id,
        scope_id=scope_id,
        current_streak=new_streak,
        last_attendance_date=event_date,
    )


def replay_streaks(
    occurrences: Iterable[tuple[date, str, Iterable[str]]],
) -> dict[tuple[str, str], StreakState]:
    """
    Recompute a group's streaks from scratch out of recorded attendance.

    ``occurrences`` is (occurrence date, streak scope, present user ids) for
    every recorded occurrence of the group, in save order. Each present user
    continues the streak only when they were present at the group's most
    recent earlier occurrence, whatever its scope, the same rule a live save
    applies. Among several records on the prior date the last saved one
    counts.

    Returns the final state per (user id, scope id).
    """
    by_date: dict[date, list[tuple[str, frozenset[str]]]] = {}
    for day, scope_id, present in occurrences:
        by_date.setdefault(day, []).append((scope_id, frozenset(present)))

    states: dict[tuple[str, str], StreakState] = {}
    prior_present = None
    for day in sorted(by_date):
        for scope_id, present in by_date[day]:
            for user_id in sorted(present):
                key = (user_id, scope_id)
                states[key] = compute_next_streak(
                    user_id,
                    scope_id,
                    day,
                    None if prior_present is None else user_id in prior_present,
                    states.get(key),
                )
        prior_present = by_date[day][-1][1]
    return states
