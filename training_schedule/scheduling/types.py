"""Value types shared by the scheduling core.

These are plain frozen dataclasses: the core never touches the database, so
the SQLModel tables in ``training_schedule.models`` are converted to and from
these types by the store. Dates are parsed exactly once, when an
``EventDefinition`` is built from raw input, so everything downstream works
with ``datetime.date`` values.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any

from training_schedule.scheduling.errors import InvalidDefinition

RECURRENCE_NONE = "none"
RECURRENCE_DAILY = "daily"
RECURRENCE_WEEKLY = "weekly"
RECURRENCE_BIWEEKLY = "biweekly"
RECURRENCE_MONTHLY = "monthly"
RECURRENCE_KINDS = (
    RECURRENCE_NONE,
    RECURRENCE_DAILY,
    RECURRENCE_WEEKLY,
    RECURRENCE_BIWEEKLY,
    RECURRENCE_MONTHLY,
)

LEAD_UNITS = ("hours", "days", "weeks")

INVITATION_STATUSES = ("pending", "accepted", "rejected")


def parse_date(value: Any, field_name: str) -> date:
    """
    Parse an ISO ``YYYY-MM-DD`` string (or pass a date through).

    A full ISO datetime string is accepted and truncated to its date; anything
    else, including a date followed by stray characters, is rejected.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value:
        raise InvalidDefinition(f"{field_name} is missing or not a date: {value!r}")
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value).date()
    except ValueError as e:
        raise InvalidDefinition(f"{field_name} is not an ISO date: {value!r}") from e


def parse_time(value: Any, field_name: str) -> time | None:
    """Parse an optional ``HH:MM[:SS]`` string."""
    if value is None or value == "":
        return None
    if isinstance(value, time):
        return value
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise InvalidDefinition(f"{field_name} is not a time: {value!r}") from e


@dataclass(frozen=True)
class LeadTime:
    """How long before an occurrence its invitation becomes due."""

    value: int
    unit: str

    def __post_init__(self):
        if self.unit not in LEAD_UNITS:
            raise InvalidDefinition(
                f"Lead time unit must be one of {', '.join(LEAD_UNITS)}: {self.unit!r}"
            )
        if not isinstance(self.value, int) or self.value < 0:
            raise InvalidDefinition(f"Lead time value must be a non-negative integer: {self.value!r}")

    def as_timedelta(self) -> timedelta:
        return timedelta(**{self.unit: self.value})


@dataclass(frozen=True)
class EventDefinition:
    """A single or recurring event template.

    Attributes:
        id: Unique identifier of the definition.
        group_id: The owning group (club). Streak scope falls back to it.
        start_date: First (or only) occurrence date.
        title: Display title, used in reason strings and notifications.
        start_time: Optional time of day the event starts.
        end_time: Optional time of day the event ends.
        recurrence: One of ``RECURRENCE_KINDS``.
        recurrence_end_date: Last date an occurrence may fall on.
        excluded_dates: Individually cancelled occurrence dates.
        lead_time: Invitation lead, if any.
        target_subgroup_ids: Subgroups the event targets, in priority order.
        audience: User ids invited to every occurrence.
    """

    id: str
    group_id: str
    start_date: date
    title: str = "Event"
    start_time: time | None = None
    end_time: time | None = None
    recurrence: str = RECURRENCE_NONE
    recurrence_end_date: date | None = None
    excluded_dates: frozenset[date] = field(default_factory=frozenset)
    lead_time: LeadTime | None = None
    target_subgroup_ids: tuple[str, ...] = ()
    audience: tuple[str, ...] = ()

    def __post_init__(self):
        if not isinstance(self.start_date, date):
            raise InvalidDefinition(f"Event {self.id}: start date is missing")
        if self.recurrence not in RECURRENCE_KINDS:
            raise InvalidDefinition(
                f"Event {self.id}: unknown recurrence kind {self.recurrence!r}"
            )

    @classmethod
    def from_raw(
        cls,
        *,
        id: str,
        group_id: str,
        start_date: Any,
        title: str | None = None,
        start_time: Any = None,
        end_time: Any = None,
        recurrence: str | None = None,
        recurrence_end_date: Any = None,
        excluded_dates: Iterable[Any] | None = None,
        lead_time_value: int | None = None,
        lead_time_unit: str | None = None,
        target_subgroup_ids: Iterable[str] | None = None,
        audience: Iterable[str] | None = None,
    ) -> EventDefinition:
        """Build a definition from loosely typed input, failing fast on bad dates."""
        lead_time = None
        if lead_time_value is not None or lead_time_unit is not None:
            if lead_time_value is None or lead_time_unit is None:
                raise InvalidDefinition(
                    f"Event {id}: lead time needs both a value and a unit"
                )
            lead_time = LeadTime(value=lead_time_value, unit=lead_time_unit)

        return cls(
            id=str(id),
            group_id=str(group_id),
            start_date=parse_date(start_date, "start_date"),
            title=title or "Event",
            start_time=parse_time(start_time, "start_time"),
            end_time=parse_time(end_time, "end_time"),
            recurrence=recurrence or RECURRENCE_NONE,
            recurrence_end_date=(
                parse_date(recurrence_end_date, "recurrence_end_date")
                if recurrence_end_date
                else None
            ),
            excluded_dates=frozenset(
                parse_date(d, "excluded_dates") for d in (excluded_dates or ())
            ),
            lead_time=lead_time,
            target_subgroup_ids=tuple(target_subgroup_ids or ()),
            audience=tuple(dict.fromkeys(audience or ())),
        )

    @property
    def is_recurring(self) -> bool:
        return self.recurrence != RECURRENCE_NONE

    @property
    def streak_scope(self) -> str:
        """Primary target subgroup, or the owning group when untargeted."""
        if self.target_subgroup_ids:
            return self.target_subgroup_ids[0]
        return self.group_id


@dataclass(frozen=True)
class Invitation:
    """One user's invitation to one occurrence."""

    event_id: str
    user_id: str
    occurrence_date: date
    status: str = "pending"
    created_at: datetime | None = None
    responded_at: datetime | None = None

    @property
    def key(self) -> tuple[str, str, date]:
        return (self.event_id, self.user_id, self.occurrence_date)


@dataclass(frozen=True)
class Exercise:
    """An exercise completed during an occurrence, worth bonus points."""

    id: str
    name: str
    points: int = 0


@dataclass(frozen=True)
class AttendanceRecord:
    """Attendance for one (event, occurrence date)."""

    event_id: str
    occurrence_date: date
    present_user_ids: tuple[str, ...] = ()
    exercises: tuple[Exercise, ...] = ()
    awarded_to: tuple[str, ...] = ()
    updated_at: datetime | None = None
    version: int = 0

    @property
    def exercise_points(self) -> int:
        return sum(ex.points for ex in self.exercises)


@dataclass(frozen=True)
class StreakState:
    """Consecutive-attendance count for a user within a streak scope."""

    user_id: str
    scope_id: str
    current_streak: int
    last_attendance_date: date | None = None


@dataclass(frozen=True)
class Award:
    """Points and XP granted for attending one occurrence."""

    user_id: str
    event_id: str
    occurrence_date: date
    points: int
    xp: int
    streak_value: int
    reason: str
    tier: str | None = None
    same_day: bool = False


@dataclass(frozen=True)
class Deduction:
    """Points and XP taken back when attendance is retracted."""

    user_id: str
    event_id: str
    occurrence_date: date
    points: int
    xp: int
    reason: str


@dataclass(frozen=True)
class Notification:
    """A notification for the external delivery service to send."""

    recipient_id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    due_at: datetime | None = None
