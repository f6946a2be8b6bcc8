"""Event model for single and recurring club events.

This module defines the Event model which stores an event template: when it
starts, how it repeats, which dates were cancelled and who is invited. The
concrete occurrences are never stored; they are generated from this row on
demand, and invitations and attendance are keyed by (event, occurrence date).
"""

from datetime import UTC, date, datetime, time
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, Relationship, SQLModel

from training_schedule.scheduling.types import EventDefinition

if TYPE_CHECKING:
    from training_schedule.models.attendance import EventAttendance
    from training_schedule.models.invitation import Invitation


class Event(SQLModel, table=True):
    """A single or recurring event owned by a group.

    Coaches create events for their group (club) and optionally target
    subgroups. Editing the title, times or location leaves the schedule as
    is; changing the start date or recurrence changes which occurrences are
    generated. Cancelling one occurrence adds its date to ``excluded_dates``
    and ending a series early sets ``recurrence_end_date``.

    Attributes:
        id: Unique identifier (UUID).
        group_id: Owning group. Scope for prior-event and same-day lookups.
        title: Event title.
        description: Free-form description.
        location: Where the event takes place.
        start_date: First (or only) occurrence date.
        start_time: Time of day the event starts, if set.
        end_time: Time of day the event ends, if set.
        recurrence: One of "none", "daily", "weekly", "biweekly", "monthly".
        recurrence_end_date: Last date an occurrence may fall on.
        excluded_dates: ISO dates of cancelled occurrences.
        lead_time_value: Invitation lead amount, paired with lead_time_unit.
        lead_time_unit: "hours", "days" or "weeks".
        target_subgroup_ids: Targeted subgroups; the first is the streak scope.
        audience: User ids invited to every occurrence.
        created_at: When the event was created.
        updated_at: When the event was last edited.
        invitations: Invitations generated for the event's occurrences.
        attendance_records: Attendance taken at the event's occurrences.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    group_id: str = Field(index=True)
    title: str
    description: str | None = None
    location: str | None = None
    start_date: date = Field(index=True)
    start_time: time | None = None
    end_time: time | None = None
    recurrence: str = Field(default="none")
    recurrence_end_date: date | None = None
    excluded_dates: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    lead_time_value: int | None = None
    lead_time_unit: str | None = None
    target_subgroup_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    audience: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    # Relationships
    invitations: list["Invitation"] = Relationship(back_populates="event")
    attendance_records: list["EventAttendance"] = Relationship(back_populates="event")

    def to_definition(self) -> EventDefinition:
        """Validated scheduling view of this row.

        Raises:
            InvalidDefinition: if the stored dates or recurrence are unusable.
        """
        return EventDefinition.from_raw(
            id=str(self.id),
            group_id=self.group_id,
            start_date=self.start_date,
            title=self.title,
            start_time=self.start_time,
            end_time=self.end_time,
            recurrence=self.recurrence,
            recurrence_end_date=self.recurrence_end_date,
            excluded_dates=self.excluded_dates or [],
            lead_time_value=self.lead_time_value,
            lead_time_unit=self.lead_time_unit,
            target_subgroup_ids=self.target_subgroup_ids or [],
            audience=self.audience or [],
        )

    def apply_definition(self, definition: EventDefinition) -> None:
        """Copy the schedule fields of a (mutated) definition back onto the row."""
        self.start_date = definition.start_date
        self.recurrence = definition.recurrence
        self.recurrence_end_date = definition.recurrence_end_date
        self.excluded_dates = sorted(d.isoformat() for d in definition.excluded_dates)
        self.updated_at = datetime.now(UTC)
