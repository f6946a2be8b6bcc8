"""Attendance model for recorded occurrences.

This module defines the EventAttendance model: one row per
(event, occurrence date) holding who was present, which exercises were done
and who has already been awarded points. A row is created on the first save
for an occurrence and updated on later saves, guarded by ``version``.
"""

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from training_schedule.scheduling.types import AttendanceRecord, Exercise

if TYPE_CHECKING:
    from training_schedule.models.event import Event


class EventAttendance(SQLModel, table=True):
    """Attendance taken at one occurrence of an event.

    Attributes:
        id: Unique identifier (UUID).
        event_id: Foreign key to the Event.
        occurrence_date: The occurrence attendance was taken for.
        present_user_ids: Users marked present.
        completed_exercises: Exercises done, each {"id", "name", "points"}.
        awarded_to: Users who have received their award for this occurrence.
        created_at: First save.
        updated_at: Last save.
        version: Incremented on every save; a save computed against an older
            version is rejected.
        event: Reference to the parent Event object.
    """
    __table_args__ = (
        UniqueConstraint("event_id", "occurrence_date", name="uq_attendance_occurrence"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="event.id", index=True)
    occurrence_date: date = Field(index=True)
    present_user_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    completed_exercises: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    awarded_to: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    version: int = Field(default=1)

    # Relationship
    event: Optional["Event"] = Relationship(back_populates="attendance_records")

    def to_record(self) -> AttendanceRecord:
        return AttendanceRecord(
            event_id=str(self.event_id),
            occurrence_date=self.occurrence_date,
            present_user_ids=tuple(self.present_user_ids or ()),
            exercises=tuple(
                Exercise(id=str(ex.get("id", "")), name=ex.get("name", ""), points=int(ex.get("points") or 0))
                for ex in self.completed_exercises or ()
            ),
            awarded_to=tuple(self.awarded_to or ()),
            updated_at=self.updated_at,
            version=self.version,
        )
