"""Streak model for consecutive attendance.

One row per (user, scope); the scope is the event's first target subgroup,
or its owning group for untargeted events.
"""

from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from training_schedule.scheduling.types import StreakState


class Streak(SQLModel, table=True):
    """Current attendance streak of a user within a scope.

    Attributes:
        id: Unique identifier (UUID).
        user_id: The player.
        scope_id: Subgroup or group the streak counts events of.
        current_streak: Consecutive events attended.
        last_attendance_date: Occurrence date of the latest counted attendance.
        updated_at: When the streak was last written.
    """
    __table_args__ = (UniqueConstraint("user_id", "scope_id", name="uq_streak_scope"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True)
    scope_id: str = Field(index=True)
    current_streak: int = Field(default=0)
    last_attendance_date: date | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def to_state(self) -> StreakState:
        return StreakState(
            user_id=self.user_id,
            scope_id=self.scope_id,
            current_streak=self.current_streak,
            last_attendance_date=self.last_attendance_date,
        )
