"""Points history model.

Every award and every deduction leaves one PointsEntry. The entries are the
audit trail of a player's season points and XP.
"""

from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class PointsEntry(SQLModel, table=True):
    """A signed change to a user's points and XP.

    Attributes:
        id: Unique identifier (UUID).
        user_id: The player whose balance changed.
        points: Positive for awards, negative for deductions.
        xp: Moves together with points for event attendance.
        reason: Human-readable explanation shown in the history.
        event_id: Event the change belongs to. Not a foreign key, so the
            history survives the event being deleted.
        occurrence_date: Occurrence the change belongs to.
        created_at: When the change was recorded.
        awarded_by: Origin of the change.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True)
    points: int
    xp: int
    reason: str
    event_id: str | None = Field(default=None, index=True)
    occurrence_date: date | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    awarded_by: str = Field(default="system (event attendance)")
