"""Invitation model for per-occurrence invites.

This module defines the Invitation model which represents one user's invite
to one occurrence of an event. Invitations are created by reconciliation
whenever an occurrence enters the lookahead window, and the
(event, user, occurrence date) triple is unique so that re-running
reconciliation can never duplicate them.
"""

from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

from training_schedule.scheduling import types

if TYPE_CHECKING:
    from training_schedule.models.event import Event


class Invitation(SQLModel, table=True):
    """A user's invitation to one occurrence of an event.

    Attributes:
        id: Unique identifier (UUID).
        event_id: Foreign key to the parent Event.
        user_id: Invited user.
        occurrence_date: The occurrence the invitation is for.
        status: "pending" until the user responds with "accepted" or
            "rejected".
        created_at: When reconciliation created the invitation.
        responded_at: When the user last responded, if ever.
        event: Reference to the parent Event object.
    """
    __table_args__ = (
        UniqueConstraint("event_id", "user_id", "occurrence_date", name="uq_invitation_key"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="event.id", index=True)
    user_id: str = Field(index=True)
    occurrence_date: date
    status: str = Field(default="pending")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    responded_at: datetime | None = None

    # Relationship
    event: Optional["Event"] = Relationship(back_populates="invitations")

    def to_value(self) -> types.Invitation:
        return types.Invitation(
            event_id=str(self.event_id),
            user_id=self.user_id,
            occurrence_date=self.occurrence_date,
            status=self.status,
            created_at=self.created_at,
            responded_at=self.responded_at,
        )
