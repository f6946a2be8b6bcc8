"""Notification outbox model.

Notifications are only recorded here; a separate delivery service reads
undelivered rows whose ``due_at`` has passed and sends them.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class OutboxNotification(SQLModel, table=True):
    """A notification waiting for delivery.

    Attributes:
        id: Unique identifier (UUID).
        recipient_id: User to notify.
        type: Notification kind, e.g. "event_invitation" or "event_attendance".
        title: Short headline.
        message: Body text.
        data: Structured payload for the client.
        due_at: Earliest delivery time; None means immediately.
        created_at: When the notification was queued.
        delivered_at: Set by the delivery service.
    """
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    recipient_id: str = Field(index=True)
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    due_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    delivered_at: datetime | None = None
