"""Invitation routes for responding to an invite."""
from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, SQLModel

from training_schedule.core.database import get_session
from training_schedule.models import Invitation

router = APIRouter(prefix="/invitations", tags=["invitations"])


class InvitationResponse(SQLModel):
    status: str


@router.post("/{invitation_id}/respond")
async def respond_to_invitation(
    invitation_id: UUID,
    payload: InvitationResponse,
    session: Session = Depends(get_session),
):
    """
    Accept or reject an invitation.

    Users can change their mind; every response updates the response
    timestamp. Returns 400 for any status other than accepted or rejected.
    """
    invitation = session.get(Invitation, invitation_id)
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation not found")

    if payload.status not in ("accepted", "rejected"):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid response status: {payload.status}",
        )

    invitation.status = payload.status
    invitation.responded_at = datetime.now(UTC)
    session.add(invitation)
    session.commit()
    session.refresh(invitation)
    return invitation
