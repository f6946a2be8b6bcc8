"""Player routes for streaks and points history."""
from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from training_schedule.core.database import get_session
from training_schedule.models import PointsEntry, Streak
from training_schedule.scheduling import store

router = APIRouter(tags=["players"])


@router.get("/users/{user_id}/streaks")
async def user_streaks(user_id: str, session: Session = Depends(get_session)):
    """Return a user's streaks, one per scope."""
    statement = select(Streak).where(Streak.user_id == user_id).order_by(Streak.scope_id)
    return session.exec(statement).all()


@router.get("/users/{user_id}/points")
async def user_points(user_id: str, session: Session = Depends(get_session)):
    """
    Return a user's points history, most recent first.

    Includes the running total so clients do not have to sum the entries.
    """
    statement = (
        select(PointsEntry)
        .where(PointsEntry.user_id == user_id)
        .order_by(PointsEntry.created_at.desc())
    )
    entries = session.exec(statement).all()
    return {
        "user_id": user_id,
        "points": sum(entry.points for entry in entries),
        "xp": sum(entry.xp for entry in entries),
        "history": entries,
    }


@router.post("/groups/{group_id}/streaks/recalculate")
async def recalculate_group_streaks(group_id: str, session: Session = Depends(get_session)):
    """
    Rebuild the streaks of a group from its recorded attendance.

    Used after attendance has been corrected retroactively.
    """
    return store.recalculate_streaks(session, group_id)
