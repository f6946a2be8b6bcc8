from training_schedule.models.attendance import EventAttendance
from training_schedule.models.event import Event
from training_schedule.models.invitation import Invitation
from training_schedule.models.notification import OutboxNotification
from training_schedule.models.points import PointsEntry
from training_schedule.models.streak import Streak

__all__ = ["Event", "Invitation", "EventAttendance", "Streak", "PointsEntry", "OutboxNotification"]
