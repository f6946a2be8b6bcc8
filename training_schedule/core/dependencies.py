"""FastAPI dependencies shared by the routers."""
from training_schedule.core.config import settings
from training_schedule.scheduling.orchestrator import ScheduleContext


def get_schedule_context() -> ScheduleContext:
    """Dependency for the request-scoped clock and generation limits."""
    return ScheduleContext.current(
        lookahead_weeks=settings.lookahead_weeks,
        max_steps=settings.max_occurrence_steps,
    )
