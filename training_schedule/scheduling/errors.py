"""Errors raised by the scheduling core and its persistence collaborator."""


class ScheduleError(Exception):
    """Base class for scheduling errors."""


class InvalidDefinition(ScheduleError, ValueError):
    """An event definition cannot be used for occurrence generation.

    Raised for a missing or unparseable start date, an unknown recurrence
    kind, malformed end or excluded dates, or an invalid lead-time spec.
    """


class UnknownOccurrence(ScheduleError, ValueError):
    """A date that is not (or no longer) an occurrence of the event."""


class IterationLimitExceeded(ScheduleError):
    """Occurrence generation hit its step cap before reaching the window end."""

    def __init__(self, definition_id: str, max_steps: int):
        self.definition_id = definition_id
        self.max_steps = max_steps
        super().__init__(
            f"Event {definition_id}: occurrence generation stopped after "
            f"{max_steps} steps before reaching the end of the window"
        )


class LookupUnavailable(ScheduleError):
    """A historical lookup (prior event, prior attendance, same day) failed."""


class DuplicateKeyConflict(ScheduleError):
    """An invitation with the same (event, user, date) key already exists."""


class AttendanceConflict(ScheduleError):
    """The attendance record changed since the caller loaded it."""

    def __init__(self, event_id: str, occurrence_date, expected_version: int):
        self.event_id = event_id
        self.occurrence_date = occurrence_date
        self.expected_version = expected_version
        super().__init__(
            f"Attendance for event {event_id} on {occurrence_date} was modified "
            f"concurrently (expected version {expected_version})"
        )
