"""Tests for applying plans to the database."""

from datetime import UTC, date, datetime

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from training_schedule.models import Event, Invitation, OutboxNotification, PointsEntry, Streak
from training_schedule.scheduling import store
from training_schedule.scheduling.errors import AttendanceConflict, UnknownOccurrence
from training_schedule.scheduling.orchestrator import (
    ScheduleContext,
    plan_attendance,
    plan_cancellation,
    plan_invitations,
)
from training_schedule.scheduling.recurrence import truncate_series


def save_attendance(session: Session, context: ScheduleContext, event: Event, day, present):
    """Load, plan and apply one attendance save, like the route does."""
    existing = store.get_attendance(session, event.id, day)
    plan = plan_attendance(
        context,
        event.to_definition(),
        day,
        present,
        [],
        existing.to_record() if existing else None,
        store.SqlAttendanceLookups(session),
    )
    store.apply_attendance_plan(session, plan)
    return plan


def streak_of(session: Session, user_id: str, scope_id: str = "club-1") -> int | None:
    streak = session.exec(
        select(Streak).where(Streak.user_id == user_id).where(Streak.scope_id == scope_id)
    ).first()
    return streak.current_streak if streak else None


def total_points(session: Session, user_id: str) -> int:
    entries = session.exec(select(PointsEntry).where(PointsEntry.user_id == user_id)).all()
    return sum(entry.points for entry in entries)


class TestInvitations:
    """Tests for persisting reconciled invitations."""

    def test_apply_plan_twice(self, session: Session, context: ScheduleContext, weekly_event: Event):
        plan = plan_invitations(context, weekly_event.to_definition(), [])

        first = store.apply_invitation_plan(session, plan)
        second = store.apply_invitation_plan(session, plan)

        assert first == {"created": 8, "duplicates": 0}
        assert second == {"created": 0, "duplicates": 8}
        assert len(session.exec(select(Invitation)).all()) == 8
        # Notifications only for the invitations that were actually created
        assert len(session.exec(select(OutboxNotification)).all()) == 8

    def test_partial_duplicates(self, session: Session, context: ScheduleContext, weekly_event: Event):
        plan = plan_invitations(context, weekly_event.to_definition(), [])
        store.insert_invitations(session, plan.invitations[:3])

        stats = store.insert_invitations(session, plan.invitations)

        assert stats["created"] == 5
        assert stats["duplicates"] == 3
        assert len(session.exec(select(Invitation)).all()) == 8

    def test_failed_batch_keeps_nothing(
        self,
        session: Session,
        context: ScheduleContext,
        weekly_event: Event,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """Invitations never outlive a failure to queue their notifications."""
        plan = plan_invitations(context, weekly_event.to_definition(), [])

        def outbox_down(session, notifications):
            raise OperationalError("INSERT INTO outboxnotification", {}, Exception("disk full"))

        monkeypatch.setattr(store, "queue_notifications", outbox_down)
        with pytest.raises(OperationalError):
            store.apply_invitation_plan(session, plan)
        assert session.exec(select(Invitation)).all() == []

        monkeypatch.undo()
        assert store.apply_invitation_plan(session, plan) == {"created": 8, "duplicates": 0}
        assert len(session.exec(select(OutboxNotification)).all()) == 8

    def test_notifications_are_due_in_utc(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        plan = plan_invitations(context, weekly_event.to_definition(), [])
        store.apply_invitation_plan(session, plan)

        first = session.exec(
            select(OutboxNotification).order_by(OutboxNotification.due_at)
        ).first()
        assert first.due_at.replace(tzinfo=UTC) == datetime(2024, 1, 17, 18, 0, tzinfo=UTC)

    def test_existing_invitations(self, session: Session, context: ScheduleContext, weekly_event: Event):
        plan = plan_invitations(context, weekly_event.to_definition(), [])
        store.apply_invitation_plan(session, plan)

        existing = store.existing_invitations(session, weekly_event)

        assert {inv.key for inv in existing} == {inv.key for inv in plan.invitations}
        assert plan_invitations(context, weekly_event.to_definition(), existing).invitations == []


class TestAttendance:
    """Tests for attendance saves, streaks and points."""

    def test_streak_builds_and_resets(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        for day in (date(2024, 1, 3), date(2024, 1, 10)):
            save_attendance(session, context, weekly_event, day, ["u1"])
        third = save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])

        assert streak_of(session, "u1") == 3
        assert third.awards[0].points == 5

        save_attendance(session, context, weekly_event, date(2024, 1, 24), ["u2"])
        fifth = save_attendance(session, context, weekly_event, date(2024, 1, 31), ["u1"])

        assert fifth.awards[0].streak_value == 1
        assert fifth.awards[0].points == 3
        assert streak_of(session, "u1") == 1
        assert total_points(session, "u1") == 3 + 3 + 5 + 3

    def test_same_day_second_event(
        self,
        session: Session,
        context: ScheduleContext,
        weekly_event: Event,
        single_event: Event,
    ):
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])
        plan = save_attendance(session, context, single_event, date(2024, 1, 17), ["u1"])

        assert plan.awards[0].same_day is True
        assert plan.awards[0].points == 2
        assert total_points(session, "u1") == 5

    def test_uncheck_deducts_base_points(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1", "u2"])
        plan = save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])

        assert [d.user_id for d in plan.deductions] == ["u2"]
        assert total_points(session, "u2") == 0
        assert streak_of(session, "u2") == 1

        record = store.get_attendance(session, weekly_event.id, date(2024, 1, 17))
        assert record.awarded_to == ["u1"]
        assert record.version == 2

    def test_resave_awards_nobody(self, session: Session, context: ScheduleContext, weekly_event: Event):
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])
        plan = save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])

        assert plan.awards == []
        assert total_points(session, "u1") == 3

    def test_stale_plan_is_rejected(self, session: Session, context: ScheduleContext, weekly_event: Event):
        """Two saves computed against the same version: the second one loses."""
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])
        existing = store.get_attendance(session, weekly_event.id, date(2024, 1, 17)).to_record()
        lookups = store.SqlAttendanceLookups(session)
        definition = weekly_event.to_definition()

        winner = plan_attendance(context, definition, date(2024, 1, 17), ["u1", "u2"], [], existing, lookups)
        loser = plan_attendance(context, definition, date(2024, 1, 17), [], [], existing, lookups)
        store.apply_attendance_plan(session, winner)

        with pytest.raises(AttendanceConflict):
            store.apply_attendance_plan(session, loser)

        assert total_points(session, "u1") == 3
        assert total_points(session, "u2") == 3
        record = store.get_attendance(session, weekly_event.id, date(2024, 1, 17))
        assert record.awarded_to == ["u1", "u2"]

    def test_racing_first_saves(self, session: Session, context: ScheduleContext, weekly_event: Event):
        lookups = store.SqlAttendanceLookups(session)
        definition = weekly_event.to_definition()
        first = plan_attendance(context, definition, date(2024, 1, 17), ["u1"], [], None, lookups)
        second = plan_attendance(context, definition, date(2024, 1, 17), ["u2"], [], None, lookups)
        store.apply_attendance_plan(session, first)

        with pytest.raises(AttendanceConflict):
            store.apply_attendance_plan(session, second)

        assert total_points(session, "u2") == 0


class TestCancellation:
    """Tests for cancelling an occurrence that already has attendance."""

    def cancel(self, session: Session, event: Event, day):
        existing = store.get_attendance(session, event.id, day)
        return plan_cancellation(
            event.to_definition(),
            day,
            store.existing_invitations(session, event),
            existing.to_record() if existing else None,
        )

    def test_cancel_revokes_and_drops_record(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1", "u2"])

        store.apply_cancellation_plan(
            session, weekly_event, self.cancel(session, weekly_event, date(2024, 1, 17))
        )

        assert total_points(session, "u1") == 0
        assert total_points(session, "u2") == 0
        assert store.get_attendance(session, weekly_event.id, date(2024, 1, 17)) is None
        assert weekly_event.excluded_dates == ["2024-01-17"]

    def test_save_after_plan_wins(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])
        plan = self.cancel(session, weekly_event, date(2024, 1, 17))
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1", "u2"])

        with pytest.raises(AttendanceConflict):
            store.apply_cancellation_plan(session, weekly_event, plan)

        assert total_points(session, "u1") == 3
        assert weekly_event.excluded_dates == []
        assert store.get_attendance(session, weekly_event.id, date(2024, 1, 17)).version == 2

    def test_retraction_after_truncation(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        """Points stay retractable on a date the series no longer reaches."""
        save_attendance(session, context, weekly_event, date(2024, 1, 24), ["u1", "u2"])
        weekly_event.apply_definition(truncate_series(weekly_event.to_definition(), date(2024, 1, 20)))
        session.add(weekly_event)
        session.commit()

        plan = save_attendance(session, context, weekly_event, date(2024, 1, 24), ["u1"])

        assert [d.user_id for d in plan.deductions] == ["u2"]
        assert total_points(session, "u2") == 0
        with pytest.raises(UnknownOccurrence):
            save_attendance(session, context, weekly_event, date(2024, 1, 24), ["u1", "u2"])


class TestLookups:
    """Tests for the SQL-backed historical lookups."""

    def test_prior_event(
        self,
        session: Session,
        context: ScheduleContext,
        weekly_event: Event,
        single_event: Event,
    ):
        save_attendance(session, context, weekly_event, date(2024, 1, 10), ["u1"])
        save_attendance(session, context, single_event, date(2024, 1, 17), ["u2"])
        lookups = store.SqlAttendanceLookups(session)

        assert lookups.prior_event("club-1", date(2024, 1, 24)) == (
            str(single_event.id),
            date(2024, 1, 17),
        )
        assert lookups.prior_event("club-1", date(2024, 1, 17)) == (
            str(weekly_event.id),
            date(2024, 1, 10),
        )
        assert lookups.prior_event("club-1", date(2024, 1, 10)) is None
        assert lookups.prior_event("club-2", date(2024, 1, 24)) is None

    def test_was_present(self, session: Session, context: ScheduleContext, weekly_event: Event):
        save_attendance(session, context, weekly_event, date(2024, 1, 10), ["u1"])
        lookups = store.SqlAttendanceLookups(session)

        assert lookups.was_present(str(weekly_event.id), date(2024, 1, 10), "u1")
        assert not lookups.was_present(str(weekly_event.id), date(2024, 1, 10), "u2")
        assert not lookups.was_present(str(weekly_event.id), date(2024, 1, 3), "u1")

    def test_awarded_elsewhere_on(
        self,
        session: Session,
        context: ScheduleContext,
        weekly_event: Event,
        single_event: Event,
    ):
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])
        lookups = store.SqlAttendanceLookups(session)

        assert lookups.awarded_elsewhere_on("u1", "club-1", date(2024, 1, 17), str(single_event.id))
        assert not lookups.awarded_elsewhere_on(
            "u1", "club-1", date(2024, 1, 17), str(weekly_event.id)
        )
        assert not lookups.awarded_elsewhere_on("u2", "club-1", date(2024, 1, 17), str(single_event.id))


class TestRecalculateStreaks:
    """Tests for rebuilding streaks from recorded attendance."""

    def test_replays_recorded_history(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        for day in (date(2024, 1, 3), date(2024, 1, 10), date(2024, 1, 17)):
            save_attendance(session, context, weekly_event, day, ["u1"])
        # Overwrite the stored streak as if it had drifted
        streak = session.exec(select(Streak).where(Streak.user_id == "u1")).one()
        streak.current_streak = 9
        session.add(streak)
        session.commit()

        stats = store.recalculate_streaks(session, "club-1")

        assert stats == {"scopes": 1, "updated": 1}
        assert streak_of(session, "u1") == 3

    def test_absence_in_history(self, session: Session, context: ScheduleContext, weekly_event: Event):
        save_attendance(session, context, weekly_event, date(2024, 1, 3), ["u1"])
        save_attendance(session, context, weekly_event, date(2024, 1, 10), ["u2"])
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1", "u2"])

        store.recalculate_streaks(session, "club-1")

        assert streak_of(session, "u1") == 1
        assert streak_of(session, "u2") == 2

    def test_unknown_group(self, session: Session):
        assert store.recalculate_streaks(session, "nobody") == {"scopes": 0, "updated": 0}

    def test_matches_live_streaks_across_scopes(
        self, session: Session, context: ScheduleContext, weekly_event: Event
    ):
        """A subgroup occurrence in between breaks the group streak, live and replayed alike."""
        subgroup_event = Event(
            group_id="club-1",
            title="Goalkeepers",
            start_date=date(2024, 1, 10),
            recurrence="none",
            target_subgroup_ids=["sg-a"],
            audience=["u2"],
        )
        session.add(subgroup_event)
        session.commit()
        session.refresh(subgroup_event)

        save_attendance(session, context, weekly_event, date(2024, 1, 3), ["u1"])
        save_attendance(session, context, subgroup_event, date(2024, 1, 10), ["u2"])
        save_attendance(session, context, weekly_event, date(2024, 1, 17), ["u1"])
        assert streak_of(session, "u1") == 1

        stats = store.recalculate_streaks(session, "club-1")

        assert stats == {"scopes": 2, "updated": 2}
        assert streak_of(session, "u1") == 1
        assert streak_of(session, "u2", "sg-a") == 1
