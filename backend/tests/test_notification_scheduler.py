"""
Test Suite for the reminder scheduler
Tests:
- Expiry reminders per offset and their escalating tone
- Reschedule idempotence and per-record cancellation
- Batch isolation and rollback when the schedule cannot be saved
- Application pending reminders around the 90 working day SLA
- Web-only fallback
"""
import asyncio
from datetime import date, timedelta, timezone

import pytest

from conftest import FakeCapability, FixedClock, NOW, applied_working_days_ago
from models import FirearmApplication, FirearmRecord
from services.notification_capability import NoopNotificationCapability
from services.notification_scheduler import (
    IMMEDIATE_DELAY, NOTIFICATION_ID_FLOOR, NotificationScheduler,
    firearm_reminder_text, plan_firearm_reminders
)
from utils.database import FIREARM_SCHEDULE_KEY, RecordStore
from utils.errors import PersistenceError
from utils.holidays import at_sast_hour, sast_today

TODAY = sast_today(NOW)
VALID_ID = "8001015009087"


def firearm_expiring_in(days, title="Glock 19"):
    """A Section 13 (five year) licence expiring the given number of days after today"""
    expiry = TODAY + timedelta(days=days)
    return FirearmRecord(title=title, issue_date=expiry.replace(year=expiry.year - 5), section="section_13")


def application_pending(working_days, ref="FA/1/2025"):
    return FirearmApplication.model_validate(
        {
            "application_ref_number": ref,
            "id_number": VALID_ID,
            "date_applied": applied_working_days_ago(TODAY, working_days).isoformat(),
        },
        context={"today": TODAY}
    )


class ScheduleSaveFails(RecordStore):
    """Accepts everything except writes to the firearm schedule"""

    async def save(self, key, records):
        if key == FIREARM_SCHEDULE_KEY:
            raise PersistenceError("disk full")
        await super().save(key, records)


@pytest.fixture
def scheduler(store, capability):
    return NotificationScheduler(store, capability, clock=FixedClock(), reminder_hour=9)


class TestReminderPlan:
    """Offsets and wording"""

    def test_ten_days_out_leaves_seven_three_one(self):
        plan = plan_firearm_reminders(TODAY + timedelta(days=10), NOW, 9)
        assert [days for days, _ in plan] == [7, 3, 1]
        assert plan[0][1] == at_sast_hour(TODAY + timedelta(days=3), 9)

    def test_expired_licence_has_no_plan(self):
        assert plan_firearm_reminders(TODAY - timedelta(days=1), NOW, 9) == []

    def test_far_future_has_all_offsets(self):
        plan = plan_firearm_reminders(TODAY + timedelta(days=400), NOW, 9)
        assert [days for days, _ in plan] == [365, 180, 90, 60, 30, 14, 7, 3, 1]

    @pytest.mark.parametrize("days,severity,marker", [
        (365, "notice", "1 Year Notice"),
        (90, "notice", "Time to start renewal"),
        (60, "renewal_required", "Renewal required"),
        (30, "renewal_required", "Renewal required"),
        (14, "urgent", "URGENT"),
        (7, "urgent", "URGENT"),
        (3, "critical", "IMMEDIATE ACTION REQUIRED"),
        (1, "critical", "tomorrow"),
    ])
    def test_tone_escalates(self, days, severity, marker):
        title, body, level = firearm_reminder_text("CZ 75", date(2026, 1, 1), days)
        assert level == severity
        assert marker in title + body
        assert "CZ 75" in body


class TestFirearmReminders:
    """schedule_for_firearm / cancel_for_firearm / reschedule_all"""

    def test_ten_days_to_expiry(self, scheduler, capability):
        firearm = firearm_expiring_in(10)
        reminders = asyncio.run(scheduler.schedule_for_firearm(firearm))

        assert [r.extra["days_to_expiry"] for r in reminders] == [7, 3, 1]
        assert [r.extra["severity"] for r in reminders] == ["urgent", "critical", "critical"]
        assert sorted(capability.registered) == sorted(r.id for r in reminders)
        assert all(r.fire_at > NOW for r in reminders)

        [entry] = asyncio.run(scheduler.get_schedule())
        assert entry.record_id == firearm.id
        assert entry.reference_date == firearm.expiry_date.isoformat()
        assert entry.reminder_ids == [r.id for r in reminders]
        print(f"✓ 10 days to expiry -> reminders {entry.reminder_ids}")

    def test_ids_start_above_floor_and_persist(self, store, capability):
        first = NotificationScheduler(store, capability, clock=FixedClock())
        reminders = asyncio.run(first.schedule_for_firearm(firearm_expiring_in(10)))
        assert [r.id for r in reminders] == [NOTIFICATION_ID_FLOOR + 1, NOTIFICATION_ID_FLOOR + 2, NOTIFICATION_ID_FLOOR + 3]

        # A new scheduler (app restart) continues from the stored high-water mark
        second = NotificationScheduler(store, capability, clock=FixedClock())
        more = asyncio.run(second.schedule_for_firearm(firearm_expiring_in(5, title="Rifle")))
        assert min(r.id for r in more) > max(r.id for r in reminders)

    def test_rescheduling_is_idempotent(self, scheduler, capability):
        firearm = firearm_expiring_in(10)
        first = asyncio.run(scheduler.schedule_for_firearm(firearm))
        second = asyncio.run(scheduler.schedule_for_firearm(firearm))

        assert len(capability.registered) == 3
        assert sorted(capability.registered) == sorted(r.id for r in second)
        assert not set(r.id for r in first) & set(capability.registered)
        [entry] = asyncio.run(scheduler.get_schedule())
        assert len(entry.reminder_ids) == 3
        print("✓ Scheduling twice leaves one reminder per offset")

    def test_expired_licence_schedules_nothing(self, scheduler, capability):
        reminders = asyncio.run(scheduler.schedule_for_firearm(firearm_expiring_in(-30)))
        assert reminders == []
        assert capability.registered == {}
        assert asyncio.run(scheduler.get_schedule()) == []

    def test_cancel_only_touches_one_record(self, scheduler, capability):
        glock = firearm_expiring_in(10)
        rifle = firearm_expiring_in(200, title="Tikka T3x")
        asyncio.run(scheduler.schedule_for_firearm(glock))
        rifle_reminders = asyncio.run(scheduler.schedule_for_firearm(rifle))

        cancelled = asyncio.run(scheduler.cancel_for_firearm(glock.id))
        assert cancelled == 3
        assert capability.for_record(glock.id) == []
        assert sorted(capability.registered) == sorted(r.id for r in rifle_reminders)
        assert [e.record_id for e in asyncio.run(scheduler.get_schedule())] == [rifle.id]

    def test_cancel_unknown_record(self, scheduler):
        assert asyncio.run(scheduler.cancel_for_firearm("firearm_missing")) == 0

    def test_reschedule_all_isolates_failures(self, store):
        good = firearm_expiring_in(10)
        bad = firearm_expiring_in(20, title="Rejected")
        capability = FakeCapability(fail_for={bad.id})
        scheduler = NotificationScheduler(store, capability, clock=FixedClock())

        result = asyncio.run(scheduler.reschedule_all([bad, good]))
        assert result.failed == [bad.id]
        assert result.scheduled == 1
        assert result.reminders == 3
        assert len(capability.for_record(good.id)) == 3
        print(f"✓ One rejected record did not stop the batch: {result.model_dump()}")

    def test_reschedule_all_drops_removed_records(self, scheduler, capability):
        glock = firearm_expiring_in(10)
        rifle = firearm_expiring_in(40, title="Tikka T3x")
        asyncio.run(scheduler.reschedule_all([glock, rifle]))
        asyncio.run(scheduler.reschedule_all([rifle]))
        assert capability.for_record(glock.id) == []
        assert [e.record_id for e in asyncio.run(scheduler.get_schedule())] == [rifle.id]

    def test_rollback_when_schedule_cannot_be_saved(self, mock_db, capability):
        scheduler = NotificationScheduler(ScheduleSaveFails(mock_db), capability, clock=FixedClock())
        with pytest.raises(PersistenceError):
            asyncio.run(scheduler.schedule_for_firearm(firearm_expiring_in(10)))
        # Nothing registered that the schedule does not know about
        assert capability.registered == {}

    def test_registration_failing_midway_is_withdrawn(self, store):
        good = firearm_expiring_in(10)
        bad = firearm_expiring_in(200, title="Half Registered")
        capability = FakeCapability(fail_for={bad.id}, registered_before_failure=2)
        scheduler = NotificationScheduler(store, capability, clock=FixedClock())

        result = asyncio.run(scheduler.reschedule_all([bad, good]))
        assert result.failed == [bad.id]
        assert capability.for_record(bad.id) == []

        tracked = {i for e in asyncio.run(scheduler.get_schedule()) for i in e.reminder_ids}
        pending = set(asyncio.run(capability.list_pending()))
        assert pending <= tracked
        print(f"✓ Live reminders {sorted(pending)} are all tracked")

    def test_reconcile_honours_opt_out(self, scheduler, capability):
        glock = firearm_expiring_in(10)
        rifle = firearm_expiring_in(40, title="Tikka T3x")
        results = asyncio.run(scheduler.reconcile([glock, rifle], [], {glock.id: False}))
        assert results["firearms"].scheduled == 1
        assert capability.for_record(glock.id) == []
        assert capability.for_record(rifle.id)


class TestApplicationReminders:
    """schedule_application_notifications / cancel_application_reminder"""

    def test_threshold_and_timing(self, scheduler, capability):
        overdue = application_pending(95, ref="FA/95")
        nearly = application_pending(88, ref="FA/88")
        recent = application_pending(50, ref="FA/50")

        result = asyncio.run(scheduler.schedule_application_notifications([overdue, nearly, recent]))
        assert result.scheduled == 2
        assert capability.for_record(recent.id) == []

        [now_reminder] = capability.for_record(overdue.id)
        assert now_reminder.fire_at == NOW + IMMEDIATE_DELAY
        assert "95 working days" in now_reminder.body

        # 88 today, 89 tomorrow, 90 the working day after
        [later] = capability.for_record(nearly.id)
        assert later.fire_at == at_sast_hour(date(2025, 6, 4), 9)
        assert "90+ working days" in later.body
        print(f"✓ 88 working days -> reminder at {later.fire_at.astimezone(timezone.utc)}")

    def test_exactly_90_fires_now(self, scheduler, capability):
        application = application_pending(90)
        asyncio.run(scheduler.schedule_application_notifications([application]))
        [reminder] = capability.for_record(application.id)
        assert reminder.fire_at == NOW + IMMEDIATE_DELAY

    def test_full_replacement(self, scheduler, capability):
        applications = [application_pending(95, ref="A"), application_pending(89, ref="B")]
        asyncio.run(scheduler.schedule_application_notifications(applications))
        asyncio.run(scheduler.schedule_application_notifications(applications))
        assert len(capability.registered) == 2
        assert len(asyncio.run(scheduler.get_application_schedule())) == 2

        asyncio.run(scheduler.schedule_application_notifications(applications[:1]))
        assert capability.for_record(applications[1].id) == []

    def test_cancel_one_application(self, scheduler, capability):
        first, second = application_pending(95, ref="A"), application_pending(92, ref="B")
        asyncio.run(scheduler.schedule_application_notifications([first, second]))
        assert asyncio.run(scheduler.cancel_application_reminder(first.id)) == 1
        assert capability.for_record(first.id) == []
        assert len(capability.for_record(second.id)) == 1
        assert [e.record_id for e in asyncio.run(scheduler.get_application_schedule())] == [second.id]

    def test_application_failures_are_isolated(self, store):
        bad, good = application_pending(95, ref="A"), application_pending(96, ref="B")
        capability = FakeCapability(fail_for={bad.id})
        scheduler = NotificationScheduler(store, capability, clock=FixedClock())
        result = asyncio.run(scheduler.schedule_application_notifications([bad, good]))
        assert result.failed == [bad.id]
        assert len(capability.for_record(good.id)) == 1

    def test_application_registered_then_rejected_is_withdrawn(self, store):
        bad, good = application_pending(95, ref="A"), application_pending(96, ref="B")
        capability = FakeCapability(fail_for={bad.id}, registered_before_failure=1)
        scheduler = NotificationScheduler(store, capability, clock=FixedClock())

        result = asyncio.run(scheduler.schedule_application_notifications([bad, good]))
        assert result.failed == [bad.id]
        assert capability.for_record(bad.id) == []
        tracked = {i for e in asyncio.run(scheduler.get_application_schedule()) for i in e.reminder_ids}
        assert set(asyncio.run(capability.list_pending())) == tracked


class TestWebOnlyFallback:
    """Without a delivery channel every call is a harmless no-op"""

    def test_noop_capability(self, store):
        scheduler = NotificationScheduler(store, NoopNotificationCapability(), clock=FixedClock())
        assert asyncio.run(scheduler.schedule_for_firearm(firearm_expiring_in(10))) == []
        assert asyncio.run(scheduler.cancel_for_firearm("firearm_x")) == 0
        assert asyncio.run(scheduler.reschedule_all([firearm_expiring_in(10)])).skipped
        assert asyncio.run(scheduler.schedule_application_notifications([application_pending(95)])).skipped
        assert asyncio.run(scheduler.get_schedule()) == []
        print("✓ Web-only fallback schedules nothing and raises nothing")
