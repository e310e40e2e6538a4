"""
Reminder scheduling for licence expiry and overdue applications.

The persisted schedule maps each record to the reminder ids registered with
the notification capability. It is a cache derived from the records: every
mutation cancels a record's old reminders before registering new ones, and
reconcile() rebuilds the whole thing from scratch.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Tuple

from models import (
    BatchResult, FirearmApplication, FirearmRecord, ScheduleEntry, ScheduledReminder, SLA_WORKING_DAYS
)
from utils import config
from utils.database import (
    RecordStore, FIREARM_SCHEDULE_KEY, APPLICATION_SCHEDULE_KEY, NOTIFICATION_COUNTER_KEY
)
from utils.errors import PersistenceError
from utils.helpers import Clock, to_document, utc_now
from utils.storage import notifications_enabled
from utils.holidays import at_sast_hour, date_reaching_working_days, sast_today, working_days_between

from .notification_capability import NotificationCapability

logger = logging.getLogger(__name__)

# Days before expiry at which the owner is reminded
FIREARM_OFFSETS = (365, 180, 90, 60, 30, 14, 7, 3, 1)

# Reminder ids start above this so they never collide with other id spaces
NOTIFICATION_ID_FLOOR = 1000

# Applications this close to the SLA get a reminder
APPLICATION_ALERT_THRESHOLD = 88

IMMEDIATE_DELAY = timedelta(minutes=1)
TEST_DELAY = timedelta(seconds=10)


def firearm_reminder_text(title: str, expiry: date, days: int) -> Tuple[str, str, str]:
    """(title, body, severity) with tone escalating as expiry approaches"""
    expiry_str = expiry.isoformat()
    if days >= 365:
        return (
            "Firearm License Expiry - 1 Year Notice",
            f"{title} expires in 1 year ({expiry_str}). Consider starting renewal process.",
            "notice",
        )
    if days >= 90:
        return (
            f"Firearm License Expiry - {days} Days",
            f"{title} expires in {days} days ({expiry_str}). Time to start renewal.",
            "notice",
        )
    if days >= 30:
        return (
            f"Firearm License Expiry - {days} Days",
            f"{title} expires in {days} days ({expiry_str}). Renewal required!",
            "renewal_required",
        )
    if days >= 7:
        return (
            f"URGENT: Firearm License Expiry - {days} Days",
            f"{title} expires in {days} days ({expiry_str}). Renewal URGENT!",
            "urgent",
        )
    when = "tomorrow" if days == 1 else f"in {days} days"
    return (
        f"CRITICAL: Firearm License Expiry - {days} Day{'s' if days != 1 else ''}",
        f"{title} expires {when} ({expiry_str}). IMMEDIATE ACTION REQUIRED!",
        "critical",
    )


def plan_firearm_reminders(expiry: date, now: datetime, hour: int) -> List[Tuple[int, datetime]]:
    """(days before expiry, fire time) for every offset still in the future"""
    plan = []
    for days in FIREARM_OFFSETS:
        fire_at = at_sast_hour(expiry - timedelta(days=days), hour)
        if fire_at > now:
            plan.append((days, fire_at))
    return plan


class NotificationScheduler:
    def __init__(
        self,
        store: RecordStore,
        capability: NotificationCapability,
        clock: Clock = utc_now,
        reminder_hour: int = None
    ):
        self.store = store
        self.capability = capability
        self.clock = clock
        self.reminder_hour = config.REMINDER_HOUR_SAST if reminder_hour is None else reminder_hour
        # Serializes cancel-then-schedule so a record never has two live reminder sets
        self._lock = asyncio.Lock()

    # ============== PERSISTED SCHEDULE ==============

    async def _next_ids(self, count: int) -> List[int]:
        """Fresh ids from the persisted high-water mark"""
        high = await self.store.increment(NOTIFICATION_COUNTER_KEY, count)
        return [NOTIFICATION_ID_FLOOR + n for n in range(high - count + 1, high + 1)]

    async def _load_entries(self, key: str) -> List[ScheduleEntry]:
        return [ScheduleEntry.model_validate(doc) for doc in await self.store.load(key)]

    async def _save_entries(self, key: str, entries: List[ScheduleEntry]) -> None:
        await self.store.save(key, [to_document(e) for e in entries])

    async def get_schedule(self) -> List[ScheduleEntry]:
        return await self._load_entries(FIREARM_SCHEDULE_KEY)

    async def get_application_schedule(self) -> List[ScheduleEntry]:
        return await self._load_entries(APPLICATION_SCHEDULE_KEY)

    async def _rollback(self, ids: List[int]) -> None:
        """Withdraw reminders that were registered but could not be tracked"""
        try:
            await self.capability.cancel(ids)
        except Exception as e:
            logger.error(f"Failed to withdraw untracked reminders {ids}: {e}")

    # ============== FIREARMS ==============

    async def _cancel_firearm(self, firearm_id: str) -> int:
        entries = await self._load_entries(FIREARM_SCHEDULE_KEY)
        entry = next((e for e in entries if e.record_id == firearm_id), None)
        if entry is None:
            return 0
        await self.capability.cancel(entry.reminder_ids)
        await self._save_entries(FIREARM_SCHEDULE_KEY, [e for e in entries if e.record_id != firearm_id])
        logger.info(f"Cancelled {len(entry.reminder_ids)} notifications for {entry.title}")
        return len(entry.reminder_ids)

    async def _schedule_firearm(self, firearm: FirearmRecord) -> List[ScheduledReminder]:
        await self._cancel_firearm(firearm.id)

        plan = plan_firearm_reminders(firearm.expiry_date, self.clock(), self.reminder_hour)
        if not plan:
            logger.info(f"No future reminders for {firearm.title} (expires {firearm.expiry_date})")
            return []

        ids = await self._next_ids(len(plan))
        reminders = []
        for reminder_id, (days, fire_at) in zip(ids, plan):
            title, body, severity = firearm_reminder_text(firearm.title, firearm.expiry_date, days)
            reminders.append(ScheduledReminder(
                id=reminder_id,
                title=title,
                body=body,
                fire_at=fire_at,
                extra={"firearm_id": firearm.id, "days_to_expiry": days, "severity": severity}
            ))
        try:
            await self.capability.schedule(reminders)
        except Exception:
            # Registration may have stopped partway
            await self._rollback(ids)
            raise

        entries =[e for e in await self._load_entries(FIREARM_SCHEDULE_KEY) if e.record_id != firearm.id]
        entries.append(ScheduleEntry(
            record_id=firearm.id,
            title=firearm.title,
            reference_date=firearm.expiry_date.isoformat(),
            reminder_ids=ids
        ))
        try:
            await self._save_entries(FIREARM_SCHEDULE_KEY, entries)
        except PersistenceError:
            await self._rollback(ids)
            raise

        logger.info(f"Scheduled {len(reminders)} notifications for {firearm.title}")
        return reminders

    async def schedule_for_firearm(self, firearm: FirearmRecord) -> List[ScheduledReminder]:
        """Replace the firearm's reminders with one per expiry offset still ahead"""
        if not self.capability.available:
            return []
        async with self._lock:
            return await self._schedule_firearm(firearm)

    async def cancel_for_firearm(self, firearm_id: str) -> int:
        """Remove this firearm's reminders only. Returns how many were cancelled."""
        if not self.capability.available:
            return 0
        async with self._lock:
            return await self._cancel_firearm(firearm_id)

    async def _cancel_all_firearms(self) -> int:
        entries = await self._load_entries(FIREARM_SCHEDULE_KEY)
        ids = [i for e in entries for i in e.reminder_ids]
        await self.capability.cancel(ids)
        await self._save_entries(FIREARM_SCHEDULE_KEY, [])
        logger.info(f"Cancelled {len(ids)} notifications")
        return len(ids)

    async def reschedule_all(self, firearms: Iterable[FirearmRecord]) -> BatchResult:
        """Cancel every tracked firearm reminder, then schedule each firearm afresh"""
        if not self.capability.available:
            return BatchResult(skipped="notifications unavailable")

        logger.info("Rescheduling all firearm notifications...")
        result = BatchResult()
        async with self._lock:
            await self._cancel_all_firearms()
            for firearm in firearms:
                try:
                    reminders = await self._schedule_firearm(firearm)
                    result.scheduled += 1
                    result.reminders += len(reminders)
                except Exception as e:
                    logger.error(f"Failed to schedule notifications for {firearm.id}: {e}")
                    result.failed.append(firearm.id)
        return result

    # ============== APPLICATIONS ==============

    async def _cancel_all_applications(self) -> None:
        entries = await self._load_entries(APPLICATION_SCHEDULE_KEY)
        ids = [i for e in entries for i in e.reminder_ids]
        await self.capability.cancel(ids)
        await self._save_entries(APPLICATION_SCHEDULE_KEY, [])
        logger.info(f"Cancelled {len(ids)} application notifications")

    def _application_fire_time(self, application: FirearmApplication, pending: int, now: datetime) -> datetime:
        if pending >= SLA_WORKING_DAYS:
            return now + IMMEDIATE_DELAY
        crossing = date_reaching_working_days(application.date_applied, SLA_WORKING_DAYS)
        fire_at = at_sast_hour(crossing, self.reminder_hour)
        return fire_at if fire_at > now else now + IMMEDIATE_DELAY

    async def schedule_application_notifications(self, applications: Iterable[FirearmApplication]) -> BatchResult:
        """
        Rebuild every application reminder. Working days pending moves with
        the calendar, so nothing from the previous schedule is kept.
        """
        if not self.capability.available:
            return BatchResult(skipped="notifications unavailable")

        result = BatchResult()
        async with self._lock:
            await self._cancel_all_applications()

            now = self.clock()
            today = sast_today(now)
            entries: List[ScheduleEntry] = []
            for application in applications:
                try:
                    pending = working_days_pending(application, today)
                    if pending < APPLICATION_ALERT_THRESHOLD:
                        continue

                    days_text = f"{pending} working days" if pending >= SLA_WORKING_DAYS else "90+ working days"
                    [reminder_id] = await self._next_ids(1)
                    reminder = ScheduledReminder(
                        id=reminder_id,
                        title="Application Pending Alert",
                        body=(
                            f"Your firearm application {application.reference} has been pending for "
                            f"{days_text}. Consider following up with SAPS."
                        ),
                        fire_at=self._application_fire_time(application, pending, now),
                        extra={"application_id": application.id, "type": "application_pending", "working_days": pending}
                    )
                    try:
                        await self.capability.schedule([reminder])
                    except Exception:
                        await self._rollback([reminder_id])
                        raise
                    entries.append(ScheduleEntry(
                        record_id=application.id,
                        title=application.reference,
                        reference_date=application.date_applied.isoformat(),
                        reminder_ids=[reminder_id]
                    ))
                    result.scheduled += 1
                    result.reminders += 1
                except Exception as e:
                    logger.error(f"Failed to schedule application notification for {application.id}: {e}")
                    result.failed.append(application.id)

            try:
                await self._save_entries(APPLICATION_SCHEDULE_KEY, entries)
            except PersistenceError:
                await self._rollback([i for e in entries for i in e.reminder_ids])
                raise

        if result.reminders:
            logger.info(f"Scheduled {result.reminders} application pending notifications")
        return result

    async def cancel_application_reminder(self, application_id: str) -> int:
        if not self.capability.available:
            return 0
        async with self._lock:
            entries = await self._load_entries(APPLICATION_SCHEDULE_KEY)
            entry = next((e for e in entries if e.record_id == application_id), None)
            if entry is None:
                return 0
            await self.capability.cancel(entry.reminder_ids)
            await self._save_entries(APPLICATION_SCHEDULE_KEY, [e for e in entries if e.record_id != application_id])
            logger.info(f"Cancelled application notification for {entry.title}")
            return len(entry.reminder_ids)

    # ============== MAINTENANCE ==============

    async def reconcile(
        self,
        firearms: Iterable[FirearmRecord],
        applications: Iterable[FirearmApplication],
        settings: Dict[str, bool]
    ) -> Dict[str, BatchResult]:
        """Rebuild both schedules from the records, honouring per-record opt-outs"""
        return {
            "firearms": await self.reschedule_all(
                [f for f in firearms if notifications_enabled(settings, f.id)]
            ),
            "applications": await self.schedule_application_notifications(
                [a for a in applications if notifications_enabled(settings, a.id)]
            ),
        }

    async def schedule_test_notification(self) -> ScheduledReminder:
        [reminder_id] = await self._next_ids(1)
        reminder = ScheduledReminder(
            id=reminder_id,
            title="Test Notification",
            body="If you see this, notifications are working correctly!",
            fire_at=self.clock() + TEST_DELAY,
            extra={"type": "test"}
        )
        await self.capability.schedule([reminder])
        logger.info("Test notification scheduled for 10 seconds from now")
        return reminder


def working_days_pending(application: FirearmApplication, today: date) -> int:
    return working_days_between(application.date_applied, today)
