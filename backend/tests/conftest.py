"""
Shared fixtures: an in-memory MongoDB, a controllable clock and an in-memory
notification capability.
"""
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Set

import pytest
from mongomock_motor import AsyncMongoMockClient

from models import ScheduledReminder
from services.notification_capability import NotificationCapability
from utils.database import RecordStore
from utils.errors import NotificationError
from utils.holidays import is_working_day

# Monday 2 June 2025, 10:00 SAST
NOW = datetime(2025, 6, 2, 8, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock the tests can move"""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeCapability(NotificationCapability):
    """
    Keeps registered reminders in a dict; can be told to reject some records.
    With registered_before_failure set, a rejected batch keeps that many
    reminders live before raising, like a store that fails mid-write.
    """

    def __init__(self, fail_for: Set[str] = None, registered_before_failure: int = 0):
        self.registered: Dict[int, ScheduledReminder] = {}
        self.fail_for = fail_for or set()
        self.registered_before_failure = registered_before_failure
        self.granted = True

    async def request_permission(self) -> bool:
        return self.granted

    async def schedule(self, reminders: List[ScheduledReminder]) -> None:
        for reminder in reminders:
            record_id = reminder.extra.get("firearm_id") or reminder.extra.get("application_id")
            if record_id in self.fail_for:
                for partial in reminders[:self.registered_before_failure]:
                    self.registered[partial.id] = partial
                raise NotificationError(f"Registration rejected for {record_id}")
        for reminder in reminders:
            self.registered[reminder.id] = reminder

    async def cancel(self, ids: List[int]) -> None:
        for reminder_id in ids:
            self.registered.pop(reminder_id, None)

    async def list_pending(self) -> List[int]:
        return sorted(self.registered)

    def for_record(self, record_id: str) -> List[ScheduledReminder]:
        return [
            r for r in self.registered.values()
            if record_id in (r.extra.get("firearm_id"), r.extra.get("application_id"))
        ]


def applied_working_days_ago(today: date, working_days: int) -> date:
    """A working day d with working_days_between(d, today) == working_days"""
    day = today
    count = 0
    while True:
        if is_working_day(day):
            count += 1
            if count == working_days:
                return day
        day -= timedelta(days=1)


@pytest.fixture
def mock_db():
    return AsyncMongoMockClient()["firearm_tracker_test"]


@pytest.fixture
def store(mock_db):
    return RecordStore(mock_db)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def capability():
    return FakeCapability()
