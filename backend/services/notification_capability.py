"""
Notification delivery capabilities.

The scheduler hands reminders to a capability and trusts it to deliver each
one, best effort, at its fire time. Without a delivery channel (the web-only
fallback) every call is a no-op.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional

from pymongo.errors import PyMongoError

from models import ScheduledReminder
from utils import config
from utils.database import db as default_db
from utils.errors import NotificationError
from utils.helpers import Clock, utc_now
from utils.push import PushGoneError, send_push

logger = logging.getLogger(__name__)

Sender = Callable[[dict, str, str, Optional[dict]], Awaitable[None]]


def _iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(microsecond=0).isoformat()


class NotificationCapability(ABC):
    """What the scheduler needs from a reminder delivery channel"""

    available = True

    @abstractmethod
    async def request_permission(self) -> bool:
        pass

    @abstractmethod
    async def schedule(self, reminders: List[ScheduledReminder]) -> None:
        pass

    @abstractmethod
    async def cancel(self, ids: List[int]) -> None:
        pass

    @abstractmethod
    async def list_pending(self) -> List[int]:
        pass

    async def pending_reminders(self) -> List[dict]:
        return []

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class NoopNotificationCapability(NotificationCapability):
    """Web-only fallback: reminders are not supported, nothing fails"""

    available = False

    async def request_permission(self) -> bool:
        logger.info("Notifications only work with a delivery channel configured")
        return False

    async def schedule(self, reminders: List[ScheduledReminder]) -> None:
        pass

    async def cancel(self, ids: List[int]) -> None:
        pass

    async def list_pending(self) -> List[int]:
        return []


class PushNotificationCapability(NotificationCapability):
    """
    Keeps pending reminders in MongoDB and pushes each one to the device's
    Web Push subscription when it falls due.
    """

    def __init__(
        self,
        database=None,
        sender: Sender = send_push,
        clock: Clock = utc_now,
        poll_seconds: int = None
    ):
        database = database if database is not None else default_db
        self.reminders = database["pending_reminders"]
        self.subscriptions = database["push_subscriptions"]
        self.sender = sender
        self.clock = clock
        self.poll_seconds = poll_seconds or config.REMINDER_POLL_SECONDS
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # ============== SUBSCRIPTIONS ==============

    async def subscribe(self, subscription: dict, subscription_id: str = "device") -> None:
        try:
            await self.subscriptions.update_one(
                {"subscription_id": subscription_id},
                {
                    "$set": {
                        "subscription_id": subscription_id,
                        "subscription": subscription,
                        "enabled": True,
                        "subscribed_at": datetime.now(timezone.utc).isoformat()
                    }
                },
                upsert=True
            )
        except PyMongoError as e:
            raise NotificationError(f"Failed to save push subscription: {e}") from e

    async def unsubscribe(self, subscription_id: str = "device") -> None:
        try:
            await self.subscriptions.update_one(
                {"subscription_id": subscription_id},
                {"$set": {"enabled": False}}
            )
        except PyMongoError as e:
            raise NotificationError(f"Failed to disable push subscription: {e}") from e

    async def request_permission(self) -> bool:
        """Granted once the device has an active push subscription"""
        try:
            return await self.subscriptions.count_documents({"enabled": True}) > 0
        except PyMongoError as e:
            logger.error(f"Failed to check push subscriptions: {e}")
            return False

    # ============== REMINDERS ==============

    async def schedule(self, reminders: List[ScheduledReminder]) -> None:
        try:
            for reminder in reminders:
                await self.reminders.update_one(
                    {"reminder_id": reminder.id},
                    {"$set": {
                        "reminder_id": reminder.id,
                        "title": reminder.title,
                        "body": reminder.body,
                        "fire_at": _iso(reminder.fire_at),
                        "extra": reminder.extra,
                    }},
                    upsert=True
                )
        except PyMongoError as e:
            raise NotificationError(f"Failed to register reminders: {e}") from e

    async def cancel(self, ids: List[int]) -> None:
        if not ids:
            return
        try:
            await self.reminders.delete_many({"reminder_id": {"$in": list(ids)}})
        except PyMongoError as e:
            raise NotificationError(f"Failed to cancel reminders: {e}") from e

    async def list_pending(self) -> List[int]:
        try:
            docs = await self.reminders.find({}, {"_id": 0, "reminder_id": 1}).to_list(10000)
        except PyMongoError as e:
            raise NotificationError(f"Failed to list pending reminders: {e}") from e
        return sorted(doc["reminder_id"] for doc in docs)

    async def pending_reminders(self) -> List[dict]:
        try:
            docs = await self.reminders.find({}, {"_id": 0}).to_list(10000)
        except PyMongoError as e:
            raise NotificationError(f"Failed to list pending reminders: {e}") from e
        return sorted(docs, key=lambda d: (d["fire_at"], d["reminder_id"]))

    async def dispatch_due(self, now: Optional[datetime] = None) -> int:
        """Deliver every reminder whose fire time has passed. Returns the number pushed."""
        now = now or self.clock()
        due = await self.reminders.find({"fire_at": {"$lte": _iso(now)}}, {"_id": 0}).to_list(1000)
        if not due:
            return 0

        # At most once: drop the reminders before attempting delivery
        await self.reminders.delete_many({"reminder_id": {"$in": [r["reminder_id"] for r in due]}})

        subscriptions = await self.subscriptions.find({"enabled": True}, {"_id": 0}).to_list(100)
        delivered = 0
        for reminder in due:
            for sub in subscriptions:
                try:
                    await self.sender(sub["subscription"], reminder["title"], reminder["body"], reminder.get("extra"))
                    delivered += 1
                except PushGoneError:
                    logger.warning(f"Push subscription {sub['subscription_id']} expired, disabling it")
                    await self.unsubscribe(sub["subscription_id"])
                except Exception as e:
                    logger.error(f"Push notification failed for reminder {reminder['reminder_id']}: {e}")
        logger.info(f"Dispatched {len(due)} due reminders ({delivered} pushes)")
        return delivered

    # ============== DELIVERY LOOP ==============

    async def _delivery_loop(self):
        while self._running:
            try:
                await self.dispatch_due()
            except Exception as e:
                logger.error(f"Reminder delivery error: {e}")
            await asyncio.sleep(self.poll_seconds)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._delivery_loop())
        logger.info(f"Reminder delivery loop started (every {self.poll_seconds}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            logger.info("Reminder delivery loop stopped")


def create_capability(mode: str = None, database=None, clock: Clock = utc_now) -> NotificationCapability:
    mode = (mode or config.NOTIFICATIONS_MODE).lower()
    if mode == "push":
        return PushNotificationCapability(database=database, clock=clock)
    logger.info(f"Notifications mode '{mode}': reminders disabled")
    return NoopNotificationCapability()
