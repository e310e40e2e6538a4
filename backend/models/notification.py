"""
Notification related models
"""
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict


class ScheduledReminder(BaseModel):
    """One reminder handed to the notification capability"""
    model_config = ConfigDict(extra="ignore")
    id: int
    title: str
    body: str
    fire_at: datetime
    extra: dict = {}


class ScheduleEntry(BaseModel):
    """Reminder ids tracked for one firearm or application"""
    model_config = ConfigDict(extra="ignore")
    record_id: str
    title: str
    reference_date: str
    reminder_ids: List[int] = []


class PushSubscription(BaseModel):
    model_config = ConfigDict(extra="ignore")
    subscription_id: str = "device"
    subscription: dict
    enabled: bool = True
    subscribed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class BatchResult(BaseModel):
    scheduled: int = 0
    failed: List[str] = []
    reminders: int = 0
    skipped: Optional[str] = None
