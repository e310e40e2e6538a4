"""
Status lookup results. Never persisted.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class FirearmStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")
    application_type: str
    application_number: str
    calibre: str
    make: str
    status: str
    description: str
    next_step: str
    working_days_pending: int = 0
    is_overdue: bool = False


class StatusOutcome(str, Enum):
    OK = "ok"
    PLANNED_DOWNTIME = "planned_downtime"
    NO_MATCH = "no_match"
    SCHEMA_MISMATCH = "schema_mismatch"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"


class StatusLookupResult(BaseModel):
    success: bool
    outcome: StatusOutcome
    status: Optional[FirearmStatus] = None
    error: Optional[str] = None
    proxy: Optional[str] = None
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ServerStatus(BaseModel):
    """Result of a SAPS reachability probe"""
    online: Optional[bool] = None
    method: str = ""
    last_checked: Optional[datetime] = None
