"""
Backend models - export all models for easy importing
"""
from .firearm import (
    LicenseSection, SECTION_CATALOG, compute_expiry, FirearmForm, FirearmRecord
)
from .application import (
    SearchMethod, SEARCH_FIELDS, is_valid_sa_id, ApplicationForm, FirearmApplication
)
from .status import (
    FirearmStatus, StatusOutcome, StatusLookupResult, ServerStatus
)
from .notification import (
    ScheduledReminder, ScheduleEntry, PushSubscription, BatchResult
)

# SLA for SAPS to decide an application, in working days
SLA_WORKING_DAYS = 90
