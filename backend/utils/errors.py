"""
Error kinds raised by the tracker. Route handlers never see these as
unhandled faults: server.py maps each kind to a JSON response.
"""
from typing import List, Optional


class TrackerError(Exception):
    """Base class for every error the tracker reports to the user"""
    kind = "error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TrackerError):
    """Bad form input"""
    kind = "validation"
    status_code = 422

    def __init__(self, message: str, errors: Optional[List[dict]] = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateRecordError(TrackerError):
    kind = "duplicate"
    status_code = 409


class RecordNotFoundError(TrackerError):
    kind = "not_found"
    status_code = 404


class PersistenceError(TrackerError):
    """Storage write failure"""
    kind = "persistence"
    status_code = 500


class FetchError(TrackerError):
    """Every proxy failed. Carries the last underlying cause."""
    kind = "network_error"
    status_code = 502

    def __init__(self, message: str, last_error: Optional[Exception] = None, attempted: Optional[List[str]] = None):
        super().__init__(message)
        self.last_error = last_error
        self.attempted = attempted or []


class FetchTimeoutError(FetchError):
    kind = "timeout"
    status_code = 504


class FetchNetworkError(FetchError):
    kind = "network_error"
    status_code = 502


class SchemaMismatchError(TrackerError):
    """The status page no longer looks the way the parser expects"""
    kind = "schema_mismatch"
    status_code = 502


class NoMatchFoundError(TrackerError):
    kind = "no_match"
    status_code = 404


class PlannedDowntimeError(TrackerError):
    """SAPS maintenance window (00:00-00:30 SAST)"""
    kind = "planned_downtime"
    status_code = 503


class NotificationError(TrackerError):
    """Reminder registration or cancellation rejected"""
    kind = "notification"
    status_code = 500


class NotificationsUnavailableError(NotificationError):
    """No delivery channel is configured (web-only fallback)"""
    kind = "notifications_unavailable"
    status_code = 503
