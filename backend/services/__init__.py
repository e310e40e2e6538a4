"""
Backend services - status lookups, reminder scheduling and background monitors
"""
from .status_fetcher import StatusFetcher, ProxyTransport, DEFAULT_PROXIES
from .notification_capability import (
    NotificationCapability, NoopNotificationCapability, PushNotificationCapability, create_capability
)
from .notification_scheduler import NotificationScheduler
from .server_monitor import ServerStatusMonitor, probe_server_status
