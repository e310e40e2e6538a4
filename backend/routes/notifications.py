"""
Notification Routes
Reminder schedules, device permission and the Web Push subscription.
"""
import logging
from fastapi import APIRouter, Depends, Request

from utils.database import RecordStore
from utils.errors import NotificationsUnavailableError, ValidationError
from utils.helpers import get_capability, get_scheduler, get_store, read_json, to_document
from utils.push import get_vapid_keys
from utils.storage import load_applications, load_firearms, load_notification_settings
from services.notification_capability import NotificationCapability, PushNotificationCapability
from services.notification_scheduler import NotificationScheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"])


def _push_capability(capability: NotificationCapability) -> PushNotificationCapability:
    if not isinstance(capability, PushNotificationCapability):
        raise NotificationsUnavailableError("Push notifications are not enabled on this server")
    return capability


# ============== REMINDERS ==============

@router.get("/notifications/schedule")
async def get_schedule(scheduler: NotificationScheduler = Depends(get_scheduler)):
    """Which reminder ids are tracked for each firearm and application"""
    firearms = await scheduler.get_schedule()
    applications = await scheduler.get_application_schedule()
    return {
        "available": scheduler.capability.available,
        "firearms": [to_document(e) for e in firearms],
        "applications": [to_document(e) for e in applications],
    }


@router.get("/notifications/pending")
async def get_pending(capability: NotificationCapability = Depends(get_capability)):
    pending = await capability.pending_reminders()
    return {
        "available": capability.available,
        "pending_ids": await capability.list_pending(),
        "reminders": pending,
        "total": len(pending),
    }


@router.post("/notifications/reschedule")
async def reschedule_notifications(
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler)
):
    """Rebuild every reminder from the stored records"""
    results = await scheduler.reconcile(
        await load_firearms(store),
        await load_applications(store),
        await load_notification_settings(store)
    )
    return {name: result.model_dump() for name, result in results.items()}


@router.post("/notifications/permission")
async def request_permission(capability: NotificationCapability = Depends(get_capability)):
    granted = await capability.request_permission()
    return {"granted": granted, "available": capability.available}


@router.post("/notifications/test")
async def send_test_notification(scheduler: NotificationScheduler = Depends(get_scheduler)):
    if not scheduler.capability.available:
        raise NotificationsUnavailableError("Notifications only work with a delivery channel configured")
    reminder = await scheduler.schedule_test_notification()
    return {"message": "Test notification scheduled", "reminder": to_document(reminder)}


@router.get("/notifications/settings")
async def get_settings(store: RecordStore = Depends(get_store)):
    """Per-record opt-outs. Records not listed have reminders enabled."""
    return {"settings": await load_notification_settings(store)}


# ============== VAPID / WEB PUSH ==============

@router.get("/push/vapid-public-key")
async def get_vapid_public_key(capability: NotificationCapability = Depends(get_capability)):
    """Get the VAPID public key for push notification subscription"""
    _push_capability(capability)
    _, public_key = get_vapid_keys()
    return {"publicKey": public_key}


@router.post("/push/subscribe")
async def subscribe_to_push(request: Request, capability: NotificationCapability = Depends(get_capability)):
    """Register this device's push subscription"""
    push = _push_capability(capability)
    body = await read_json(request)
    subscription = body.get("subscription")
    if not isinstance(subscription, dict) or not subscription.get("endpoint"):
        raise ValidationError("Subscription object required")

    await push.subscribe(subscription)
    logger.info("Push subscription registered")
    return {"message": "Subscribed to push notifications"}


@router.post("/push/unsubscribe")
async def unsubscribe_from_push(capability: NotificationCapability = Depends(get_capability)):
    push = _push_capability(capability)
    await push.unsubscribe()
    return {"message": "Unsubscribed from push notifications"}
