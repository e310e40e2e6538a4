"""
Firearm Licence Routes
CRUD for licence records; expiry reminders follow every change.
"""
import logging
from fastapi import APIRouter, Depends, Request

from models import SECTION_CATALOG, FirearmRecord
from utils.database import RecordStore
from utils.errors import ValidationError
from utils.helpers import get_scheduler, get_store, read_json, to_document
from utils.storage import (
    add_firearm, delete_firearm, forget_notification_setting, get_firearm,
    load_firearms, load_notification_settings, notifications_enabled,
    set_notifications_enabled, update_firearm
)
from services.notification_scheduler import NotificationScheduler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Firearms"])


def firearm_response(firearm: FirearmRecord, settings: dict) -> dict:
    return {
        **to_document(firearm),
        "section_label": firearm.section_label,
        "notifications_enabled": notifications_enabled(settings, firearm.id),
    }


async def _sync_reminders(scheduler: NotificationScheduler, firearm: FirearmRecord, enabled: bool) -> dict:
    """Bring the firearm's reminders in line with the saved record. Never fails the request."""
    try:
        if enabled:
            reminders = await scheduler.schedule_for_firearm(firearm)
            return {"notifications_scheduled": True, "reminders": len(reminders)}
        await scheduler.cancel_for_firearm(firearm.id)
        return {"notifications_scheduled": True, "reminders": 0}
    except Exception as e:
        logger.error(f"Failed to update notifications for {firearm.id}: {e}")
        return {"notifications_scheduled": False, "reminders": 0}


@router.get("/firearms/sections")
async def list_sections():
    """Licence sections and how long each stays valid"""
    return {"sections": [section.model_dump() for section in SECTION_CATALOG.values()]}


@router.get("/firearms")
async def list_firearms(store: RecordStore = Depends(get_store)):
    firearms = await load_firearms(store)
    settings = await load_notification_settings(store)
    firearms.sort(key=lambda f: f.expiry_date)
    return {"firearms": [firearm_response(f, settings) for f in firearms], "total": len(firearms)}


@router.post("/firearms")
async def create_firearm(
    request: Request,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler)
):
    body = await read_json(request)
    firearm = await add_firearm(store, body)
    sync = await _sync_reminders(scheduler, firearm, enabled=True)
    return {"firearm": firearm_response(firearm, {}), **sync}


@router.get("/firearms/{firearm_id}")
async def read_firearm(firearm_id: str, store: RecordStore = Depends(get_store)):
    firearm = await get_firearm(store, firearm_id)
    return firearm_response(firearm, await load_notification_settings(store))


@router.put("/firearms/{firearm_id}")
async def edit_firearm(
    firearm_id: str,
    request: Request,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler)
):
    body = await read_json(request)
    firearm = await update_firearm(store, firearm_id, body)
    settings = await load_notification_settings(store)
    sync = await _sync_reminders(scheduler, firearm, notifications_enabled(settings, firearm.id))
    return {"firearm": firearm_response(firearm, settings), **sync}


@router.delete("/firearms/{firearm_id}")
async def remove_firearm(
    firearm_id: str,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler)
):
    firearm = await delete_firearm(store, firearm_id)
    await forget_notification_setting(store, firearm_id)
    sync = await _sync_reminders(scheduler, firearm, enabled=False)
    return {"message": f"Deleted {firearm.title}", "id": firearm_id, **sync}


@router.put("/firearms/{firearm_id}/notifications")
async def toggle_firearm_notifications(
    firearm_id: str,
    request: Request,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler)
):
    """Opt a single licence in or out of expiry reminders"""
    body = await read_json(request)
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        raise ValidationError("'enabled' must be true or false")

    firearm = await get_firearm(store, firearm_id)
    settings = await set_notifications_enabled(store, firearm_id, enabled)
    sync = await _sync_reminders(scheduler, firearm, enabled)
    logger.info(f"Notifications {'enabled' if enabled else 'disabled'} for {firearm.title}")
    return {"firearm": firearm_response(firearm, settings), **sync}
