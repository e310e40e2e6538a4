"""
Firearm Application Routes
Pending licence applications, SAPS status lookups and the 90 working day SLA.
"""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Request

from models import FirearmApplication, SLA_WORKING_DAYS
from utils.database import RecordStore
from utils.errors import ValidationError
from utils.helpers import Clock, get_clock, get_fetcher, get_scheduler, get_store, read_json, to_document
from utils.holidays import sast_today, working_days_between
from utils.storage import (
    add_application, delete_application, forget_notification_setting, get_application,
    load_applications, load_notification_settings, notifications_enabled,
    set_notifications_enabled, update_application
)
from services.notification_scheduler import APPLICATION_ALERT_THRESHOLD, NotificationScheduler
from services.status_fetcher import StatusFetcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Applications"])


def application_response(application: FirearmApplication, today: date, settings: dict) -> dict:
    pending = working_days_between(application.date_applied, today)
    return {
        **to_document(application),
        "reference": application.reference,
        "working_days_pending": pending,
        "is_overdue": pending > SLA_WORKING_DAYS,
        "notifications_enabled": notifications_enabled(settings, application.id),
    }


async def _resync_reminders(store: RecordStore, scheduler: NotificationScheduler) -> dict:
    """
    Application reminders depend on every pending application at once, so any
    change rebuilds the whole set. Failures are reported, not raised.
    """
    try:
        settings = await load_notification_settings(store)
        applications = [a for a in await load_applications(store) if notifications_enabled(settings, a.id)]
        result = await scheduler.schedule_application_notifications(applications)
        return {"notifications_scheduled": not result.failed, "reminders": result.reminders}
    except Exception as e:
        logger.error(f"Failed to reschedule application notifications: {e}")
        return {"notifications_scheduled": False, "reminders": 0}


@router.get("/applications")
async def list_applications(
    search: Optional[str] = None,
    applied_from: Optional[date] = None,
    applied_to: Optional[date] = None,
    min_cost: Optional[float] = None,
    max_cost: Optional[float] = None,
    min_days: Optional[int] = None,
    max_days: Optional[int] = None,
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock)
):
    """Applications oldest first, optionally narrowed by reference, date, cost and days pending"""
    today = sast_today(clock())
    applications = await load_applications(store)
    settings = await load_notification_settings(store)
    applications.sort(key=lambda a: a.date_applied)

    if search:
        applications = [a for a in applications if search.lower() in a.reference.lower()]
    if applied_from:
        applications = [a for a in applications if a.date_applied >= applied_from]
    if applied_to:
        applications = [a for a in applications if a.date_applied <= applied_to]
    # Missing cost counts as zero
    if min_cost is not None:
        applications = [a for a in applications if (a.cost or 0) >= min_cost]
    if max_cost is not None:
        applications = [a for a in applications if (a.cost or 0) <= max_cost]

    results = [application_response(a, today, settings) for a in applications]
    if min_days is not None:
        results = [r for r in results if r["working_days_pending"] >= min_days]
    if max_days is not None:
        results = [r for r in results if r["working_days_pending"] <= max_days]
    return {"applications": results, "total": len(results)}


@router.get("/applications/summary")
async def applications_summary(store: RecordStore = Depends(get_store), clock: Clock = Depends(get_clock)):
    """Totals for the dashboard: how many, how long, and what they cost"""
    today = sast_today(clock())
    applications = await load_applications(store)
    pending = [working_days_between(a.date_applied, today) for a in applications]
    costs = [a.cost for a in applications if a.cost is not None]
    return {
        "total": len(applications),
        "overdue": sum(1 for days in pending if days > SLA_WORKING_DAYS),
        "approaching_sla": sum(1 for days in pending if APPLICATION_ALERT_THRESHOLD <= days <= SLA_WORKING_DAYS),
        "longest_pending_days": max(pending, default=0),
        "average_pending_days": round(sum(pending) / len(pending), 1) if pending else 0,
        "total_cost": round(sum(costs), 2),
        "sla_working_days": SLA_WORKING_DAYS,
    }


@router.post("/applications")
async def create_application(
    request: Request,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler),
    clock: Clock = Depends(get_clock)
):
    body = await read_json(request)
    today = sast_today(clock())
    application = await add_application(store, body, today=today)
    sync = await _resync_reminders(store, scheduler)
    return {"application": application_response(application, today, {}), **sync}


@router.get("/applications/{application_id}")
async def read_application(
    application_id: str,
    store: RecordStore = Depends(get_store),
    clock: Clock = Depends(get_clock)
):
    application = await get_application(store, application_id)
    settings = await load_notification_settings(store)
    return application_response(application, sast_today(clock()), settings)


@router.put("/applications/{application_id}")
async def edit_application(
    application_id: str,
    request: Request,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler),
    clock: Clock = Depends(get_clock)
):
    body = await read_json(request)
    today = sast_today(clock())
    application = await update_application(store, application_id, body, today=today)
    sync = await _resync_reminders(store, scheduler)
    settings = await load_notification_settings(store)
    return {"application": application_response(application, today, settings), **sync}


@router.delete("/applications/{application_id}")
async def remove_application(
    application_id: str,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler)
):
    application = await delete_application(store, application_id)
    await forget_notification_setting(store, application_id)
    try:
        await scheduler.cancel_application_reminder(application_id)
    except Exception as e:
        logger.error(f"Failed to cancel notification for {application_id}: {e}")
    sync = await _resync_reminders(store, scheduler)
    return {"message": f"Deleted application {application.reference}", "id": application_id, **sync}


@router.put("/applications/{application_id}/notifications")
async def toggle_application_notifications(
    application_id: str,
    request: Request,
    store: RecordStore = Depends(get_store),
    scheduler: NotificationScheduler = Depends(get_scheduler),
    clock: Clock = Depends(get_clock)
):
    body = await read_json(request)
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        raise ValidationError("'enabled' must be true or false")

    application = await get_application(store, application_id)
    settings = await set_notifications_enabled(store, application_id, enabled)
    sync = await _resync_reminders(store, scheduler)
    return {"application": application_response(application, sast_today(clock()), settings), **sync}


@router.get("/applications/{application_id}/status")
async def check_status(
    application_id: str,
    store: RecordStore = Depends(get_store),
    fetcher: StatusFetcher = Depends(get_fetcher)
):
    """Look the application up on the SAPS enquiry page"""
    application = await get_application(store, application_id)
    result = await fetcher.check_application_status(application)
    return result.model_dump(mode="json")
