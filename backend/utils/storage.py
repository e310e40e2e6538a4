"""
Record store CRUD for firearms, applications and notification settings.

Every operation is load-mutate-save against a single key; access is assumed
to be sequential within one process.
"""
import logging
from datetime import date
from typing import Dict, List, Optional

from models import ApplicationForm, FirearmApplication, FirearmForm, FirearmRecord

from .database import (
    RecordStore, FIREARMS_KEY, APPLICATIONS_KEY, NOTIFICATION_SETTINGS_KEY
)
from .errors import DuplicateRecordError, RecordNotFoundError
from .helpers import parse_form, to_document

logger = logging.getLogger(__name__)


# ============== FIREARM RECORDS ==============

async def load_firearms(store: RecordStore) -> List[FirearmRecord]:
    return [FirearmRecord.model_validate(doc) for doc in await store.load(FIREARMS_KEY)]


async def get_firearm(store: RecordStore, firearm_id: str) -> FirearmRecord:
    for firearm in await load_firearms(store):
        if firearm.id == firearm_id:
            return firearm
    raise RecordNotFoundError(f"Firearm {firearm_id} not found")


def _check_firearm_duplicate(firearms: List[FirearmRecord], form: FirearmForm, exclude_id: Optional[str] = None):
    for existing in firearms:
        if existing.id != exclude_id and existing.is_duplicate_of(form):
            raise DuplicateRecordError("A firearm with this title and serial number already exists")


async def add_firearm(store: RecordStore, data: dict) -> FirearmRecord:
    form = parse_form(FirearmForm, data)
    firearms = await load_firearms(store)
    _check_firearm_duplicate(firearms, form)

    firearm = FirearmRecord(**form.model_dump())
    firearms.append(firearm)
    await store.save(FIREARMS_KEY, [to_document(f) for f in firearms])
    logger.info(f"Added firearm {firearm.id} ({firearm.title}), expires {firearm.expiry_date}")
    return firearm


async def update_firearm(store: RecordStore, firearm_id: str, updates: dict) -> FirearmRecord:
    """Apply edits; expiry is recomputed from the (possibly new) issue date and section"""
    firearms = await load_firearms(store)
    index = next((i for i, f in enumerate(firearms) if f.id == firearm_id), None)
    if index is None:
        raise RecordNotFoundError(f"Firearm {firearm_id} not found")

    existing = firearms[index]
    merged = {**to_document(existing), **updates}
    form = parse_form(FirearmForm, merged)
    _check_firearm_duplicate(firearms, form, exclude_id=firearm_id)

    updated = FirearmRecord(**form.model_dump(), id=existing.id, created_at=existing.created_at)
    firearms[index] = updated
    await store.save(FIREARMS_KEY, [to_document(f) for f in firearms])
    logger.info(f"Updated firearm {firearm_id}, expires {updated.expiry_date}")
    return updated


async def delete_firearm(store: RecordStore, firearm_id: str) -> FirearmRecord:
    firearms = await load_firearms(store)
    remaining = [f for f in firearms if f.id != firearm_id]
    if len(remaining) == len(firearms):
        raise RecordNotFoundError(f"Firearm {firearm_id} not found")
    deleted = next(f for f in firearms if f.id == firearm_id)
    await store.save(FIREARMS_KEY, [to_document(f) for f in remaining])
    logger.info(f"Deleted firearm {firearm_id}")
    return deleted


# ============== APPLICATIONS ==============

async def load_applications(store: RecordStore) -> List[FirearmApplication]:
    # Stored dates were validated on entry; don't re-run the future-date check against today
    return [
        FirearmApplication.model_validate(doc, context={"today": date.max})
        for doc in await store.load(APPLICATIONS_KEY)
    ]


async def get_application(store: RecordStore, application_id: str) -> FirearmApplication:
    for application in await load_applications(store):
        if application.id == application_id:
            return application
    raise RecordNotFoundError(f"Application {application_id} not found")


def _check_application_duplicate(applications: List[FirearmApplication], form: ApplicationForm, exclude_id: Optional[str] = None):
    for existing in applications:
        if existing.id != exclude_id and existing.is_duplicate_of(form):
            raise DuplicateRecordError("An application with these details already exists")


async def add_application(store: RecordStore, data: dict, today: Optional[date] = None) -> FirearmApplication:
    form = parse_form(ApplicationForm, data, context={"today": today} if today else None)
    applications = await load_applications(store)
    _check_application_duplicate(applications, form)

    application = FirearmApplication(**form.model_dump())
    applications.append(application)
    await store.save(APPLICATIONS_KEY, [to_document(a) for a in applications])
    logger.info(f"Added application {application.id} ({application.search_method.value})")
    return application


async def update_application(store: RecordStore, application_id: str, updates: dict, today: Optional[date] = None) -> FirearmApplication:
    applications = await load_applications(store)
    index = next((i for i, a in enumerate(applications) if a.id == application_id), None)
    if index is None:
        raise RecordNotFoundError(f"Application {application_id} not found")

    existing = applications[index]
    merged = {**to_document(existing), **updates}
    form = parse_form(ApplicationForm, merged, context={"today": today} if today else None)
    _check_application_duplicate(applications, form, exclude_id=application_id)

    updated = FirearmApplication(**form.model_dump(), id=existing.id, created_at=existing.created_at)
    applications[index] = updated
    await store.save(APPLICATIONS_KEY, [to_document(a) for a in applications])
    logger.info(f"Updated application {application_id}")
    return updated


async def delete_application(store: RecordStore, application_id: str) -> FirearmApplication:
    applications = await load_applications(store)
    remaining = [a for a in applications if a.id != application_id]
    if len(remaining) == len(applications):
        raise RecordNotFoundError(f"Application {application_id} not found")
    deleted = next(a for a in applications if a.id == application_id)
    await store.save(APPLICATIONS_KEY, [to_document(a) for a in remaining])
    logger.info(f"Deleted application {application_id}")
    return deleted


# ============== NOTIFICATION SETTINGS ==============

async def load_notification_settings(store: RecordStore) -> Dict[str, bool]:
    settings = await store.get(NOTIFICATION_SETTINGS_KEY, {})
    return settings if isinstance(settings, dict) else {}


def notifications_enabled(settings: Dict[str, bool], record_id: str) -> bool:
    """Absent means enabled"""
    return settings.get(record_id, True) is not False


async def set_notifications_enabled(store: RecordStore, record_id: str, enabled: bool) -> Dict[str, bool]:
    settings = await load_notification_settings(store)
    settings[record_id] = enabled
    await store.set(NOTIFICATION_SETTINGS_KEY, settings)
    return settings


async def forget_notification_setting(store: RecordStore, record_id: str) -> None:
    settings = await load_notification_settings(store)
    if record_id in settings:
        del settings[record_id]
        await store.set(NOTIFICATION_SETTINGS_KEY, settings)
