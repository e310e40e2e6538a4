"""
Backend utilities - export common functions
"""
from .database import db, client, RecordStore, serialize_doc, get_default_store
from .helpers import parse_form, to_document, utc_now
from .holidays import (
    is_working_day, working_days_between, date_reaching_working_days, sast_today
)
