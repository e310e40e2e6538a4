"""
Database configuration and the on-device key-value record store
"""
import logging
from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from .config import MONGO_URL, DB_NAME
from .errors import PersistenceError

logger = logging.getLogger(__name__)

# MongoDB connection
client = AsyncIOMotorClient(MONGO_URL)
db = client[DB_NAME]

# Collection keys
FIREARMS_KEY = "firearm_records"
APPLICATIONS_KEY = "firearm_applications"
NOTIFICATION_SETTINGS_KEY = "notification_settings"
FIREARM_SCHEDULE_KEY = "firearm_notification_schedule"
APPLICATION_SCHEDULE_KEY = "application_notification_schedule"
NOTIFICATION_COUNTER_KEY = "notification_counter"


def serialize_doc(doc):
    """Serialize MongoDB document for JSON response"""
    if doc is None:
        return None
    if isinstance(doc, dict):
        return {k: serialize_doc(v) for k, v in doc.items() if k != '_id'}
    if isinstance(doc, list):
        return [serialize_doc(item) for item in doc]
    return doc


class RecordStore:
    """
    Get/set-by-key store. Each key holds one JSON-compatible value in the
    kv_store collection; collections of records are stored as lists.
    """

    def __init__(self, database=None, collection: str = "kv_store"):
        self.database = database if database is not None else db
        self.collection = self.database[collection]

    async def get(self, key: str, default: Any = None) -> Any:
        try:
            doc = await self.collection.find_one({"key": key}, {"_id": 0})
        except PyMongoError as e:
            logger.error(f"Failed to load '{key}': {e}")
            raise PersistenceError(f"Failed to load {key}") from e
        if not doc:
            return default
        return serialize_doc(doc.get("value", default))

    async def set(self, key: str, value: Any) -> None:
        try:
            await self.collection.update_one(
                {"key": key},
                {"$set": {"key": key, "value": value}},
                upsert=True
            )
        except PyMongoError as e:
            logger.error(f"Failed to save '{key}': {e}")
            raise PersistenceError(f"Failed to save {key}") from e

    async def load(self, key: str) -> List[dict]:
        value = await self.get(key, [])
        return value if isinstance(value, list) else []

    async def save(self, key: str, records: List[dict]) -> None:
        await self.set(key, list(records))

    async def increment(self, key: str, amount: int = 1) -> int:
        """Atomically bump an integer counter and return its new value"""
        try:
            doc = await self.collection.find_one_and_update(
                {"key": key},
                {"$inc": {"value": amount}},
                upsert=True,
                return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            logger.error(f"Failed to increment '{key}': {e}")
            raise PersistenceError(f"Failed to update {key}") from e
        return int(doc["value"])


_default_store: Optional[RecordStore] = None


def get_default_store() -> RecordStore:
    global _default_store
    if _default_store is None:
        _default_store = RecordStore(db)
    return _default_store
