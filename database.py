"""
Database connection and wire helpers

The MongoDB connection is configured from the environment:

- DATABASE_URL: MongoDB connection string
- DATABASE_NAME: database holding the portal collections

When either is missing ``db`` is None and the store is reported as not
configured by whoever asks for a collection.
"""
import logging
import os
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.timestamp import Timestamp
from pymongo import MongoClient
from pymongo.database import Database

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Collection names
USERS = "users"
CROPS = "crops"
SCHEMES = "schemes"
APPLICATIONS = "applications"
NOTIFICATIONS = "notifications"
CREDENTIALS = "credentials"


def connect(url: Optional[str], name: Optional[str]) -> Optional[Database]:
    if not url or not name:
        logger.warning("DATABASE_URL or DATABASE_NAME not set, running without a store")
        return None
    # MongoClient connects lazily, the first operation pays for server selection
    client = MongoClient(url)
    return client[name]


db = connect(DATABASE_URL, DATABASE_NAME)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalize a store timestamp into an aware UTC datetime.

    pymongo hands back naive datetimes that are already UTC. BSON
    ``Timestamp`` values and bare dates are accepted too. Anything else
    raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, Timestamp):
        return value.as_datetime()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    raise ValueError(f"not a timestamp: {value!r}")


def parse_point_in_time(value: Any) -> datetime:
    """Turn a deadline as typed into a form ("2025-12-31") into a UTC datetime.

    A bare date means midnight UTC. Full ISO-8601 datetimes are accepted,
    naive ones taken as UTC.
    """
    if isinstance(value, (datetime, date)):
        return to_datetime(value)
    text = str(value or "").strip()
    if not text:
        raise ValueError("empty date")
    try:
        return to_datetime(date.fromisoformat(text))
    except ValueError:
        pass
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return to_datetime(datetime.fromisoformat(text))


def parse_object_id(value: str) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None
