"""
Entity Store Gateway

The only code that reads or writes the five portal collections. Every
operation is a single round trip: pymongo's blocking call runs in the
threadpool so callers can await it (and gather several) without blocking
the event loop. Nothing is retried here.

Reads turn raw documents into the strict models in ``schemas`` and
normalize every stored timestamp into an aware UTC datetime. Writes that
need a timestamp let the server stamp it.
"""
import logging
import math
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union

from bson import ObjectId
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import database
from database import (
    APPLICATIONS,
    CROPS,
    NOTIFICATIONS,
    SCHEMES,
    USERS,
    parse_object_id,
    parse_point_in_time,
    to_datetime,
)
from errors import InvalidTransitionError, NotFoundError, TransportError, ValidationError
from schemas import (
    REVIEW_STATUSES,
    Application,
    ApplicationCreate,
    Crop,
    CropCreate,
    Notification,
    NotificationCreate,
    Scheme,
    SchemeCreate,
    UserProfile,
    describe_errors,
    parse_payload,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TIMESTAMP_FIELDS = {
    SCHEMES: ("deadline",),
    APPLICATIONS: ("applied_at",),
    NOTIFICATIONS: ("timestamp",),
}

REQUIRED_APPLICATION_FIELDS = ("farmer_id", "scheme_id", "land_size", "crop_type")


def to_model(model: Type[M], collection: str, doc: Dict[str, Any]) -> M:
    """Map a stored document onto its model, or reject it."""
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    for field in TIMESTAMP_FIELDS.get(collection, ()):
        try:
            data[field] = to_datetime(data.get(field))
        except ValueError as exc:
            raise ValidationError(f"{collection}/{data['id']}: unreadable {field}") from exc
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"{collection}/{data['id']} is not a valid {model.__name__}: {describe_errors(exc)}"
        ) from exc


class EntityStoreGateway:
    def __init__(self, db: Optional[Database] = None):
        self._db = db

    @property
    def db(self) -> Optional[Database]:
        return self._db if self._db is not None else database.db

    def _collection(self, name: str):
        db = self.db
        if db is None:
            raise TransportError("Database not configured")
        return db[name]

    async def _call(self, action: str, fn: Callable, *args):
        try:
            return await run_in_threadpool(fn, *args)
        except PyMongoError as exc:
            logger.error(f"Store call failed ({action}): {exc}")
            raise TransportError(f"Could not {action}: {exc}") from exc

    # --- blocking helpers, always run through _call ---

    def _find(self, name: str, query: Optional[dict] = None, sort: Optional[list] = None) -> List[dict]:
        cursor = self._collection(name).find(query or {})
        if sort:
            cursor = cursor.sort(sort)
        return list(cursor)

    def _find_one(self, name: str, query: dict) -> Optional[dict]:
        return self._collection(name).find_one(query)

    def _insert(self, name: str, doc: dict) -> str:
        return str(self._collection(name).insert_one(doc).inserted_id)

    def _insert_stamped(self, name: str, doc: dict, stamp_field: str) -> str:
        # Upsert on a fresh id: the insert and the server clock reading are one write
        result = self._collection(name).update_one(
            {"_id": ObjectId()},
            {"$setOnInsert": doc, "$currentDate": {stamp_field: True}},
            upsert=True,
        )
        return str(result.upserted_id)

    def _transition(self, oid: ObjectId, status: str) -> None:
        applications = self._collection(APPLICATIONS)
        result = applications.update_one({"_id": oid, "status": "pending"}, {"$set": {"status": status}})
        if result.matched_count:
            return
        current = applications.find_one({"_id": oid}, {"status": True})
        if current is None:
            raise NotFoundError(f"Application {oid} no longer exists")
        raise InvalidTransitionError(f"Application {oid} is already {current.get('status')}")

    def _delete(self, name: str, query: dict) -> int:
        return self._collection(name).delete_one(query).deleted_count

    def _set_fields(self, name: str, query: dict, fields: dict) -> int:
        return self._collection(name).update_one(query, {"$set": fields}).matched_count

    # --- reads ---

    async def list_users(self) -> List[UserProfile]:
        docs = await self._call("load users", self._find, USERS)
        return [to_model(UserProfile, USERS, d) for d in docs]

    async def get_user(self, user_id: str) -> Optional[UserProfile]:
        doc = await self._call("load user profile", self._find_one, USERS, {"_id": user_id})
        return to_model(UserProfile, USERS, doc) if doc else None

    async def list_crops(self) -> List[Crop]:
        docs = await self._call("load crops", self._find, CROPS)
        return [to_model(Crop, CROPS, d) for d in docs]

    async def list_schemes(self) -> List[Scheme]:
        docs = await self._call("load schemes", self._find, SCHEMES, None, [("title", ASCENDING)])
        return [to_model(Scheme, SCHEMES, d) for d in docs]

    async def list_applications(self, farmer_id: Optional[str] = None) -> List[Application]:
        """All applications newest first, or one farmer's in no particular order.

        A farmer's own list is small and sorted by the caller; the admin list
        is sorted by the server.
        """
        if farmer_id:
            docs = await self._call("load applications", self._find, APPLICATIONS, {"farmer_id": farmer_id})
        else:
            docs = await self._call(
                "load applications", self._find, APPLICATIONS, None, [("applied_at", DESCENDING)]
            )
        return [to_model(Application, APPLICATIONS, d) for d in docs]

    async def list_notifications(self) -> List[Notification]:
        docs = await self._call(
            "load notifications", self._find, NOTIFICATIONS, None, [("timestamp", DESCENDING)]
        )
        return [to_model(Notification, NOTIFICATIONS, d) for d in docs]

    # --- writes ---

    async def create_user(self, profile: UserProfile) -> str:
        doc = profile.model_dump(exclude={"id"})
        doc["_id"] = profile.id
        logger.info(f"Creating profile for {profile.id} ({profile.role})")
        return await self._call("create user profile", self._insert, USERS, doc)

    async def create_application(self, draft: Union[ApplicationCreate, Dict[str, Any]]) -> str:
        draft = parse_payload(ApplicationCreate, draft)
        missing = [f for f in REQUIRED_APPLICATION_FIELDS if getattr(draft, f) in (None, "")]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
        if not math.isfinite(draft.land_size) or draft.land_size <= 0:
            raise ValidationError("land_size must be a positive number")
        if draft.status != "pending":
            raise ValidationError("New applications must be submitted with status 'pending'")
        logger.info(f"Submitting application of {draft.farmer_id} for scheme {draft.scheme_id}")
        return await self._call(
            "submit application", self._insert_stamped, APPLICATIONS, draft.model_dump(), "applied_at"
        )

    async def create_crop(self, data: Union[CropCreate, Dict[str, Any]]) -> str:
        crop = parse_payload(CropCreate, data)
        logger.info(f"Adding crop {crop.name} ({crop.season})")
        return await self._call("add crop", self._insert, CROPS, crop.model_dump())

    async def create_scheme(self, data: Union[SchemeCreate, Dict[str, Any]]) -> str:
        scheme = parse_payload(SchemeCreate, data)
        try:
            deadline = parse_point_in_time(scheme.deadline)
        except ValueError as exc:
            raise ValidationError(f"Invalid deadline: {scheme.deadline!r}") from exc
        doc = scheme.model_dump()
        doc["deadline"] = deadline
        logger.info(f"Adding scheme {scheme.title} (deadline {deadline.date()})")
        return await self._call("add scheme", self._insert, SCHEMES, doc)

    async def create_notification(self, data: Union[NotificationCreate, Dict[str, Any]]) -> str:
        notification = parse_payload(NotificationCreate, data)
        logger.info(f"Sending notification to {len(notification.is_read)} farmer(s)")
        return await self._call(
            "send notification", self._insert_stamped, NOTIFICATIONS, notification.model_dump(), "timestamp"
        )

    async def set_application_status(self, application_id: str, status: str) -> None:
        """Move a pending application to approved or rejected.

        The pending check and the write are one conditional update, so two
        reviewers racing on the same application cannot overwrite each other.
        """
        if status not in REVIEW_STATUSES:
            raise InvalidTransitionError(f"Cannot move an application to {status!r}")
        oid = parse_object_id(application_id)
        if oid is None:
            raise NotFoundError(f"Application {application_id} no longer exists")
        logger.info(f"Setting application {application_id} to {status}")
        await self._call("update application status", self._transition, oid, status)

    async def deactivate_user(self, user_id: str) -> None:
        # Hard delete. The user's applications stay behind on purpose.
        logger.info(f"Deactivating user {user_id}")
        deleted = await self._call("deactivate user", self._delete, USERS, {"_id": user_id})
        if not deleted:
            raise NotFoundError(f"User {user_id} no longer exists")

    async def mark_notification_read(self, notification_id: str, user_id: str) -> None:
        if not user_id or "." in user_id or user_id.startswith("$"):
            raise ValidationError(f"Invalid user id: {user_id!r}")
        oid = parse_object_id(notification_id)
        matched = 0
        if oid is not None:
            matched = await self._call(
                "mark notification read", self._set_fields, NOTIFICATIONS, {"_id": oid}, {f"is_read.{user_id}": True}
            )
        if not matched:
            raise NotFoundError(f"Notification {notification_id} no longer exists")
