"""
Database Schemas for AgriPortal

Each entity model corresponds to a MongoDB collection (users, crops,
schemes, applications, notifications). Stored documents use snake_case keys
and are keyed by ``_id``; models expose it as a string ``id``. The *Create
models are the payloads accepted for new documents.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

Role = Literal["farmer", "admin"]
Season = Literal["Kharif", "Rabi", "Zaid"]
SchemeStatus = Literal["active", "closed"]
ApplicationStatus = Literal["pending", "approved", "rejected"]

SEASONS = ("Kharif", "Rabi", "Zaid")
REVIEW_STATUSES = ("approved", "rejected")

M = TypeVar("M", bound=BaseModel)


def _split_items(value):
    # "Urea, DAP ,, Potash" -> ["Urea", "DAP", "Potash"]
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    return [str(item).strip() for item in value if str(item).strip()]


def _required_text(value: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError("must not be empty")
    return value


class UserProfile(BaseModel):
    """Collection: users. ``id`` is the identity provider's subject id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Identity subject id")
    email: str = Field(..., description="Sign-in email address")
    name: str = Field(..., description="Full name")
    role: Role = Field("farmer", description="farmer|admin, fixed at creation")
    region: str = Field("", description="Home region, e.g. Punjab")
    crop_interests: List[str] = Field(default_factory=list, description="Crops the user follows")

    @field_validator("crop_interests", mode="before")
    @classmethod
    def unique_interests(cls, value):
        seen = []
        for item in _split_items(value):
            if item not in seen:
                seen.append(item)
        return seen


class ProfileSeed(BaseModel):
    """What registration knows about a user besides the credentials."""

    name: str
    role: Role = "farmer"
    region: str = ""
    crop_interests: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value):
        return _required_text(value)


class Crop(BaseModel):
    id: str
    name: str
    season: Season
    region: str
    pesticides: List[str] = Field(default_factory=list)
    fertilizers: List[str] = Field(default_factory=list)
    description: str = ""


class CropCreate(BaseModel):
    name: str = Field(..., description="Crop name")
    season: Season = Field(..., description="Kharif|Rabi|Zaid")
    region: str = Field(..., description="Suitable regions")
    pesticides: List[str] = Field(default_factory=list, description="Ordered, comma-separated accepted")
    fertilizers: List[str] = Field(default_factory=list, description="Ordered, comma-separated accepted")
    description: str = Field(..., description="Crop description")

    @field_validator("name", "region", "description")
    @classmethod
    def text_not_blank(cls, value):
        return _required_text(value)

    @field_validator("pesticides", "fertilizers", mode="before")
    @classmethod
    def split_items(cls, value):
        return _split_items(value)


class Scheme(BaseModel):
    id: str
    title: str
    description: str = ""
    eligibility: str = ""
    benefits: str = ""
    deadline: Optional[datetime] = Field(None, description="Application deadline, UTC")
    status: SchemeStatus = "active"


class SchemeCreate(BaseModel):
    title: str
    description: str
    eligibility: str
    benefits: str
    deadline: str = Field(..., description="Date as entered, e.g. 2025-12-31")
    status: SchemeStatus = "active"

    @field_validator("title", "description", "eligibility", "benefits")
    @classmethod
    def text_not_blank(cls, value):
        return _required_text(value)


class Application(BaseModel):
    """Collection: applications.

    ``farmer_name`` and ``scheme_name`` are snapshots taken when the
    application is submitted. Renaming the farmer or the scheme later does
    not touch them.
    """

    id: str
    farmer_id: str
    farmer_name: str = ""
    scheme_id: str
    scheme_name: str = ""
    status: ApplicationStatus
    land_size: float = Field(..., gt=0, description="Acres")
    crop_type: str
    details: str = ""
    applied_at: Optional[datetime] = Field(None, description="Stamped by the server on insert")


class ApplicationCreate(BaseModel):
    # Everything optional here so the gateway can name what is missing
    farmer_id: Optional[str] = None
    farmer_name: str = ""
    scheme_id: Optional[str] = None
    scheme_name: str = ""
    status: Optional[ApplicationStatus] = None
    land_size: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    crop_type: Optional[str] = None
    details: str = ""


class ApplicationDraft(BaseModel):
    """The apply form between "Apply Now" and submission. Never persisted."""

    scheme_id: Optional[str] = None
    name: str = ""
    land_size: Optional[float] = Field(None, allow_inf_nan=False)
    crop_type: Optional[str] = None
    details: str = ""


class Notification(BaseModel):
    """Collection: notifications.

    ``is_read`` has one entry per farmer that existed when it was sent.
    Farmers registered afterwards have no entry and never see it as unread.
    """

    id: str
    message: str
    type: str = "info"
    sent_by: str = "admin"
    is_read: Dict[str, bool] = Field(default_factory=dict)
    timestamp: Optional[datetime] = None

    def is_unread_for(self, user_id: str) -> bool:
        return self.is_read.get(user_id) is False


class NotificationCreate(BaseModel):
    message: str
    type: str = "info"
    sent_by: str = "admin"
    is_read: Dict[str, bool] = Field(..., description="Recipient farmer id -> read flag")

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, value):
        return _required_text(value)


def describe_errors(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err["loc"]) or "value"
        parts.append(f"{where}: {err['msg']}")
    return "; ".join(parts)


def parse_payload(model: Type[M], payload: Union[M, Dict[str, Any]]) -> M:
    """Validate an incoming payload, reporting problems as a portal ValidationError."""
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(describe_errors(exc)) from exc
