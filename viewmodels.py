"""
View models returned by the dashboard controllers.

A ``TabView`` is one fully rendered tab: the dashboard header plus the body
for the active tab, or an error message in place of both.
"""
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel

from schemas import SEASONS, Application, ApplicationDraft, Crop, Notification, Scheme, UserProfile

RENDER_ERROR_MESSAGE = "Error loading data. Please try again later."


class FarmerHeader(BaseModel):
    name: str
    total_crops: int
    available_schemes: int
    my_applications: int


class StatusOverview(BaseModel):
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    total: int = 0


class AdminHeader(BaseModel):
    total_farmers: int
    total_crops: int
    active_schemes: int
    pending_applications: int
    overview: StatusOverview


class FarmerHomeBody(BaseModel):
    kind: Literal["farmer-home"] = "farmer-home"
    unread_notifications: List[Notification]
    recommended_schemes: List[Scheme]


class CropsBody(BaseModel):
    kind: Literal["crops"] = "crops"
    crops: List[Crop]


class SchemesBody(BaseModel):
    kind: Literal["schemes"] = "schemes"
    schemes: List[Scheme]


class ApplyBody(BaseModel):
    kind: Literal["apply"] = "apply"
    schemes: List[Scheme]
    crops: List[Crop]
    draft: ApplicationDraft


class ApplicationsBody(BaseModel):
    kind: Literal["applications"] = "applications"
    applications: List[Application]


class FarmerRow(BaseModel):
    profile: UserProfile
    application_count: int


class UserManagementBody(BaseModel):
    kind: Literal["user-management"] = "user-management"
    search: str = ""
    farmers: List[FarmerRow]


class CropFormBody(BaseModel):
    kind: Literal["crop-form"] = "crop-form"
    seasons: Tuple[str, ...] = SEASONS


class SchemeFormBody(BaseModel):
    kind: Literal["scheme-form"] = "scheme-form"


class NotificationFormBody(BaseModel):
    kind: Literal["notification-form"] = "notification-form"
    recipient_count: int


TabBody = Union[
    FarmerHomeBody,
    CropsBody,
    SchemesBody,
    ApplyBody,
    ApplicationsBody,
    UserManagementBody,
    CropFormBody,
    SchemeFormBody,
    NotificationFormBody,
]


class TabView(BaseModel):
    role: Literal["farmer", "admin"]
    tab: str
    header: Optional[Union[FarmerHeader, AdminHeader]] = None
    body: Optional[TabBody] = None
    error: Optional[str] = None


class ActionResult(BaseModel):
    """Outcome of a user action.

    ``view`` is the re-rendered tab after a successful mutation. A failed or
    unconfirmed action carries no view: whatever was on screen stays.
    """

    ok: bool
    message: str
    needs_confirmation: bool = False
    view: Optional[TabView] = None
