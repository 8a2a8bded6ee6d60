"""
Dashboard controllers

One controller per role. Each render fetches the header data and exactly
the entities the active tab needs, concurrently, and turns them into a
``TabView``. A store failure during a render gives a view carrying only the
generic error message, never a half-filled one.

Actions follow one pattern: ask for confirmation when the action is
destructive, run the mutation, then re-render the whole tab. A failed
action returns a message and no view, so whatever the user was looking at
stays as it was.

A render is never cancelled. If the tab changes while one is in flight it
still completes with the tab it started on.
"""
import asyncio
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Sequence

from errors import AuthError, NotFoundError, PortalError
from gateway import EntityStoreGateway
from schemas import Application, ApplicationCreate, ApplicationDraft, Scheme
from session import ADMIN_LANDING_TAB, FARMER_LANDING_TAB, SessionState
from viewmodels import (
    RENDER_ERROR_MESSAGE,
    ActionResult,
    AdminHeader,
    ApplicationsBody,
    ApplyBody,
    CropFormBody,
    CropsBody,
    FarmerHeader,
    FarmerHomeBody,
    FarmerRow,
    NotificationFormBody,
    SchemeFormBody,
    SchemesBody,
    StatusOverview,
    TabView,
    UserManagementBody,
)

logger = logging.getLogger(__name__)

RECOMMENDED_SCHEMES_LIMIT = 2
_NEVER = datetime.min.replace(tzinfo=timezone.utc)


def newest_first(applications: Sequence[Application]) -> List[Application]:
    # Applications without a timestamp sort last
    return sorted(applications, key=lambda a: a.applied_at or _NEVER, reverse=True)


def recommend_schemes(schemes: Sequence[Scheme], crop_interests: Sequence[str],
                      limit: int = RECOMMENDED_SCHEMES_LIMIT) -> List[Scheme]:
    """Schemes whose eligibility text mentions one of the user's crops."""
    interests = {crop.lower() for crop in crop_interests}
    if not interests:
        return []
    matches = []
    for scheme in schemes:
        words = set(re.split(r"\W+", scheme.eligibility.lower()))
        if interests & words:
            matches.append(scheme)
    return matches[:limit]


def status_overview(applications: Sequence[Application]) -> StatusOverview:
    counts: Dict[str, int] = {"pending": 0, "approved": 0, "rejected": 0}
    for application in applications:
        counts[application.status] += 1
    return StatusOverview(total=len(applications), **counts)


class ViewController(ABC):
    role = ""
    landing_tab = ""

    def __init__(self, gateway: EntityStoreGateway, session: SessionState):
        user = session.require_user()
        if user.role != self.role:
            raise AuthError(f"The {self.role} dashboard is not available for this account.")
        self.gateway = gateway
        self.session = session
        self.user = user

    @property
    def tab(self) -> str:
        return self.session.current_tab

    async def render(self) -> TabView:
        tab = self.tab
        logger.info(f"Rendering {self.role} dashboard for tab: {tab} (user {self.user.id})")
        try:
            header, body = await asyncio.gather(self._header(), self._body(tab))
        except PortalError as exc:
            logger.error(f"Error rendering {self.role} tab {tab}: {exc.message}")
            return TabView(role=self.role, tab=tab, error=RENDER_ERROR_MESSAGE)
        return TabView(role=self.role, tab=tab, header=header, body=body)

    async def navigate(self, tab: str) -> TabView:
        self.session.navigate(tab)
        return await self.render()

    async def go_home(self) -> TabView:
        return await self.navigate(self.landing_tab)

    @abstractmethod
    async def _header(self):
        ...

    @abstractmethod
    async def _body(self, tab: str):
        ...

    async def _perform(self, description: str, mutation: Callable[[], Awaitable[object]],
                       success: str) -> ActionResult:
        try:
            await mutation()
        except PortalError as exc:
            logger.error(f"Failed to {description}: {exc.message}")
            return ActionResult(ok=False, message=f"Could not {description}: {exc.message}")
        logger.info(f"{success} ({description}, user {self.user.id})")
        return ActionResult(ok=True, message=success, view=await self.render())


class FarmerViewController(ViewController):
    role = "farmer"
    landing_tab = FARMER_LANDING_TAB

    async def _header(self) -> FarmerHeader:
        crops, schemes, applications = await asyncio.gather(
            self.gateway.list_crops(),
            self.gateway.list_schemes(),
            self.gateway.list_applications(self.user.id),
        )
        return FarmerHeader(
            name=self.user.name,
            total_crops=len(crops),
            available_schemes=len(schemes),
            my_applications=len(applications),
        )

    async def _body(self, tab: str):
        if tab == "crops":
            return CropsBody(crops=await self.gateway.list_crops())
        if tab == "schemes":
            return SchemesBody(schemes=await self.gateway.list_schemes())
        if tab == "apply":
            schemes, crops = await asyncio.gather(self.gateway.list_schemes(), self.gateway.list_crops())
            return ApplyBody(schemes=schemes, crops=crops, draft=self.session.application_draft)
        if tab == "applications":
            applications = await self.gateway.list_applications(self.user.id)
            return ApplicationsBody(applications=newest_first(applications))
        return await self._home()

    async def _home(self) -> FarmerHomeBody:
        notifications, schemes = await asyncio.gather(
            self.gateway.list_notifications(),
            self.gateway.list_schemes(),
        )
        return FarmerHomeBody(
            unread_notifications=[n for n in notifications if n.is_unread_for(self.user.id)],
            recommended_schemes=recommend_schemes(schemes, self.user.crop_interests),
        )

    async def apply_now(self, scheme_id: str) -> TabView:
        logger.info(f"Apply Now clicked for scheme {scheme_id}")
        self.session.start_application(scheme_id)
        return await self.render()

    def update_draft(self, **fields) -> ApplicationDraft:
        return self.session.update_draft(**fields)

    async def submit_application(self, **fields) -> ActionResult:
        try:
            draft = self.session.update_draft(**fields)
        except PortalError as exc:
            return ActionResult(ok=False, message=exc.message)
        if not draft.scheme_id or not draft.land_size or not draft.crop_type:
            return ActionResult(ok=False, message="Please fill out all required fields marked with *")

        async def submit():
            schemes = await self.gateway.list_schemes()
            scheme = next((s for s in schemes if s.id == draft.scheme_id), None)
            if scheme is None:
                raise NotFoundError("The selected scheme is no longer available.")
            await self.gateway.create_application(ApplicationCreate(
                farmer_id=self.user.id,
                farmer_name=self.user.name,
                scheme_id=scheme.id,
                scheme_name=scheme.title,
                status="pending",
                land_size=draft.land_size,
                crop_type=draft.crop_type,
                details=draft.details,
            ))
            self.session.reset_draft()
            self.session.navigate("applications")

        return await self._perform("submit application", submit, "Application submitted!")

    async def mark_notification_read(self, notification_id: str) -> ActionResult:
        return await self._perform(
            "update notification",
            lambda: self.gateway.mark_notification_read(notification_id, self.user.id),
            "Notification marked as read.",
        )


class AdminViewController(ViewController):
    role = "admin"
    landing_tab = ADMIN_LANDING_TAB

    def __init__(self, gateway: EntityStoreGateway, session: SessionState):
        super().__init__(gateway, session)
        self.user_search = ""

    async def _header(self) -> AdminHeader:
        applications, users, crops, schemes = await asyncio.gather(
            self.gateway.list_applications(),
            self.gateway.list_users(),
            self.gateway.list_crops(),
            self.gateway.list_schemes(),
        )
        overview = status_overview(applications)
        return AdminHeader(
            total_farmers=sum(1 for u in users if u.role == "farmer"),
            total_crops=len(crops),
            active_schemes=sum(1 for s in schemes if s.status == "active"),
            pending_applications=overview.pending,
            overview=overview,
        )

    async def _body(self, tab: str):
        if tab == "user-management":
            return await self._user_management()
        if tab == "crops":
            return CropFormBody()
        if tab == "schemes":
            return SchemeFormBody()
        if tab == "notifications":
            users = await self.gateway.list_users()
            return NotificationFormBody(recipient_count=sum(1 for u in users if u.role == "farmer"))
        return ApplicationsBody(applications=await self.gateway.list_applications())

    async def _user_management(self) -> UserManagementBody:
        users, applications = await asyncio.gather(
            self.gateway.list_users(),
            self.gateway.list_applications(),
        )
        term = self.user_search.lower()
        counts: Dict[str, int] = {}
        for application in applications:
            counts[application.farmer_id] = counts.get(application.farmer_id, 0) + 1
        rows = [
            FarmerRow(profile=user, application_count=counts.get(user.id, 0))
            for user in users
            if user.role == "farmer" and (term in user.name.lower() or term in user.email.lower())
        ]
        return UserManagementBody(search=self.user_search, farmers=rows)

    async def search_users(self, term: str) -> TabView:
        self.user_search = (term or "").strip()
        return await self.navigate("user-management")

    async def farmer_applications(self, farmer_id: str) -> List[Application]:
        return newest_first(await self.gateway.list_applications(farmer_id))

    async def review_application(self, application_id: str, status: str,
                                 confirmed: bool = False) -> ActionResult:
        if not confirmed:
            verb = {"approved": "approve", "rejected": "reject"}.get(status, status)
            return ActionResult(
                ok=False,
                needs_confirmation=True,
                message=f"Are you sure you want to {verb} this application?",
            )
        return await self._perform(
            "update application status",
            lambda: self.gateway.set_application_status(application_id, status),
            f"Application has been {status}.",
        )

    async def deactivate_user(self, user_id: str, confirmed: bool = False) -> ActionResult:
        if not confirmed:
            return ActionResult(
                ok=False,
                needs_confirmation=True,
                message="This will remove the user from the database. Are you sure?",
            )
        return await self._perform(
            "deactivate user",
            lambda: self.gateway.deactivate_user(user_id),
            "User deactivated.",
        )

    async def add_crop(self, data: dict) -> ActionResult:
        return await self._perform("add crop", lambda: self.gateway.create_crop(data), "Crop added successfully!")

    async def add_scheme(self, data: dict) -> ActionResult:
        return await self._perform(
            "add scheme", lambda: self.gateway.create_scheme(data), "New scheme added successfully!"
        )

    async def send_notification(self, message: str) -> ActionResult:
        if not (message or "").strip():
            return ActionResult(ok=False, message="Message cannot be empty.")

        async def send():
            users = await self.gateway.list_users()
            # Recipients are the farmers registered right now
            is_read = {user.id: False for user in users if user.role == "farmer"}
            await self.gateway.create_notification(
                {"type": "info", "message": message, "sent_by": "admin", "is_read": is_read}
            )

        return await self._perform("send notification", send, "Notification sent successfully!")
