"""
Session state for one portal client

Holds who is signed in, which tab each dashboard shows and the application
form in progress. A client creates an empty state at start, swaps in a new
one from ``SessionState.for_profile`` on every sign-in and drops back to an
empty one on sign-out. One client drives its state from one coroutine at a
time, so nothing here is locked.
"""
from dataclasses import dataclass, field
from typing import Optional

from errors import AuthError, ValidationError
from schemas import ApplicationDraft, UserProfile, parse_payload

FARMER_TABS = ("dashboard", "crops", "schemes", "apply", "applications")
ADMIN_TABS = ("applications", "user-management", "crops", "schemes", "notifications")

FARMER_LANDING_TAB = "dashboard"
ADMIN_LANDING_TAB = "applications"


@dataclass
class SessionState:
    current_user: Optional[UserProfile] = None
    farmer_tab: str = FARMER_LANDING_TAB
    admin_tab: str = ADMIN_LANDING_TAB
    application_draft: ApplicationDraft = field(default_factory=ApplicationDraft)

    @classmethod
    def for_profile(cls, profile: UserProfile) -> "SessionState":
        """Fresh state for a sign-in: landing tabs and a draft with the user's name."""
        return cls(current_user=profile, application_draft=ApplicationDraft(name=profile.name))

    def require_user(self) -> UserProfile:
        if self.current_user is None:
            raise AuthError("Please sign in to continue.")
        return self.current_user

    @property
    def is_admin(self) -> bool:
        return self.current_user is not None and self.current_user.role == "admin"

    @property
    def current_tab(self) -> str:
        return self.admin_tab if self.is_admin else self.farmer_tab

    def navigate(self, tab: str) -> None:
        user = self.require_user()
        if user.role == "admin":
            if tab not in ADMIN_TABS:
                raise ValidationError(f"Unknown admin tab: {tab}")
            self.admin_tab = tab
        else:
            if tab not in FARMER_TABS:
                raise ValidationError(f"Unknown farmer tab: {tab}")
            self.farmer_tab = tab

    def start_application(self, scheme_id: str) -> None:
        """Apply Now on a scheme: remember it and open the apply tab."""
        self.application_draft = self.application_draft.model_copy(update={"scheme_id": scheme_id})
        self.navigate("apply")

    def update_draft(self, **fields) -> ApplicationDraft:
        unknown = set(fields) - set(ApplicationDraft.model_fields)
        if unknown:
            raise ValidationError(f"Unknown draft field(s): {', '.join(sorted(unknown))}")
        merged = self.application_draft.model_dump()
        merged.update(fields)
        self.application_draft = parse_payload(ApplicationDraft, merged)
        return self.application_draft

    def reset_draft(self) -> None:
        name = self.current_user.name if self.current_user else ""
        self.application_draft = ApplicationDraft(name=name)
