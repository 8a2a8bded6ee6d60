"""
Portal client

Everything one signed-in client holds: its auth bridge, its session state
and the controller for its role. The session is swapped for a fresh one on
every sign-in and emptied on sign-out.
"""
import logging
from typing import Optional

from auth import AuthBridge
from controllers import AdminViewController, FarmerViewController, ViewController
from gateway import EntityStoreGateway
from schemas import UserProfile
from session import SessionState

logger = logging.getLogger(__name__)


class Portal:
    def __init__(self, gateway: EntityStoreGateway, auth: AuthBridge):
        self.gateway = gateway
        self.auth = auth
        self.session = SessionState()
        self._controller: Optional[ViewController] = None
        self._unsubscribe = auth.on_auth_change(self._on_auth_change)

    async def _on_auth_change(self, profile: Optional[UserProfile]) -> None:
        if profile is None:
            logger.info("Signed out, clearing session")
            self.session = SessionState()
        else:
            logger.info(f"Signed in as {profile.id} ({profile.role})")
            self.session = SessionState.for_profile(profile)
        self._controller = None

    @property
    def signed_in(self) -> bool:
        return self.session.current_user is not None

    def controller(self) -> ViewController:
        if self._controller is None:
            user = self.session.require_user()
            controller_class = AdminViewController if user.role == "admin" else FarmerViewController
            self._controller = controller_class(self.gateway, self.session)
        return self._controller

    def close(self) -> None:
        self._unsubscribe()
