"""
Auth bridge

Wraps an identity provider (sign-up, sign-in, sign-out) and the profile
documents that go with each identity. Listeners registered with
``on_auth_change`` get the signed-in profile, or None on sign-out.

``MongoIdentityProvider`` keeps bcrypt password hashes in the credentials
collection. Any provider with the same three coroutines can replace it.
"""
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import bcrypt
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError, PyMongoError

import database
from database import CREDENTIALS, now_utc
from errors import AuthError, PortalError, TransportError
from gateway import EntityStoreGateway
from schemas import ProfileSeed, UserProfile, parse_payload

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

AuthListener = Callable[[Optional[UserProfile]], Awaitable[None]]


class Identity(BaseModel):
    uid: str
    email: str


class IdentityProvider(ABC):
    @abstractmethod
    async def create_user(self, email: str, password: str) -> Identity:
        ...

    @abstractmethod
    async def sign_in(self, email: str, password: str) -> Identity:
        ...

    @abstractmethod
    async def sign_out(self, identity: Identity) -> None:
        ...

    @abstractmethod
    async def delete_user(self, identity: Identity) -> None:
        ...


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class MongoIdentityProvider(IdentityProvider):
    def __init__(self, db=None):
        self._db = db
        self._indexed = False

    def _credentials(self):
        db = self._db if self._db is not None else database.db
        if db is None:
            raise TransportError("Database not configured")
        credentials = db[CREDENTIALS]
        if not self._indexed:
            # One credential per email, enforced by the server
            credentials.create_index("email", unique=True)
            self._indexed = True
        return credentials

    def _create(self, email: str, password: str) -> Identity:
        credentials = self._credentials()
        uid = secrets.token_hex(14)
        password_hash = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")
        credentials.insert_one(
            {"_id": uid, "email": email, "password_hash": password_hash, "created_at": now_utc()}
        )
        return Identity(uid=uid, email=email)

    def _verify(self, email: str, password: str) -> Identity:
        doc = self._credentials().find_one({"email": email})
        if not doc or not bcrypt.checkpw(password.encode("utf-8"), doc["password_hash"].encode("utf-8")):
            raise AuthError("Invalid email or password.")
        return Identity(uid=doc["_id"], email=doc["email"])

    async def create_user(self, email: str, password: str) -> Identity:
        email = normalize_email(email)
        if "@" not in email:
            raise AuthError("The email address is badly formatted.")
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise AuthError(f"Password should be at least {MIN_PASSWORD_LENGTH} characters.")
        try:
            return await run_in_threadpool(self._create, email, password)
        except DuplicateKeyError as exc:
            raise AuthError("The email address is already in use by another account.") from exc
        except PyMongoError as exc:
            raise TransportError(f"Could not create account: {exc}") from exc

    async def sign_in(self, email: str, password: str) -> Identity:
        if not email or not password:
            raise AuthError("Invalid email or password.")
        try:
            return await run_in_threadpool(self._verify, normalize_email(email), password)
        except PyMongoError as exc:
            raise TransportError(f"Could not sign in: {exc}") from exc

    async def sign_out(self, identity: Identity) -> None:
        # Nothing is held server-side for a signed-in identity
        return None

    async def delete_user(self, identity: Identity) -> None:
        try:
            await run_in_threadpool(lambda: self._credentials().delete_one({"_id": identity.uid}))
        except PyMongoError as exc:
            raise TransportError(f"Could not delete account: {exc}") from exc


class AuthBridge:
    def __init__(self, provider: IdentityProvider, gateway: EntityStoreGateway):
        self.provider = provider
        self.gateway = gateway
        self.identity: Optional[Identity] = None
        self._listeners: List[AuthListener] = []

    async def register(self, email: str, password: str, seed: Union[ProfileSeed, Dict[str, Any]]) -> Identity:
        """Create the identity and its profile. Does not sign in.

        When the profile cannot be written the new identity is deleted again,
        so the email can be registered once more.
        """
        seed = parse_payload(ProfileSeed, seed)
        logger.info(f"Attempting user registration for {email}")
        try:
            identity = await self.provider.create_user(email, password)
        except PortalError as exc:
            logger.error(f"User registration failed for {email}: {exc.message}")
            raise
        try:
            profile = UserProfile(
                id=identity.uid,
                email=identity.email,
                name=seed.name,
                role=seed.role,
                region=seed.region,
                crop_interests=seed.crop_interests,
            )
            await self.gateway.create_user(profile)
        except PortalError as exc:
            logger.error(f"Profile creation failed for {identity.uid}, removing identity: {exc.message}")
            await self.provider.delete_user(identity)
            raise
        logger.info(f"User registration successful, profile created for {identity.uid}")
        return identity

    async def login(self, email: str, password: str) -> Identity:
        logger.info(f"Attempting user login for {email}")
        try:
            identity = await self.provider.sign_in(email, password)
        except PortalError as exc:
            logger.error(f"User login failed for {email}: {exc.message}")
            raise
        self.identity = identity
        profile = await self.gateway.get_user(identity.uid)
        if profile is None:
            logger.error(f"No user profile found for {identity.uid}")
        await self._notify(profile)
        return identity

    async def logout(self) -> None:
        identity = self.identity
        logger.info(f"Attempting user logout for {identity.uid if identity else 'N/A'}")
        if identity is not None:
            await self.provider.sign_out(identity)
        self.identity = None
        await self._notify(None)

    def on_auth_change(self, callback: AuthListener) -> Callable[[], None]:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _notify(self, profile: Optional[UserProfile]) -> None:
        for listener in list(self._listeners):
            await listener(profile)
