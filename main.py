import logging
import os
import secrets
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from auth import AuthBridge, MongoIdentityProvider
from controllers import AdminViewController, FarmerViewController
from database import now_utc
from errors import AuthError, InvalidTransitionError, NotFoundError, PortalError, TransportError, ValidationError
from gateway import EntityStoreGateway
from portal import Portal
from schemas import Application, ApplicationDraft, describe_errors
from viewmodels import ActionResult, TabView

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Admin self-registration is only possible when this code is configured
ADMIN_SIGNUP_CODE = os.getenv("ADMIN_SIGNUP_CODE")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

app = FastAPI(title="AgriPortal API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

gateway = EntityStoreGateway()
identity_provider = MongoIdentityProvider()

SESSION_TTL = timedelta(days=7)

# token -> (signed-in portal client, expires_at)
clients: Dict[str, Tuple[Portal, datetime]] = {}

ERROR_STATUS = [
    (ValidationError, 422),
    (AuthError, 401),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (TransportError, 503),
]


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Rejected input is not echoed back, it may not be JSON-serializable (NaN)
    return JSONResponse(status_code=422, content={"detail": describe_errors(exc)})


# Auth models
class RegisterRequest(BaseModel):
    email: str
    password: str
    name: str
    region: str = ""
    crop_interests: List[str] = Field(default_factory=list)
    role: Literal["farmer", "admin"] = "farmer"
    admin_code: Optional[str] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class TokenResponse(BaseModel):
    token: str
    uid: str
    role: str
    expires_in: int


class DraftRequest(BaseModel):
    scheme_id: Optional[str] = None
    land_size: Optional[float] = Field(None, allow_inf_nan=False)
    crop_type: Optional[str] = None
    details: Optional[str] = None


class ReviewRequest(BaseModel):
    status: str
    confirmed: bool = False


class NotificationRequest(BaseModel):
    message: str = ""


# Session dependencies
def drop_client(token: str) -> None:
    entry = clients.pop(token, None)
    if entry is not None:
        entry[0].close()


def evict_expired() -> None:
    now = now_utc()
    for token in [t for t, (_, expires_at) in clients.items() if expires_at < now]:
        drop_client(token)


def require_session(token: str) -> Portal:
    entry = clients.get(token)
    if entry is None or not entry[0].signed_in:
        raise HTTPException(status_code=401, detail="Invalid token")
    portal, expires_at = entry
    if expires_at < now_utc():
        drop_client(token)
        raise HTTPException(status_code=401, detail="Session expired")
    return portal


def require_farmer(portal: Portal = Depends(require_session)) -> FarmerViewController:
    controller = portal.controller()
    if not isinstance(controller, FarmerViewController):
        raise HTTPException(status_code=403, detail="Farmer access only")
    return controller


def require_admin(portal: Portal = Depends(require_session)) -> AdminViewController:
    controller = portal.controller()
    if not isinstance(controller, AdminViewController):
        raise HTTPException(status_code=403, detail="Admin access only")
    return controller


@app.get("/")
def root():
    return {"name": "AgriPortal API", "status": "ok"}


@app.get("/test")
def test_database():
    db = gateway.db
    try:
        collections = db.list_collection_names() if db is not None else []
        return {
            "backend": "✅ Running",
            "database": "✅ Connected" if db is not None else "❌ Not available",
            "collections": collections[:10],
        }
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return {"backend": "✅ Running", "database": f"❌ Error: {str(e)}"}


# Authentication
@app.post("/auth/register", status_code=201)
async def register(payload: RegisterRequest):
    if payload.role == "admin" and (not ADMIN_SIGNUP_CODE or payload.admin_code != ADMIN_SIGNUP_CODE):
        raise HTTPException(status_code=403, detail="Admin registration is not allowed")
    seed = payload.model_dump(include={"name", "role", "region", "crop_interests"})
    identity = await AuthBridge(identity_provider, gateway).register(payload.email, payload.password, seed)
    return {"uid": identity.uid, "email": identity.email, "message": "Registration successful! Please log in."}


@app.post("/auth/login", response_model=TokenResponse)
async def login(payload: LoginRequest):
    portal = Portal(gateway, AuthBridge(identity_provider, gateway))
    await portal.auth.login(payload.email, payload.password)
    if not portal.signed_in:
        portal.close()
        raise HTTPException(status_code=401, detail="No user profile found for this account")
    evict_expired()
    token = secrets.token_urlsafe(24)
    clients[token] = (portal, now_utc() + SESSION_TTL)
    user = portal.session.current_user
    return TokenResponse(
        token=token, uid=user.id, role=user.role, expires_in=int(SESSION_TTL.total_seconds())
    )


@app.post("/auth/logout")
async def logout(token: str, portal: Portal = Depends(require_session)):
    await portal.auth.logout()
    drop_client(token)
    return {"message": "You have been logged out."}


# Views shared by both dashboards
@app.get("/view", response_model=TabView)
async def current_view(portal: Portal = Depends(require_session)):
    return await portal.controller().render()


@app.post("/navigate/{tab}", response_model=TabView)
async def navigate(tab: str, portal: Portal = Depends(require_session)):
    return await portal.controller().navigate(tab)


@app.post("/home", response_model=TabView)
async def home(portal: Portal = Depends(require_session)):
    return await portal.controller().go_home()


# Farmer
@app.post("/farmer/apply-now/{scheme_id}", response_model=TabView)
async def apply_now(scheme_id: str, controller: FarmerViewController = Depends(require_farmer)):
    return await controller.apply_now(scheme_id)


@app.patch("/farmer/draft", response_model=ApplicationDraft)
async def update_draft(payload: DraftRequest, controller: FarmerViewController = Depends(require_farmer)):
    return controller.update_draft(**payload.model_dump(exclude_unset=True))


@app.post("/farmer/applications", response_model=ActionResult)
async def submit_application(payload: DraftRequest, controller: FarmerViewController = Depends(require_farmer)):
    return await controller.submit_application(**payload.model_dump(exclude_unset=True))


@app.post("/farmer/notifications/{notification_id}/read", response_model=ActionResult)
async def mark_read(notification_id: str, controller: FarmerViewController = Depends(require_farmer)):
    return await controller.mark_notification_read(notification_id)


# Admin
@app.post("/admin/applications/{application_id}/review", response_model=ActionResult)
async def review_application(application_id: str, payload: ReviewRequest,
                             controller: AdminViewController = Depends(require_admin)):
    return await controller.review_application(application_id, payload.status, payload.confirmed)


@app.get("/admin/users", response_model=TabView)
async def search_users(search: str = "", controller: AdminViewController = Depends(require_admin)):
    return await controller.search_users(search)


@app.get("/admin/users/{farmer_id}/applications", response_model=List[Application])
async def farmer_applications(farmer_id: str, controller: AdminViewController = Depends(require_admin)):
    return await controller.farmer_applications(farmer_id)


@app.delete("/admin/users/{user_id}", response_model=ActionResult)
async def deactivate_user(user_id: str, confirmed: bool = False,
                          controller: AdminViewController = Depends(require_admin)):
    return await controller.deactivate_user(user_id, confirmed)


@app.post("/admin/crops", response_model=ActionResult)
async def add_crop(payload: dict, controller: AdminViewController = Depends(require_admin)):
    return await controller.add_crop(payload)


@app.post("/admin/schemes", response_model=ActionResult)
async def add_scheme(payload: dict, controller: AdminViewController = Depends(require_admin)):
    return await controller.add_scheme(payload)


@app.post("/admin/notifications", response_model=ActionResult)
async def send_notification(payload: NotificationRequest, controller: AdminViewController = Depends(require_admin)):
    return await controller.send_notification(payload.message)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
