from __future__ import annotations

import asyncio
import logging

import uvicorn
from fastapi import Depends, FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi import HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from .auth import IdentityProvider, get_identity_provider, get_ws_identity, require_auth
from .config import Settings, get_settings
from .console import (
    AdminConsole,
    AdminProfile,
    list_events,
    list_students,
    load_admin_profile,
    toggle_manager,
)
from .db import FirestoreStore, get_db
from .errors import CredentialValidationError, IdentityProviderError, StoreError
from .events import MainFilter, TimeFilter
from .models import Identity
from .notices import Notice, Severity
from .schemas import (
    AdminProfileOut,
    ConsoleAction,
    EventListResponse,
    GoogleLoginRequest,
    LoginRequest,
    LoginResponse,
    ManagerToggleRequest,
    NoticeOut,
    PreferencesOut,
    ResolutionResponse,
    StudentCard,
    TokensOut,
)
from .session import LoginFlow, LoginResult, Resolution, SessionResolver

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

ROLE_CHECK_FAILED = "Could not verify your account right now. Please try again."

# Identity provider error code -> HTTP status; anything else is 401.
_AUTH_ERROR_STATUS = {
    "domain-not-allowed": 403,
    "federated-sign-in-cancelled": 400,
    "network-request-failed": 503,
    "sign-out-failed": 503,
}

app = FastAPI(title="UOL EMS Backend", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _notice_out(notice: Notice) -> NoticeOut:
    return NoticeOut(message=notice.message, severity=notice.severity)


def _resolution_response(resolution: Resolution) -> ResolutionResponse:
    context = resolution.context
    return ResolutionResponse(
        state=resolution.state.value,
        outcome=resolution.outcome.value,
        route=resolution.route.value if resolution.route else None,
        uid=context.identity.uid,
        email=context.identity.email,
        role=context.role.value if context.role else None,
        preferences=PreferencesOut(dark_mode=context.preferences.dark_mode),
        notice=_notice_out(resolution.notice),
    )


def _login_response(result: LoginResult) -> LoginResponse:
    tokens = None
    if result.sign_in is not None:
        tokens = TokensOut(
            id_token=result.sign_in.id_token,
            refresh_token=result.sign_in.refresh_token,
            expires_in=result.sign_in.expires_in,
        )
    return LoginResponse(resolution=_resolution_response(result.resolution), tokens=tokens)


def _login_flow(store: FirestoreStore, identity_provider: IdentityProvider, settings: Settings) -> LoginFlow:
    return LoginFlow(identity_provider, SessionResolver(store, identity_provider, settings))


@app.get("/health")
def health() -> dict:
    return {"ok": True}


@app.post("/auth/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    store: FirestoreStore = Depends(get_db),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> LoginResponse:
    flow = _login_flow(store, identity_provider, settings)
    try:
        result = flow.sign_in_with_password(body.email, body.password)
    except CredentialValidationError as e:
        raise HTTPException(status_code=400, detail=e.message) from e
    except IdentityProviderError as e:
        raise HTTPException(status_code=_AUTH_ERROR_STATUS.get(e.code, 401), detail=e.message) from e
    except StoreError as e:
        raise HTTPException(status_code=503, detail=ROLE_CHECK_FAILED) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Login unexpected error")
        raise HTTPException(status_code=500, detail="Login failed (server error).") from e
    return _login_response(result)


@app.post("/auth/google", response_model=LoginResponse)
def google_login(
    body: GoogleLoginRequest,
    store: FirestoreStore = Depends(get_db),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> LoginResponse:
    flow = _login_flow(store, identity_provider, settings)
    try:
        result = flow.sign_in_with_google(body.id_token, body.access_token)
    except IdentityProviderError as e:
        raise HTTPException(status_code=_AUTH_ERROR_STATUS.get(e.code, 401), detail=e.message) from e
    except StoreError as e:
        raise HTTPException(status_code=503, detail=ROLE_CHECK_FAILED) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Google sign-in unexpected error")
        raise HTTPException(status_code=500, detail="Google Sign In Failed. Please try again.") from e
    return _login_response(result)


@app.post("/auth/resolve", response_model=ResolutionResponse)
def resolve_session(
    identity: Identity = Depends(require_auth),
    store: FirestoreStore = Depends(get_db),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> ResolutionResponse:
    """Route a client that signed in with the Firebase SDK directly."""
    resolver = SessionResolver(store, identity_provider, settings)
    try:
        resolution = resolver.resolve(identity)
    except IdentityProviderError as e:
        raise HTTPException(status_code=_AUTH_ERROR_STATUS.get(e.code, 401), detail=e.message) from e
    except StoreError as e:
        raise HTTPException(status_code=503, detail=ROLE_CHECK_FAILED) from e
    except Exception as e:
        logger.exception("Resolve session unexpected error")
        raise HTTPException(status_code=500, detail=ROLE_CHECK_FAILED) from e
    return _resolution_response(resolution)


def require_admin(
    identity: Identity = Depends(require_auth),
    store: FirestoreStore = Depends(get_db),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> Identity:
    resolver = SessionResolver(store, identity_provider, settings)
    try:
        allowed = resolver.is_admin(identity)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=ROLE_CHECK_FAILED) from e
    if not allowed:
        raise HTTPException(status_code=403, detail="Only admins can access this endpoint")
    return identity


def get_admin_profile(
    identity: Identity = Depends(require_admin),
    store: FirestoreStore = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AdminProfile:
    try:
        return load_admin_profile(store, identity, settings)
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to load admin details.") from e


@app.get("/admin/me", response_model=AdminProfileOut)
def admin_me(profile: AdminProfile = Depends(get_admin_profile)) -> AdminProfileOut:
    return profile.to_schema()


@app.get("/admin/events", response_model=EventListResponse)
def admin_events(
    main_filter: MainFilter = MainFilter.ALL,
    time_filter: TimeFilter = TimeFilter.ALL_TIME,
    identity: Identity = Depends(require_admin),
    store: FirestoreStore = Depends(get_db),
) -> EventListResponse:
    try:
        return list_events(store, main_filter, time_filter)
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to retrieve events.") from e


@app.get("/admin/students", response_model=list[StudentCard])
def admin_students(
    profile: AdminProfile = Depends(get_admin_profile),
    store: FirestoreStore = Depends(get_db),
) -> list[StudentCard]:
    try:
        return list_students(store, profile)
    except StoreError as e:
        raise HTTPException(status_code=503, detail="Failed to retrieve students.") from e


@app.post("/admin/students/{uid}/manager", response_model=NoticeOut)
def admin_toggle_manager(
    uid: str,
    body: ManagerToggleRequest,
    identity: Identity = Depends(require_admin),
    store: FirestoreStore = Depends(get_db),
) -> NoticeOut:
    notice = toggle_manager(store, uid, body.is_manager, body.name)
    if notice.severity == Severity.ERROR:
        raise HTTPException(status_code=502, detail=notice.message)
    return _notice_out(notice)


async def _stop_sender(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except (asyncio.CancelledError, WebSocketDisconnect):
        pass
    except RuntimeError as e:
        # Starlette refuses to send once the socket is closed.
        logger.info(f"Console sender stopped: {e}")


@app.websocket("/admin/console")
async def admin_console(
    websocket: WebSocket,
    identity: Identity | None = Depends(get_ws_identity),
    store: FirestoreStore = Depends(get_db),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
    settings: Settings = Depends(get_settings),
) -> None:
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    resolver = SessionResolver(store, identity_provider, settings)
    try:
        if not await run_in_threadpool(resolver.is_admin, identity):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        profile = await run_in_threadpool(load_admin_profile, store, identity, settings)
    except StoreError:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()

    # None means "send the current view"; views are rendered at send time.
    outbox: asyncio.Queue[dict | None] = asyncio.Queue()
    console = AdminConsole(profile, settings, on_change=lambda: outbox.put_nowait(None))

    async def sender() -> None:
        while True:
            item = await outbox.get()
            if item is None:
                item = {"type": "view", "view": console.view().model_dump(mode="json")}
            await websocket.send_json(item)

    send_task = asyncio.create_task(sender())
    try:
        console.start(store)
        outbox.put_nowait(None)
        while True:
            raw = await websocket.receive_text()
            try:
                action = ConsoleAction.model_validate_json(raw)
            except ValidationError:
                outbox.put_nowait({"type": "error", "detail": "Invalid console action"})
                continue

            if action.action == "set_filters":
                console.set_filters(action.main_filter, action.time_filter)
            elif action.action == "toggle_manager":
                if not action.uid or action.is_manager is None:
                    outbox.put_nowait({"type": "error", "detail": "uid and is_manager are required"})
                    continue
                notice = await run_in_threadpool(
                    toggle_manager, store, action.uid, action.is_manager, action.name
                )
                outbox.put_nowait(
                    {"type": "notification", "notice": _notice_out(notice).model_dump(mode="json")}
                )
    except WebSocketDisconnect:
        logger.info(f"Admin console disconnected for {identity.uid}")
    except StoreError:
        logger.exception("Admin console subscription failed")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    finally:
        console.close()
        await _stop_sender(send_task)


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
