#    Copyright 2025 FAO
#
#    Licensed under the Apache License, Version 2.0 (the "License");
#    you may not use this file except in compliance with the License.
#    You may obtain a copy of the License at
#
#        http://www.apache.org/licenses/LICENSE-2.0
#
#    Unless required by applicable law or agreed to in writing, software
#    distributed under the License is distributed on an "AS IS" BASIS,
#    WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#    See the License for the specific language governing permissions and
#    limitations under the License.
#
#    Author: Carlo Cancellieri (ccancellieri@gmail.com)
#    Company: FAO, Viale delle Terme di Caracalla, 00100 Rome, Italy
#    Contact: copyright@fao.org - http://fao.org/contact-us/terms/en/

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from identify_sync.shared.exceptions import IdentityException, NoBackendSession
from identify_sync.shared.models import AdminUserUpdate, ProfileCompletion, UserRecord, UserUpdate
from identify_sync.shared.service import IdentitySyncService
from identify_sync.shared.sessions import SessionManager
from identify_sync.fastapi_middleware.tools import get_identity_service, require_admin, require_auth

logger = logging.getLogger(__name__)


class IdentifyMiddleware(BaseHTTPMiddleware):
    """
    Resolves the session cookie once per request.

    Sets `request.state.session_id` (cookie value or None) and
    `request.state.session` (SessionData or None). It never rejects a request;
    authorization is left to the endpoints.
    """

    def __init__(self, app, sessions: SessionManager):
        super().__init__(app)
        self.sessions = sessions

    async def dispatch(self, request: Request, call_next):
        session_id = request.cookies.get(self.sessions.cookie.name)
        request.state.session_id = session_id
        request.state.session = None

        if session_id:
            try:
                request.state.session = await self.sessions.load(session_id)
            except IdentityException as e:
                # Exception handlers do not see errors raised in BaseHTTPMiddleware.
                logger.error(f"Could not load session: {e.detail}")
                return JSONResponse({"detail": e.detail}, status_code=e.status_code)
            if request.state.session is None:
                logger.debug("Session cookie present but no stored session.")

        return await call_next(request)


def register_exception_handlers(app: FastAPI, sessions: SessionManager) -> None:
    @app.exception_handler(IdentityException)
    async def identity_exception_handler(request: Request, exc: IdentityException):
        response = JSONResponse({"detail": exc.detail}, status_code=exc.status_code)
        if isinstance(exc, NoBackendSession) and request.cookies.get(sessions.cookie.name):
            response.delete_cookie(**sessions.cookie.delete_cookie_kwargs())
        return response


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def _session(request: Request):
    return getattr(request.state, "session_id", None), getattr(request.state, "session", None)


def create_auth_router() -> APIRouter:
    router = APIRouter()

    @router.post("/auth/firebase-login")
    async def firebase_login(
        request: Request, service: IdentitySyncService = Depends(get_identity_service)
    ):
        """Verify a Firebase ID token and open a backend session."""
        payload = await _read_json(request)
        id_token: Optional[Any] = payload.get("idToken") if isinstance(payload, dict) else None
        session_id, _ = _session(request)

        result = await service.sync_identity(id_token, current_session_id=session_id)

        response = JSONResponse(result.user.to_json())
        response.set_cookie(**service.sessions.cookie.set_cookie_kwargs(result.session_id))
        return response

    @router.get("/auth/user")
    async def get_user(user: UserRecord = Depends(require_auth)):
        return user.to_json()

    @router.put("/auth/user")
    async def update_user(
        data: UserUpdate, request: Request, service: IdentitySyncService = Depends(get_identity_service)
    ):
        session_id, _ = _session(request)
        user = await service.update_user(session_id, data)
        return user.to_json()

    @router.post("/auth/logout")
    async def logout(request: Request, service: IdentitySyncService = Depends(get_identity_service)):
        session_id, _ = _session(request)
        await service.logout(session_id)
        response = JSONResponse({"message": "Logged out successfully"})
        response.delete_cookie(**service.sessions.cookie.delete_cookie_kwargs())
        return response

    @router.post("/profile")
    async def complete_profile(
        data: ProfileCompletion, request: Request, service: IdentitySyncService = Depends(get_identity_service)
    ):
        session_id, _ = _session(request)
        user = await service.complete_profile(session_id, data)
        return user.to_json()

    @router.post("/profile/reset")
    async def reset_profile(request: Request, service: IdentitySyncService = Depends(get_identity_service)):
        session_id, _ = _session(request)
        user = await service.reset_profile(session_id)
        return user.to_json()

    @router.get("/admin/users")
    async def list_users(
        admin: UserRecord = Depends(require_admin),
        service: IdentitySyncService = Depends(get_identity_service),
    ):
        users = await service.list_users(admin)
        return [user.to_json() for user in users]

    @router.put("/admin/users/{user_id}")
    async def admin_update_user(
        user_id: str,
        data: AdminUserUpdate,
        admin: UserRecord = Depends(require_admin),
        service: IdentitySyncService = Depends(get_identity_service),
    ):
        user = await service.admin_update_user(admin, user_id, data)
        return user.to_json()

    return router
