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

"""
Flask Identity Middleware

Flask counterpart of the FastAPI adapter: the same endpoints over the same
IdentitySyncService, driven through asgiref's async_to_sync.
"""

import logging
from typing import Optional

from asgiref.sync import async_to_sync
from flask import Blueprint, Flask, g, jsonify, request
from pydantic import ValidationError

from identify_sync.shared.config import Settings
from identify_sync.shared.database import create_engine, create_session_factory, create_tables
from identify_sync.shared.exceptions import IdentityException, NoBackendSession
from identify_sync.shared.factory import build_service, prune_sessions
from identify_sync.shared.models import AdminUserUpdate, ProfileCompletion, UserUpdate
from identify_sync.shared.service import IdentitySyncService
from identify_sync.shared.sessions import SessionStore
from identify_sync.shared.verifiers import AssertionVerifier
from identify_sync.flask_middleware.tools import flask_require_admin, flask_require_auth, get_service

__all__ = ["FlaskIdentifyMiddleware", "create_auth_blueprint", "create_flask_app"]

logger = logging.getLogger(__name__)


class FlaskIdentifyMiddleware:
    """
    Resolves the session cookie before each request into `g.session_id` and
    `g.session`, and renders IdentityException as JSON.
    """

    def __init__(self, app: Optional[Flask] = None, service: Optional[IdentitySyncService] = None):
        self.service = service
        if app is not None:
            self.init_app(app, service)

    def init_app(self, app: Flask, service: Optional[IdentitySyncService] = None):
        self.service = service or self.service
        if self.service is None:
            raise RuntimeError("FlaskIdentifyMiddleware requires an IdentitySyncService.")
        app.extensions["identify_sync"] = self.service
        app.before_request(self._before_request_handler)
        app.register_error_handler(IdentityException, self._handle_identity_exception)
        app.register_error_handler(ValidationError, self._handle_validation_error)

    def _before_request_handler(self):
        session_id = request.cookies.get(self.service.sessions.cookie.name)
        g.session_id = session_id
        g.session = async_to_sync(self.service.sessions.load)(session_id) if session_id else None

    def _handle_identity_exception(self, e: IdentityException):
        logger.info(f"Request failed with {e.status_code}: {e.detail}")
        response = jsonify(detail=e.detail)
        response.status_code = e.status_code
        if isinstance(e, NoBackendSession) and request.cookies.get(self.service.sessions.cookie.name):
            response.delete_cookie(**self.service.sessions.cookie.delete_cookie_kwargs())
        return response

    def _handle_validation_error(self, e: ValidationError):
        response = jsonify(detail=e.errors(include_url=False, include_context=False, include_input=False))
        response.status_code = 422
        return response


def create_auth_blueprint(url_prefix: str = "/api") -> Blueprint:
    bp = Blueprint("identify_sync", __name__, url_prefix=url_prefix)

    @bp.post("/auth/firebase-login")
    def firebase_login():
        service = get_service()
        payload = request.get_json(silent=True)
        id_token = payload.get("idToken") if isinstance(payload, dict) else None

        result = async_to_sync(service.sync_identity)(id_token, current_session_id=g.session_id)

        response = jsonify(result.user.to_json())
        response.set_cookie(**service.sessions.cookie.set_cookie_kwargs(result.session_id))
        return response

    @bp.get("/auth/user")
    @flask_require_auth
    def get_user():
        return jsonify(g.user.to_json())

    @bp.put("/auth/user")
    def update_user():
        data = UserUpdate.model_validate(request.get_json(silent=True) or {})
        user = async_to_sync(get_service().update_user)(g.session_id, data)
        return jsonify(user.to_json())

    @bp.post("/auth/logout")
    def logout():
        service = get_service()
        async_to_sync(service.logout)(g.session_id)
        response = jsonify(message="Logged out successfully")
        response.delete_cookie(**service.sessions.cookie.delete_cookie_kwargs())
        return response

    @bp.post("/profile")
    def complete_profile():
        data = ProfileCompletion.model_validate(request.get_json(silent=True) or {})
        user = async_to_sync(get_service().complete_profile)(g.session_id, data)
        return jsonify(user.to_json())

    @bp.post("/profile/reset")
    def reset_profile():
        user = async_to_sync(get_service().reset_profile)(g.session_id)
        return jsonify(user.to_json())

    @bp.get("/admin/users")
    @flask_require_admin
    def list_users():
        users = async_to_sync(get_service().list_users)(g.user)
        return jsonify([user.to_json() for user in users])

    @bp.put("/admin/users/<user_id>")
    @flask_require_admin
    def admin_update_user(user_id: str):
        data = AdminUserUpdate.model_validate(request.get_json(silent=True) or {})
        user = async_to_sync(get_service().admin_update_user)(g.user, user_id, data)
        return jsonify(user.to_json())

    return bp


def create_flask_app(
    settings: Optional[Settings] = None,
    verifier: Optional[AssertionVerifier] = None,
    session_store: Optional[SessionStore] = None,
) -> Flask:
    settings = settings or Settings()
    settings.check()

    # Every async_to_sync call runs on a fresh event loop: no pooled connections.
    engine = create_engine(settings.database_url, echo=settings.database_echo, use_null_pool=True)
    if settings.create_tables:
        async_to_sync(create_tables)(engine)

    service = build_service(settings, create_session_factory(engine), verifier, session_store)
    async_to_sync(prune_sessions)(service)

    app = Flask(__name__)
    app.config["IDENTIFY_SYNC_SETTINGS"] = settings
    FlaskIdentifyMiddleware(app, service)
    app.register_blueprint(create_auth_blueprint())
    return app
