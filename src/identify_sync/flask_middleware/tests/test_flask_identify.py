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

from unittest.mock import AsyncMock

import pytest
from asgiref.sync import async_to_sync
from flask import g, jsonify

from identify_sync.shared.config import Settings
from identify_sync.shared.sessions import InMemorySessionStore
from identify_sync.flask_middleware.flask_identify import create_flask_app
from identify_sync.flask_middleware.tools import flask_require_admin, get_service


@pytest.fixture
def app(database_url, firebase_verifier):
    settings = Settings(_env_file=None, firebase_project_id="test-project", database_url=database_url)
    app = create_flask_app(settings, verifier=firebase_verifier)
    app.config.update({"TESTING": True})

    @app.route("/admin-only")
    @flask_require_admin
    def admin_only():
        return jsonify(admin=g.user.email)

    return app


@pytest.fixture
def client(app):
    return app.test_client()


def _login(client, token):
    return client.post("/api/auth/firebase-login", json={"idToken": token})


def test_login_sets_cookie_and_returns_user(client, make_token):
    response = _login(client, make_token())

    assert response.status_code == 200
    assert response.json["email"] == "ana@example.com"
    assert response.json["isProfileComplete"] is False
    assert client.get_cookie("sessionId") is not None
    assert "HttpOnly" in response.headers["Set-Cookie"]


def test_current_user_roundtrip(client, make_token):
    login = _login(client, make_token())
    response = client.get("/api/auth/user")
    assert response.status_code == 200
    assert response.json["id"] == login.json["id"]


def test_current_user_without_session(client):
    response = client.get("/api/auth/user")
    assert response.status_code == 401
    assert response.json == {"detail": "No backend session"}


@pytest.mark.parametrize("payload", [{}, {"idToken": None}, {"idToken": "a.b"}])
def test_login_rejects_malformed_token(client, payload):
    assert client.post("/api/auth/firebase-login", json=payload).status_code == 400


def test_login_rejects_expired_token(client, make_token):
    assert _login(client, make_token(expires_in=-60)).status_code == 401


def test_logout_then_current_user_is_401(client, make_token):
    _login(client, make_token())
    session_id = client.get_cookie("sessionId").value

    response = client.post("/api/auth/logout")
    assert response.status_code == 200
    assert response.json == {"message": "Logged out successfully"}

    client.set_cookie("sessionId", session_id)
    assert client.get("/api/auth/user").status_code == 401


def test_logout_store_failure_is_500(app, client, make_token):
    _login(client, make_token())
    store = app.extensions["identify_sync"].sessions.store
    store.remove = AsyncMock(side_effect=ConnectionError("store down"))

    response = client.post("/api/auth/logout")

    assert response.status_code == 500
    assert response.json == {"detail": "Could not log out, please try again."}


def test_complete_profile_and_validation(client, make_token):
    _login(client, make_token())

    assert client.post("/api/profile", json={"userType": "admin"}).status_code == 422

    response = client.post("/api/profile", json={"userType": "boat_tour_operator"})
    assert response.status_code == 200
    assert response.json["isProfileComplete"] is True
    assert response.json["userType"] == "boat_tour_operator"


def test_update_and_reset_profile(client, make_token):
    _login(client, make_token())
    client.post("/api/profile", json={"userType": "tourist", "phone": "+55 12"})

    assert client.put("/api/auth/user", json={"bio": "Praias"}).json["bio"] == "Praias"

    reset = client.post("/api/profile/reset")
    assert reset.status_code == 200
    assert reset.json["isProfileComplete"] is False
    assert reset.json["phone"] is None


def test_admin_endpoints(app, client, make_token):
    _login(client, make_token())
    assert client.get("/api/admin/users").status_code == 403
    assert client.get("/admin-only").status_code == 403

    with app.app_context():
        service = get_service()
        user = async_to_sync(service.users.get_by_email)("ana@example.com")
        async_to_sync(service.users.update)(user.id, {"is_admin": True})

    users = client.get("/api/admin/users")
    assert users.status_code == 200
    assert [u["email"] for u in users.json] == ["ana@example.com"]

    updated = client.put(f"/api/admin/users/{user.id}", json={"userType": "event_producer"})
    assert updated.json["userType"] == "event_producer"
    assert client.put("/api/admin/users/missing", json={"isAdmin": False}).status_code == 404
    assert client.get("/admin-only").json == {"admin": "ana@example.com"}


def test_admin_routes_reject_non_admin_before_reading_body(client, make_token):
    _login(client, make_token())
    response = client.put("/api/admin/users/anyone", json={"isAdmin": None})
    assert response.status_code == 403


@pytest.mark.parametrize("field", ["isAdmin", "isProfileComplete"])
def test_admin_update_rejects_null_flags(app, client, make_token, field):
    user_id = _login(client, make_token()).json["id"]
    with app.app_context():
        async_to_sync(get_service().users.update)(user_id, {"is_admin": True})

    response = client.put(f"/api/admin/users/{user_id}", json={field: None})

    assert response.status_code == 422
    assert client.get("/api/auth/user").json["isAdmin"] is True


def test_create_flask_app_keeps_injected_store(database_url, firebase_verifier, make_token):
    settings = Settings(_env_file=None, firebase_project_id="test-project", database_url=database_url)
    store = InMemorySessionStore()
    client = create_flask_app(settings, verifier=firebase_verifier, session_store=store).test_client()

    _login(client, make_token())
    assert len(store) == 1
    client.post("/api/auth/logout")
    assert len(store) == 0
