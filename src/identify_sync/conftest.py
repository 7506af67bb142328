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

import asyncio
import time
from typing import Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from identify_sync.client.notifications import Notification, Notifier
from identify_sync.client.provider import IdentityProviderClient, ProviderUser
from identify_sync.shared.database import create_engine, create_session_factory, create_tables
from identify_sync.shared.exceptions import NoBackendSession, ProviderError
from identify_sync.shared.jwt_utils import firebase_issuer
from identify_sync.shared.models import UserIdentity, UserRecord, UserType
from identify_sync.shared.verifiers import FirebaseTokenVerifier

PROJECT_ID = "test-project"
KID = "test-kid"


def _generate_rsa_pems():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode()
    return private_pem, public_pem


# --- Tokens and keys ---


@pytest.fixture(scope="session")
def signing_key():
    private_pem, public_pem = _generate_rsa_pems()
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    public_jwk.update({"kid": KID, "use": "sig", "alg": "RS256"})
    return {"private_pem": private_pem, "jwk": public_jwk}


@pytest.fixture(scope="session")
def other_private_pem():
    return _generate_rsa_pems()[0]


@pytest.fixture
def make_token(signing_key):
    """Sign a Firebase-shaped ID token. Pass a claim as None to leave it out."""

    def _make(
        uid: str = "uid-123",
        email: Optional[str] = "ana@example.com",
        expires_in: int = 3600,
        kid: Optional[str] = KID,
        private_pem: Optional[str] = None,
        **overrides,
    ) -> str:
        now = int(time.time())
        claims = {
            "iss": firebase_issuer(PROJECT_ID),
            "aud": PROJECT_ID,
            "sub": uid,
            "user_id": uid,
            "email": email,
            "name": "Ana Souza",
            "picture": "https://example.com/ana.png",
            "iat": now - 10,
            "auth_time": now - 10,
            "exp": now + expires_in,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        headers = {"kid": kid} if kid else None
        return jwt.encode(
            claims, private_pem or signing_key["private_pem"], algorithm="RS256", headers=headers
        )

    return _make


@pytest.fixture
def jwks_transport(signing_key):
    """Serves the test JWKS; `transport.calls` counts the fetches."""
    calls: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"keys": [signing_key["jwk"]]})

    transport = httpx.MockTransport(handler)
    transport.calls = calls
    return transport


@pytest.fixture
def firebase_verifier(jwks_transport):
    return FirebaseTokenVerifier(PROJECT_ID, http_client=httpx.AsyncClient(transport=jwks_transport))


@pytest.fixture
def make_identity():
    def _make(
        email: str = "ana@example.com",
        uid: str = "uid-123",
        name: Optional[str] = "Ana Souza",
        picture: Optional[str] = "https://example.com/ana.png",
    ) -> UserIdentity:
        return UserIdentity(
            id=uid,
            email=email,
            exp=int(time.time()) + 3600,
            provider="test-provider",
            name=name,
            picture=picture,
            claims={"sub": uid, "email": email},
        )

    return _make


# --- Database ---


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'identify_sync_test.db'}"


@pytest_asyncio.fixture
async def engine(database_url):
    engine = create_engine(database_url)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def db_callable(engine):
    return create_session_factory(engine)


# --- Client runtime fakes ---


class FakeProvider(IdentityProviderClient):
    def __init__(self):
        super().__init__()
        self.token_error: Optional[Exception] = None
        self.token_requests: List[bool] = []
        self.sign_out_calls = 0

    def sign_in(self, uid: str = "uid-123", email: str = "ana@example.com") -> ProviderUser:
        user = ProviderUser(uid=uid, email=email, display_name="Ana Souza")
        self._set_user(user)
        return user

    async def get_id_token(self, force_refresh: bool = False) -> str:
        self.token_requests.append(force_refresh)
        if self.token_error is not None:
            raise self.token_error
        if self.current_user is None:
            raise ProviderError("No signed-in user")
        return f"token-for-{self.current_user.uid}"

    async def sign_out(self) -> None:
        self.sign_out_calls += 1
        if self.current_user is not None:
            self._set_user(None)


class FakeBackend:
    """Stands in for BackendClient; `session_user` is the user behind the cookie."""

    def __init__(self):
        self.session_user: Optional[UserRecord] = None
        self.sync_user: Optional[UserRecord] = None
        self.fetch_error: Optional[Exception] = None
        self.sync_error: Optional[Exception] = None
        self.logout_error: Optional[Exception] = None
        self.sync_gate: Optional[asyncio.Event] = None
        # Per-token overrides of sync_user / sync_gate.
        self.sync_users: Dict[str, UserRecord] = {}
        self.sync_gates: Dict[str, asyncio.Event] = {}
        self.fetch_calls = 0
        self.sync_calls: List[str] = []
        self.logout_calls = 0

    async def fetch_current_user(self) -> UserRecord:
        self.fetch_calls += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        if self.session_user is None:
            raise NoBackendSession()
        return self.session_user

    async def sync_session(self, id_token: str) -> UserRecord:
        self.sync_calls.append(id_token)
        gate = self.sync_gates.get(id_token, self.sync_gate)
        if gate is not None:
            await gate.wait()
        if self.sync_error is not None:
            raise self.sync_error
        self.session_user = self.sync_users.get(id_token, self.sync_user)
        return self.session_user

    async def logout(self) -> None:
        self.logout_calls += 1
        if self.logout_error is not None:
            raise self.logout_error
        self.session_user = None


class RecordingNotifier(Notifier):
    def __init__(self):
        self.notifications: List[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_user_record():
    def _make(
        user_id: str = "user-1",
        email: str = "ana@example.com",
        user_type: Optional[UserType] = UserType.TOURIST,
        is_profile_complete: bool = True,
        is_admin: bool = False,
    ) -> UserRecord:
        return UserRecord(
            id=user_id,
            email=email,
            first_name="Ana",
            last_name="Souza",
            user_type=user_type,
            is_admin=is_admin,
            is_profile_complete=is_profile_complete,
        )

    return _make
