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
Identity Provider Client

Observes the provider's sign-in state and hands out fresh ID tokens.
`FirebaseRestProvider` talks to the Firebase Auth REST API with httpx.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import httpx
from pydantic import BaseModel

from identify_sync.shared.exceptions import ProviderError
from identify_sync.shared.jwt_utils import get_unverified_claims

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Tokens this close to expiry are refreshed even without force_refresh.
TOKEN_REFRESH_MARGIN = 5 * 60

AuthStateListener = Callable[[Optional["ProviderUser"]], None]


class ProviderUser(BaseModel):
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    photo_url: Optional[str] = None


class IdentityProviderClient(ABC):
    """
    Listeners are plain callables invoked synchronously with the current
    ProviderUser (or None) on every sign-in state change.
    """

    def __init__(self):
        self._listeners: List[AuthStateListener] = []
        self._current_user: Optional[ProviderUser] = None

    @property
    def current_user(self) -> Optional[ProviderUser]:
        return self._current_user

    def on_auth_state_changed(self, listener: AuthStateListener) -> Callable[[], None]:
        """Subscribe; the listener is called once right away with the current user."""
        self._listeners.append(listener)
        listener(self._current_user)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_user(self, user: Optional[ProviderUser]) -> None:
        self._current_user = user
        logger.debug(f"Provider state changed: {user.uid if user else 'signed out'}")
        for listener in list(self._listeners):
            listener(user)

    @abstractmethod
    async def get_id_token(self, force_refresh: bool = False) -> str:
        pass

    @abstractmethod
    async def sign_out(self) -> None:
        pass


class FirebaseRestProvider(IdentityProviderClient):
    def __init__(self, api_key: str, http_client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self.api_key = api_key
        self.http_client = http_client or httpx.AsyncClient(timeout=10)
        self._id_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._expires_at: float = 0

    async def _post(self, url: str, **kwargs) -> dict:
        try:
            response = await self.http_client.post(url, params={"key": self.api_key}, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Identity provider unreachable: {e}")
            raise ProviderError("Identity provider unreachable", status_code=503) from e
        try:
            data = response.json()
        except ValueError:
            data = {}
        if response.is_error:
            error = data.get("error") if isinstance(data, dict) else None
            message = error.get("message", response.reason_phrase) if isinstance(error, dict) else response.reason_phrase
            logger.warning(f"Identity provider rejected request ({response.status_code}): {message}")
            raise ProviderError(message)
        return data

    async def sign_in_with_idp(self, post_body: str, request_uri: str = "http://localhost") -> ProviderUser:
        """
        Exchange an external IdP credential for a Firebase session.

        For Google: post_body = "id_token=<google id token>&providerId=google.com".
        """
        data = await self._post(
            f"{IDENTITY_TOOLKIT_URL}/accounts:signInWithIdp",
            json={
                "postBody": post_body,
                "requestUri": request_uri,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            },
        )
        self._store_tokens(data["idToken"], data["refreshToken"], data.get("expiresIn"))
        user = ProviderUser(
            uid=data["localId"],
            email=data.get("email"),
            display_name=data.get("displayName"),
            photo_url=data.get("photoUrl"),
        )
        self._set_user(user)
        return user

    async def sign_in_with_google(self, google_id_token: str) -> ProviderUser:
        return await self.sign_in_with_idp(f"id_token={google_id_token}&providerId=google.com")

    def _store_tokens(self, id_token: str, refresh_token: str, expires_in) -> None:
        self._id_token = id_token
        self._refresh_token = refresh_token
        self._expires_at = time.time() + int(expires_in or 3600)

    async def get_id_token(self, force_refresh: bool = False) -> str:
        if self._current_user is None or not self._refresh_token:
            raise ProviderError("No signed-in user")
        if not force_refresh and self._id_token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN:
            return self._id_token

        data = await self._post(
            SECURE_TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": self._refresh_token},
        )
        self._store_tokens(data["id_token"], data["refresh_token"], data.get("expires_in"))
        return self._id_token

    async def restore(self, refresh_token: str) -> ProviderUser:
        """Resume a persisted sign-in from its refresh token."""
        self._refresh_token = refresh_token
        data = await self._post(
            SECURE_TOKEN_URL,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
        self._store_tokens(data["id_token"], data["refresh_token"], data.get("expires_in"))
        claims = get_unverified_claims(self._id_token)
        user = ProviderUser(
            uid=data.get("user_id") or claims.get("user_id") or claims["sub"],
            email=claims.get("email"),
            display_name=claims.get("name"),
            photo_url=claims.get("picture"),
        )
        self._set_user(user)
        return user

    async def sign_out(self) -> None:
        self._id_token = None
        self._refresh_token = None
        self._expires_at = 0
        if self._current_user is not None:
            self._set_user(None)

    async def aclose(self) -> None:
        await self.http_client.aclose()
