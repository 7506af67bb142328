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
import time
from abc import ABC, abstractmethod
from typing import Optional, Any, Dict, List

import httpx
from jose import jwt

from identify_sync.shared.models import UserIdentity
from identify_sync.shared.exceptions import InvalidAssertion, ExpiredAssertion
from identify_sync.shared.jwt_utils import (
    FIREBASE_PUBLIC_KEYS_URL,
    fetch_public_keys,
    firebase_issuer,
    get_unverified_claims,
    is_expired,
    require_id_token,
)

try:
    from google.oauth2 import id_token as google_id_token
    from google.auth.transport import requests as google_requests
    HAS_GOOGLE_AUTH = True
except ImportError:
    HAS_GOOGLE_AUTH = False
    google_id_token = None
    google_requests = None

logger = logging.getLogger(__name__)


def identity_from_claims(claims: Dict[str, Any], token: str, provider: str) -> UserIdentity:
    uid = claims.get("user_id") or claims.get("sub")
    if not uid:
        raise InvalidAssertion("Identity token has no subject", status_code=401)
    email = claims.get("email")
    if not email:
        raise InvalidAssertion("Identity token has no email claim")
    return UserIdentity(
        id=uid,
        email=email,
        exp=int(claims["exp"]),
        provider=provider,
        name=claims.get("name"),
        picture=claims.get("picture"),
        claims=claims,
        token=token,
    )


class AssertionVerifier(ABC):
    """
    Turns an identity assertion into a verified UserIdentity.
    """

    @abstractmethod
    async def verify(self, id_token: Any) -> UserIdentity:
        """
        Verify the token.

        Raises:
            InvalidAssertion: missing/malformed (400) or rejected (401) token.
            ExpiredAssertion: the token's exp is in the past.
        """
        pass


class FirebaseTokenVerifier(AssertionVerifier):
    """
    Verifies Firebase ID tokens locally with python-jose.
    The Google signing keys (JWKS) are fetched over HTTP and cached for `cache_ttl` seconds.
    """

    def __init__(
        self,
        project_id: str,
        keys_url: str = FIREBASE_PUBLIC_KEYS_URL,
        algorithms: List[str] = ["RS256"],
        cache_ttl: int = 3600,
        leeway: int = 0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not project_id:
            raise ValueError("project_id cannot be empty.")
        self.project_id = project_id
        self.issuer = firebase_issuer(project_id)
        self.keys_url = keys_url
        self.algorithms = algorithms
        self.leeway = leeway
        self.http_client = http_client

        self._jwks_cache: Dict[str, Any] = {}
        self._jwks_timestamp: float = 0
        self._cache_ttl = cache_ttl

    async def _get_jwks(self, force_refresh: bool = False) -> Dict[str, Any]:
        if not force_refresh and self._jwks_cache and time.time() < self._jwks_timestamp + self._cache_ttl:
            return self._jwks_cache

        logger.info(f"Fetching Firebase JWKS from {self.keys_url}")
        self._jwks_cache = await fetch_public_keys(self.keys_url, self.http_client)
        self._jwks_timestamp = time.time()
        return self._jwks_cache

    @staticmethod
    def _find_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
        return next((key for key in jwks.get("keys", []) if key.get("kid") == kid), None)

    async def verify(self, id_token: Any) -> UserIdentity:
        token = require_id_token(id_token)

        kid = jwt.get_unverified_header(token).get("kid")
        if not kid:
            raise InvalidAssertion("Token header missing 'kid'", status_code=401)

        key = self._find_key(await self._get_jwks(), kid)
        if key is None:
            # Google rotates keys; refresh once before rejecting.
            key = self._find_key(await self._get_jwks(force_refresh=True), kid)
        if key is None:
            logger.warning(f"Firebase ID token signed with unknown key {kid}")
            raise InvalidAssertion("Unknown signing key", status_code=401)

        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=self.algorithms,
                audience=self.project_id,
                issuer=self.issuer,
                options={
                    "verify_signature": True,
                    "verify_aud": True,
                    "verify_iss": True,
                    "verify_exp": True,
                    "leeway": self.leeway,
                },
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("Firebase ID token expired")
            raise ExpiredAssertion() from e
        except jwt.JWTClaimsError as e:
            logger.warning(f"Firebase ID token claims invalid: {e}")
            raise InvalidAssertion(f"Invalid claims: {e}", status_code=401) from e
        except jwt.JWTError as e:
            logger.warning(f"Firebase ID token signature invalid: {e}")
            raise InvalidAssertion("Invalid token signature", status_code=401) from e

        user_identity = identity_from_claims(claims, token, provider="firebase-jose")
        logger.info(f"Firebase ID token validated for {user_identity.email}")
        return user_identity


class GoogleAuthTokenVerifier(AssertionVerifier):
    """
    Verifies Firebase ID tokens with google-auth's `verify_firebase_token`.
    """

    def __init__(self, project_id: str, clock_skew_in_seconds: int = 0):
        if not HAS_GOOGLE_AUTH:
            raise ImportError("google-auth library required for GoogleAuthTokenVerifier. pip install google-auth")
        if not project_id:
            raise ValueError("project_id cannot be empty.")
        self.project_id = project_id
        self.issuer = firebase_issuer(project_id)
        self.clock_skew_in_seconds = clock_skew_in_seconds

    async def verify(self, id_token: Any) -> UserIdentity:
        token = require_id_token(id_token)
        try:
            claims = google_id_token.verify_firebase_token(
                token,
                google_requests.Request(),
                audience=self.project_id,
                clock_skew_in_seconds=self.clock_skew_in_seconds,
            )
        except ValueError as e:
            # google-auth reports every failure as ValueError; the exp claim tells them apart.
            if is_expired(get_unverified_claims(token), threshold=-self.clock_skew_in_seconds):
                logger.info("Firebase ID token expired (google-auth)")
                raise ExpiredAssertion() from e
            logger.warning(f"Firebase ID token rejected by google-auth: {e}")
            raise InvalidAssertion(f"Invalid identity token ({e})", status_code=401) from e

        if claims.get("iss") != self.issuer:
            raise InvalidAssertion("Invalid claims: wrong issuer", status_code=401)

        user_identity = identity_from_claims(claims, token, provider="firebase-google-auth")
        logger.info(f"Firebase ID token validated for {user_identity.email}")
        return user_identity
